"""Lexical normalizers for amounts, phone numbers, and chat keywords."""
from __future__ import annotations

import re
import unicodedata
from typing import List, Optional

# Cameroon mobile numbers: 9 digits starting with 6 (8 digits on older lines).
_COUNTRY_CODE = r"(?:(?:\+|00)?237[\s.\-]*)?"
_PHONE_COMPACT = re.compile(rf"(?<!\d){_COUNTRY_CODE}(6\d{{7,8}})(?!\d)")
_PHONE_SEPARATED = re.compile(rf"(?<!\d){_COUNTRY_CODE}(6(?:[\s.\-]?\d){{7,8}})(?!\d)")

_CURRENCY_SUFFIX = re.compile(r"(?:fcfa|cfa|xaf|frs|fr|f)\.?$", re.IGNORECASE)
_K_AMOUNT = re.compile(r"(\d{1,3}(?:[.,]\d{3})+|\d+(?:[.,]\d{1,2})?)k", re.IGNORECASE)
_GROUPED_AMOUNT = re.compile(r"\d{1,3}(?:[.,]\d{3})+")
_PLAIN_AMOUNT = re.compile(r"\d+")

_K_TOKEN = re.compile(
    r"(?<![\d.,])(\d{1,3}(?:[.,]\d{3})+|\d+(?:[.,]\d{1,2})?)\s*k(?![a-z])",
    re.IGNORECASE,
)
_GROUPED_TOKEN = re.compile(r"(?<![\d.,])\d{1,3}(?:[.,]\d{3})+(?!\d)")
_PLAIN_TOKEN = re.compile(r"(?<![\d.,])\d+(?![\d.,]?\d)")

_PHONE_LABEL = re.compile(r"^(?:t[eé]l[eé]?(?:phone)?|num[eé]ro|num|phone|contact)\s*[:\-]?\s*", re.IGNORECASE)
_AMOUNT_LABEL = re.compile(r"^(?:montant|prix|total|somme)\s*[:\-]?\s*", re.IGNORECASE)
_PHONE_LINE_CHARS = re.compile(r"[\d\s+().\-]+")

COMMON_QUARTIERS = (
    "bonapriso",
    "akwa",
    "makepe",
    "logpom",
    "pk8",
    "pk12",
    "deido",
    "bessengue",
    "new-bell",
    "newbell",
    "bonanjo",
    "kotto",
    "ndokotti",
    "bepanda",
    "denver",
)

_CARRIERS = (
    (("men travel", "mentravel"), "Men Travel"),
    (("general voyage", "generalvoyage"), "General Voyage"),
    (("expedition",), "Expedition"),
)

_CUSTOMER_NAME = re.compile(r"\b(?:client|nom|name)\s*[:\-]\s*([^\n\d]+)", re.IGNORECASE)


def _fold_char(char: str) -> str:
    base = unicodedata.normalize("NFKD", char)[:1] or char
    return base.lower()[:1] or base


def fold_text(text: str) -> str:
    """Lowercase and strip accents while keeping every character at its index."""
    return "".join(_fold_char(char) for char in text or "")


def parse_amount(text: str | None) -> Optional[int]:
    """Parse `15k`, `1.5k`, `15.000`, `15,000`, `15000 FCFA`. None when unparseable."""
    if text is None:
        return None
    cleaned = re.sub(r"\s+", "", str(text))
    cleaned = _CURRENCY_SUFFIX.sub("", cleaned)
    if not cleaned:
        return None

    match = _K_AMOUNT.fullmatch(cleaned)
    if match:
        prefix = match.group(1)
        if _GROUPED_AMOUNT.fullmatch(prefix):
            return int(re.sub(r"[.,]", "", prefix)) * 1000
        return int(round(float(prefix.replace(",", ".")) * 1000))

    if _GROUPED_AMOUNT.fullmatch(cleaned) or _PLAIN_AMOUNT.fullmatch(cleaned):
        return int(re.sub(r"[.,]", "", cleaned))
    return None


def _digits(value: str) -> str:
    return re.sub(r"\D", "", value)


def normalize_phone(text: str | None) -> Optional[str]:
    """Return the first local mobile number in `text` as bare digits."""
    phones = find_phones(text)
    return phones[0] if phones else None


def find_phones(text: str | None) -> List[str]:
    """All local mobile numbers in order of appearance, country code stripped."""
    if not text:
        return []
    phones = [match.group(1) for match in _PHONE_COMPACT.finditer(text)]
    if phones:
        return phones
    return [_digits(match.group(1)) for match in _PHONE_SEPARATED.finditer(text)]


def strip_phones(text: str) -> str:
    """Blank out phone tokens so their digits are not read as amounts."""
    if not text:
        return ""
    pattern = _PHONE_COMPACT if _PHONE_COMPACT.search(text) else _PHONE_SEPARATED
    return pattern.sub(" ", text)


def extract_amount(text: str | None) -> Optional[int]:
    """First amount-looking token in free text, ignoring phone numbers."""
    if not text:
        return None
    cleaned = strip_phones(text)

    match = _K_TOKEN.search(cleaned)
    if match:
        return parse_amount(f"{match.group(1)}k")

    match = _GROUPED_TOKEN.search(cleaned)
    if match:
        return parse_amount(match.group(0))

    amounts = [int(token) for token in _PLAIN_TOKEN.findall(cleaned)]
    amounts = [amount for amount in amounts if 100 <= amount < 10_000_000]
    return max(amounts) if amounts else None


def strip_amounts(text: str) -> str:
    """Blank out amount tokens (`15k`, `15.000`, `15000 FCFA`)."""
    if not text:
        return ""
    text = _K_TOKEN.sub(" ", text)
    text = _GROUPED_TOKEN.sub(" ", text)
    return re.sub(r"(?<![\d.,])\d{3,}(?!\d)(?:\s*(?:fcfa|cfa|xaf|frs|fr|f)\b)?", " ", text, flags=re.IGNORECASE)


def phone_from_line(line: str) -> Optional[str]:
    """Phone number when the whole line is a phone number (optionally labelled)."""
    candidate = _PHONE_LABEL.sub("", line.strip())
    if not candidate or not _PHONE_LINE_CHARS.fullmatch(candidate):
        return None
    phones = find_phones(candidate)
    if len(phones) != 1:
        return None
    return phones[0]


def amount_from_line(line: str) -> Optional[int]:
    """Amount when the whole line is an amount (optionally labelled)."""
    candidate = _AMOUNT_LABEL.sub("", line.strip())
    return parse_amount(candidate)


def extract_quartier(text: str | None) -> Optional[str]:
    """Known quartier mentioned anywhere in the text, as written."""
    if not text:
        return None
    folded = fold_text(text)
    for quartier in COMMON_QUARTIERS:
        match = re.search(rf"\b{re.escape(quartier)}\b", folded)
        if match:
            return text[match.start():match.end()]
    return None


def extract_carrier(text: str | None) -> Optional[str]:
    folded = fold_text(text or "")
    for keywords, carrier in _CARRIERS:
        if any(keyword in folded for keyword in keywords):
            return carrier
    return None


def extract_customer_name(text: str | None) -> Optional[str]:
    match = _CUSTOMER_NAME.search(text or "")
    if not match:
        return None
    name = match.group(1).strip(" ,;.-")
    return name or None
