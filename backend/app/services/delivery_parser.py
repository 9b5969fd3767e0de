"""Extract new-delivery fields from a group-chat message.

Three layouts are tried in order:

1. Strict, exactly four lines::

       612345678
       2 robes + 1 sac
       15k
       Bonapriso

2. Alternative, quartier first and phone last (four lines or more)::

       Bessengue
       1 sac
       2 robes
       14000
       651 07 35 74

3. Fallback scan over whatever was sent. The result is still usable when only
   a phone or only an amount could be found; it is invalid only when neither was.
"""
from __future__ import annotations

import re
from typing import List, Optional

from app.models.delivery import ParsedDelivery
from app.services.normalizers import (
    amount_from_line,
    extract_amount,
    extract_carrier,
    extract_customer_name,
    extract_quartier,
    find_phones,
    phone_from_line,
    strip_amounts,
    strip_phones,
)


def _lines(text: str) -> List[str]:
    return [line.strip() for line in (text or "").splitlines() if line.strip()]


def _is_quartier_line(line: str) -> bool:
    return phone_from_line(line) is None and amount_from_line(line) is None


def _parse_strict(lines: List[str], text: str) -> Optional[ParsedDelivery]:
    if len(lines) != 4:
        return None
    phone = phone_from_line(lines[0])
    amount = amount_from_line(lines[2])
    if phone is None or amount is None or not _is_quartier_line(lines[3]):
        return None
    return ParsedDelivery(
        valid=True,
        phone=phone,
        items=lines[1],
        amount_due=amount,
        quartier=lines[3],
        carrier=extract_carrier(text),
        format="strict",
    )


def _parse_alternative(lines: List[str], text: str) -> Optional[ParsedDelivery]:
    if len(lines) < 4 or not _is_quartier_line(lines[0]):
        return None
    phone = phone_from_line(lines[-1])
    amount = amount_from_line(lines[-2])
    if phone is None or amount is None:
        return None
    return ParsedDelivery(
        valid=True,
        phone=phone,
        items=", ".join(lines[1:-2]),
        amount_due=amount,
        quartier=lines[0],
        carrier=extract_carrier(text),
        format="alternative",
    )


def _clean_item_line(line: str) -> str:
    line = strip_amounts(strip_phones(line))
    return re.sub(r"\s+", " ", line).strip(" ,;:-")


def _parse_fallback(lines: List[str], text: str) -> ParsedDelivery:
    phone: Optional[str] = None
    amount: Optional[int] = None
    remaining: List[str] = []

    for line in lines:
        if phone is None:
            phone = phone_from_line(line)
            if phone is not None:
                continue
        if amount is None:
            amount = amount_from_line(line)
            if amount is not None:
                continue
        if extract_customer_name(line):
            continue
        remaining.append(line)

    scanned = "\n".join(remaining)
    if phone is None:
        phones = find_phones(scanned)
        phone = phones[0] if phones else None
    if amount is None:
        amount = extract_amount(scanned)

    remaining = [cleaned for cleaned in (_clean_item_line(line) for line in remaining) if cleaned]

    quartier: Optional[str] = None
    if len(remaining) >= 2:
        quartier = remaining.pop()
    elif remaining:
        quartier = extract_quartier(remaining[0])
        if quartier:
            stripped = re.sub(rf"\b{re.escape(quartier)}\b", " ", remaining[0])
            stripped = re.sub(r"\s+", " ", stripped).strip(" ,;:-")
            remaining = [stripped] if stripped else []

    items = ", ".join(remaining) or None
    return ParsedDelivery(
        valid=phone is not None or amount is not None,
        phone=phone,
        items=items,
        amount_due=amount,
        quartier=quartier,
        carrier=extract_carrier(text),
        customer_name=extract_customer_name(text),
        format="fallback",
    )


def parse_delivery_message(text: str) -> ParsedDelivery:
    lines = _lines(text)
    parsed = _parse_strict(lines, text) or _parse_alternative(lines, text)
    if parsed is not None:
        return parsed
    return _parse_fallback(lines, text)
