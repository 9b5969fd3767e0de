"""Extract the target phone and payload from a status command."""
from __future__ import annotations

import re
from typing import Optional, Tuple

from app.models.delivery import StatusUpdate, StatusUpdateType
from app.services.classifier import StatusMatch, match_status
from app.services.normalizers import extract_amount, find_phones, fold_text, normalize_phone, strip_phones

_GOODS_MARKER = re.compile(r"\b(?:prend|produits?|articles?|colis)\b\s*[:\-]?\s*")
_PRICE_MARKER = re.compile(r"\b(?:prix|montant|total)\b\s*[:\-]?\s*")


def _phone_after_keyword(text: str, match: StatusMatch) -> Optional[str]:
    return normalize_phone(text[match.end:]) or normalize_phone(text)


def _first_marker(folded: str) -> Tuple[Optional[str], int]:
    """Return ("items" | "amount" | None, offset where the payload starts)."""
    goods = _GOODS_MARKER.search(folded)
    price = _PRICE_MARKER.search(folded)
    if goods and (price is None or goods.start() < price.start()):
        return "items", goods.end()
    if price:
        return "amount", price.end()
    return None, 0


def _parse_modify(text: str) -> Tuple[Optional[str], Optional[int]]:
    marker, offset = _first_marker(fold_text(text))
    payload = text[offset:]
    if marker == "items":
        items = re.sub(r"\s+", " ", strip_phones(payload)).strip(" ,;:-")
        return (items or None), None
    if marker == "amount":
        return None, extract_amount(payload)
    return None, extract_amount(text)


def parse_status_update(text: str) -> Optional[StatusUpdate]:
    """Status command in `text`, or None when no status keyword matched."""
    if not text or not text.strip():
        return None
    match = match_status(text)
    if match is None:
        return None

    subtype = match.subtype
    details = text.strip()

    if subtype == StatusUpdateType.PAYMENT:
        # None amount means "whatever is left to pay"
        return StatusUpdate(
            type=subtype,
            phone=normalize_phone(text),
            amount=extract_amount(text),
            details=details,
        )

    if subtype == StatusUpdateType.MODIFY:
        items, amount = _parse_modify(text)
        return StatusUpdate(
            type=subtype,
            phone=normalize_phone(text),
            items=items,
            amount=amount,
            details=details,
        )

    if subtype == StatusUpdateType.NUMBER_CHANGE:
        phones = find_phones(text)
        return StatusUpdate(
            type=subtype,
            phone=phones[0] if phones else None,
            new_phone=phones[1] if len(phones) > 1 else None,
            details=details,
        )

    return StatusUpdate(
        type=subtype,
        phone=_phone_after_keyword(text, match),
        details=details,
    )
