"""Classify raw group-chat text as a new delivery, a status command, or noise."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Tuple

from app.models.delivery import Classification, StatusUpdateType
from app.services.delivery_parser import parse_delivery_message
from app.services.normalizers import fold_text


@dataclass(frozen=True)
class StatusRule:
    """One keyword rule. Patterns run against accent-folded, lowercased text."""

    subtype: StatusUpdateType
    pattern: re.Pattern


@dataclass(frozen=True)
class StatusMatch:
    rule: StatusRule
    start: int
    end: int

    @property
    def subtype(self) -> StatusUpdateType:
        return self.rule.subtype


def _rule(subtype: StatusUpdateType, pattern: str) -> StatusRule:
    return StatusRule(subtype=subtype, pattern=re.compile(pattern))


# Evaluated top to bottom, first match wins. Order matters where vocabularies
# overlap: "collecte" before "livre", "change" (modify) must not swallow
# "change numero", zone markers come last.
STATUS_RULES: Tuple[StatusRule, ...] = (
    _rule(StatusUpdateType.PAYMENT, r"\bcollectee?s?\b|\bpayee?s?\b|\bencaissee?s?\b"),
    _rule(StatusUpdateType.DELIVERED, r"\blivree?s?\b"),
    _rule(
        StatusUpdateType.FAILED,
        r"\bechecs?\b|\bechouee?s?\b|\bne passe pas\b|\binjoignable\b|\bne repond pas\b",
    ),
    _rule(
        StatusUpdateType.PICKUP,
        r"\bvient chercher\b|\bpasse chercher\b|\bpick[\s-]?up\b|\bramassage\b"
        r"|\belle passe\b|\bil passe\b|\bau bureau\b",
    ),
    _rule(StatusUpdateType.MODIFY, r"\bmodif(?:ier|iee?|ication)?\b|\bchange(?:r|ment)?\b(?!\s+(?:de\s+)?num)"),
    _rule(
        StatusUpdateType.NUMBER_CHANGE,
        r"\bchange(?:r|ment)?\s+(?:de\s+)?num(?:ero)?\b|\bnouveau\s+num(?:ero)?\b",
    ),
    _rule(StatusUpdateType.PENDING, r"\ben attente\b|\battente\b|\ben cours\b"),
    _rule(StatusUpdateType.CLIENT_ABSENT, r"\bclient absent\b|\babsente?\b"),
    _rule(StatusUpdateType.PRESENT_NE_DECROCHE_ZONE1, r"\b(?:present|decroche)\b.*?\bzone\s*1\b"),
    _rule(StatusUpdateType.PRESENT_NE_DECROCHE_ZONE2, r"\b(?:present|decroche)\b.*?\bzone\s*2\b"),
)


def match_status(text: str) -> Optional[StatusMatch]:
    """First status rule matching `text`, with the keyword span in `text` coordinates."""
    folded = fold_text(text)
    for rule in STATUS_RULES:
        match = rule.pattern.search(folded)
        if match:
            return StatusMatch(rule=rule, start=match.start(), end=match.end())
    return None


def classify(text: str) -> Classification:
    if not text or not text.strip():
        return Classification(kind="unknown")

    status = match_status(text)
    if status is not None:
        return Classification(kind="status", subtype=status.subtype)

    parsed = parse_delivery_message(text)
    if parsed.valid and parsed.has_phone and parsed.has_amount:
        return Classification(kind="delivery")
    return Classification(kind="unknown")


def is_delivery_message(text: str) -> bool:
    return classify(text).kind == "delivery"


def is_status_update(text: str) -> bool:
    return classify(text).kind == "status"
