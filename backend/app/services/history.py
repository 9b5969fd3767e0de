"""Audit trail of field-level changes on deliveries."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol

from app.models.delivery import DeliveryRecord, HistoryEntry

# Field -> label shown to operators in the history view.
TRACKED_FIELDS: Dict[str, str] = {
    "phone": "Numéro de téléphone",
    "customer_name": "Nom du client",
    "items": "Produits",
    "amount_due": "Montant total",
    "amount_paid": "Montant encaissé",
    "status": "Statut",
    "quartier": "Quartier",
    "notes": "Notes/Instructions",
    "carrier": "Transporteur",
    "delivery_fee": "Frais de livraison",
}

NUMERIC_FIELDS = frozenset({"amount_due", "amount_paid", "delivery_fee"})

CREATED_ACTION = "created"


class HistorySink(Protocol):
    def append_history(self, entry: HistoryEntry) -> HistoryEntry: ...


@dataclass(frozen=True)
class FieldChange:
    field: str
    old_value: Any
    new_value: Any

    @property
    def action(self) -> str:
        return f"updated_{self.field}"

    @property
    def label(self) -> str:
        return TRACKED_FIELDS[self.field]


def _as_mapping(value: DeliveryRecord | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(value, DeliveryRecord):
        return value.model_dump()
    return value


def _same(field: str, old: Any, new: Any) -> bool:
    if field in NUMERIC_FIELDS:
        return round(float(old or 0), 2) == round(float(new or 0), 2)
    return (old or None) == (new or None)


def diff_delivery(
    before: DeliveryRecord | Mapping[str, Any],
    after: DeliveryRecord | Mapping[str, Any],
) -> List[FieldChange]:
    """One change per tracked field whose value differs, in TRACKED_FIELDS order."""
    old_row = _as_mapping(before)
    new_row = _as_mapping(after)
    changes: List[FieldChange] = []
    for field in TRACKED_FIELDS:
        old_value = old_row.get(field)
        new_value = new_row.get(field)
        if not _same(field, old_value, new_value):
            changes.append(FieldChange(field=field, old_value=old_value, new_value=new_value))
    return changes


class HistoryRecorder:
    def __init__(self, sink: HistorySink) -> None:
        self._sink = sink

    def record_created(self, delivery: DeliveryRecord, actor: str) -> HistoryEntry:
        return self._sink.append_history(
            HistoryEntry(
                delivery_id=delivery.id,
                action=CREATED_ACTION,
                new_value=delivery.model_dump(mode="json", include=set(TRACKED_FIELDS)),
                actor=actor,
            )
        )

    def record_changes(
        self,
        before: DeliveryRecord,
        after: DeliveryRecord,
        actor: str,
        changes: Optional[List[FieldChange]] = None,
    ) -> List[HistoryEntry]:
        entries: List[HistoryEntry] = []
        for change in changes if changes is not None else diff_delivery(before, after):
            entries.append(
                self._sink.append_history(
                    HistoryEntry(
                        delivery_id=after.id,
                        action=change.action,
                        field=change.field,
                        old_value=change.old_value,
                        new_value=change.new_value,
                        actor=actor,
                    )
                )
            )
        return entries
