"""Domain models for group-chat deliveries, tariffs, and their audit trail."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryStatus(str, Enum):
    """Known delivery statuses. The stored column also accepts other strings."""

    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"
    PICKUP = "pickup"
    CLIENT_ABSENT = "client_absent"
    PRESENT_NE_DECROCHE_ZONE1 = "present_ne_decroche_zone1"
    PRESENT_NE_DECROCHE_ZONE2 = "present_ne_decroche_zone2"
    CANCELLED = "cancelled"
    POSTPONED = "postponed"
    EXPEDITION = "expedition"


class StatusUpdateType(str, Enum):
    """Status commands recognised in chat messages."""

    DELIVERED = "delivered"
    FAILED = "failed"
    PAYMENT = "payment"
    PICKUP = "pickup"
    MODIFY = "modify"
    NUMBER_CHANGE = "number_change"
    PENDING = "pending"
    CLIENT_ABSENT = "client_absent"
    PRESENT_NE_DECROCHE_ZONE1 = "present_ne_decroche_zone1"
    PRESENT_NE_DECROCHE_ZONE2 = "present_ne_decroche_zone2"


class DeliveryRecord(BaseModel):
    """Persisted delivery row."""

    id: int
    phone: str
    customer_name: Optional[str] = None
    items: str = ""
    amount_due: float = 0.0
    amount_paid: float = 0.0
    delivery_fee: float = 0.0
    status: str = DeliveryStatus.PENDING.value
    quartier: Optional[str] = None
    notes: Optional[str] = None
    carrier: Optional[str] = None
    group_id: Optional[str] = None
    agency_id: Optional[int] = None
    whatsapp_message_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DeliveryCreateRequest(BaseModel):
    """Payload to register a delivery outside of chat ingestion."""

    phone: str = Field(min_length=1)
    customer_name: Optional[str] = None
    items: str = ""
    amount_due: float = Field(default=0.0, ge=0)
    amount_paid: Optional[float] = Field(default=None, ge=0)
    delivery_fee: Optional[float] = Field(default=None, ge=0)
    status: str = DeliveryStatus.PENDING.value
    quartier: Optional[str] = None
    notes: Optional[str] = None
    carrier: Optional[str] = None
    group_id: Optional[str] = None
    agency_id: Optional[int] = None
    whatsapp_message_id: Optional[str] = None


class DeliveryUpdateRequest(BaseModel):
    """Patch for an existing delivery; status changes go through the tariff rules."""

    status: Optional[str] = None
    delivery_fee: Optional[float] = Field(default=None, ge=0)
    amount_paid: Optional[float] = Field(default=None, ge=0)
    amount_due: Optional[float] = Field(default=None, ge=0)
    quartier: Optional[str] = None
    phone: Optional[str] = None
    customer_name: Optional[str] = None
    items: Optional[str] = None
    notes: Optional[str] = None
    carrier: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class TariffRecord(BaseModel):
    """Flat delivery fee charged by an agency for one quartier."""

    agency_id: int
    quartier: str = Field(min_length=1)
    tarif_amount: float = Field(ge=0)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TariffUpsertRequest(BaseModel):
    agency_id: int
    quartier: str = Field(min_length=1)
    tarif_amount: float = Field(ge=0)


class HistoryEntry(BaseModel):
    """One audited field change."""

    id: Optional[int] = None
    delivery_id: int
    action: str
    field: Optional[str] = None
    old_value: Any = None
    new_value: Any = None
    actor: str = "bot"
    created_at: datetime = Field(default_factory=_utcnow)


class ParsedDelivery(BaseModel):
    """Fields extracted from a new-delivery message."""

    valid: bool
    phone: Optional[str] = None
    items: Optional[str] = None
    amount_due: Optional[int] = None
    quartier: Optional[str] = None
    carrier: Optional[str] = None
    customer_name: Optional[str] = None
    format: Literal["strict", "alternative", "fallback"] = "fallback"

    @property
    def has_phone(self) -> bool:
        return bool(self.phone)

    @property
    def has_amount(self) -> bool:
        return self.amount_due is not None


class StatusUpdate(BaseModel):
    """Fields extracted from a status command message."""

    type: StatusUpdateType
    phone: Optional[str] = None
    new_phone: Optional[str] = None
    amount: Optional[int] = None
    items: Optional[str] = None
    details: str = ""


class Classification(BaseModel):
    """Result of classifying one raw chat message."""

    kind: Literal["delivery", "status", "unknown"]
    subtype: Optional[StatusUpdateType] = None


class IncomingMessage(BaseModel):
    """Raw chat message handed over by the messaging collaborator."""

    text: str
    sender: Optional[str] = None
    group_id: Optional[str] = None
    agency_id: Optional[int] = None
    message_id: Optional[str] = None
    quoted_message_id: Optional[str] = None


class MessageOutcome(BaseModel):
    """What the core did with one incoming message."""

    outcome: Literal["created", "updated", "unchanged", "duplicate", "ignored", "incomplete", "not_found"]
    classification: Classification
    delivery_id: Optional[int] = None
    delivery: Optional[DeliveryRecord] = None
    reason: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class DailyReport(BaseModel):
    """Per-day delivery and cash summary."""

    date: str
    total: int
    counts_by_status: Dict[str, int] = Field(default_factory=dict)
    total_due: float = 0.0
    total_collected: float = 0.0
    total_fees: float = 0.0
    net_to_group: float = 0.0
    total_remaining: float = 0.0
    deliveries: List[DeliveryRecord] = Field(default_factory=list)
    text: str = ""


class BulkDeliveryRequest(BaseModel):
    """Raw entries; each one is validated on its own so one bad row does not reject the batch."""

    deliveries: List[Dict[str, Any]]


class BulkCreated(BaseModel):
    index: int
    id: int
    delivery: DeliveryRecord


class BulkFailure(BaseModel):
    index: int
    error: str
    data: Optional[Dict[str, Any]] = None


class BulkDeliveryResult(BaseModel):
    message: str
    success: List[BulkCreated] = Field(default_factory=list)
    failed: List[BulkFailure] = Field(default_factory=list)


class SearchResponse(BaseModel):
    data: List[DeliveryRecord]
    count: int
    query: str
