"""Orchestrates chat ingestion and delivery updates over the store."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from app.core.config import Settings, get_settings
from app.core.logging import logger
from app.models.delivery import (
    BulkCreated,
    BulkDeliveryResult,
    BulkFailure,
    Classification,
    DeliveryCreateRequest,
    DeliveryRecord,
    DeliveryStatus,
    DeliveryUpdateRequest,
    HistoryEntry,
    IncomingMessage,
    MessageOutcome,
    StatusUpdate,
    StatusUpdateType,
)
from app.services.classifier import classify
from app.services.delivery_parser import parse_delivery_message
from app.services.delivery_store import DeliveryStore, delivery_store
from app.services.history import FieldChange, HistoryRecorder, diff_delivery
from app.services.normalizers import normalize_phone
from app.services.notifier import ConfirmationNotifier
from app.services.status_parser import parse_status_update
from app.services.transitions import (
    FixedFees,
    TransitionPlan,
    derive_transition_kind,
    money,
    needs_tariff_lookup,
    plan_transition,
)

ORIGINAL_MESSAGE_PREVIEW = 100
MAX_BULK_DELIVERIES = 100
BULK_REQUIRED_FIELDS = ("phone", "items", "amount_due")

STATUS_TARGETS = {
    StatusUpdateType.DELIVERED: DeliveryStatus.DELIVERED.value,
    StatusUpdateType.FAILED: DeliveryStatus.FAILED.value,
    StatusUpdateType.PICKUP: DeliveryStatus.PICKUP.value,
    StatusUpdateType.PENDING: DeliveryStatus.PENDING.value,
    StatusUpdateType.CLIENT_ABSENT: DeliveryStatus.CLIENT_ABSENT.value,
    StatusUpdateType.PRESENT_NE_DECROCHE_ZONE1: DeliveryStatus.PRESENT_NE_DECROCHE_ZONE1.value,
    StatusUpdateType.PRESENT_NE_DECROCHE_ZONE2: DeliveryStatus.PRESENT_NE_DECROCHE_ZONE2.value,
}

_PLAIN_FIELDS = ("phone", "customer_name", "items", "amount_due", "quartier", "notes", "carrier")


class DeliveryNotFoundError(KeyError):
    """Raised when a delivery id does not exist."""


class DeliveryEngine:
    """Turns chat messages and operator edits into delivery writes plus history."""

    def __init__(
        self,
        store: Optional[DeliveryStore] = None,
        notifier: Optional[ConfirmationNotifier] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store or delivery_store
        self.notifier = notifier or ConfirmationNotifier(self.settings)
        self.history = HistoryRecorder(self.store)

    def fixed_fees(self) -> FixedFees:
        return FixedFees(
            pickup=self.settings.pickup_fee,
            zone1=self.settings.zone1_fee,
            zone2=self.settings.zone2_fee,
        )

    # Reads

    def get_delivery(self, delivery_id: int) -> DeliveryRecord:
        delivery = self.store.get_delivery(delivery_id)
        if delivery is None:
            raise DeliveryNotFoundError(delivery_id)
        return delivery

    def list_history(self, delivery_id: int) -> List[HistoryEntry]:
        self.get_delivery(delivery_id)
        return self.store.list_history(delivery_id)

    # Writes

    def _agency_for(self, delivery: DeliveryRecord) -> Optional[int]:
        if delivery.agency_id is not None:
            return delivery.agency_id
        return self.settings.default_agency_id

    def _tariff_amount(self, delivery: DeliveryRecord, request: DeliveryUpdateRequest) -> Optional[float]:
        quartier = request.quartier if (request.quartier or "").strip() else delivery.quartier
        tariff = self.store.get_tariff(self._agency_for(delivery), quartier)
        return tariff.tarif_amount if tariff else None

    def _plan(self, delivery: DeliveryRecord, request: DeliveryUpdateRequest) -> TransitionPlan:
        kind = derive_transition_kind(delivery.status, request.status, request.delivery_fee)
        tariff_amount = self._tariff_amount(delivery, request) if needs_tariff_lookup(kind, request) else None
        plan = plan_transition(delivery, request, tariff_amount=tariff_amount, fees=self.fixed_fees())
        if plan.warnings:
            logger.warning(
                "Transition applied without full pricing metadata",
                delivery_id=delivery.id or None,
                transition=plan.kind.value,
                warnings=plan.warnings,
                quartier=request.quartier or delivery.quartier,
                agency_id=self._agency_for(delivery),
            )
        return plan

    def _apply(
        self,
        delivery: DeliveryRecord,
        request: DeliveryUpdateRequest,
        actor: str,
    ) -> Tuple[DeliveryRecord, List[FieldChange], List[str]]:
        """Plan, write once, then record history. Returns (row, changes, warnings)."""
        if request.is_empty():
            return delivery, [], []

        plan = self._plan(delivery, request)

        updates: Dict[str, Any] = request.model_dump(include=set(_PLAIN_FIELDS), exclude_none=True)
        if "phone" in updates:
            updates["phone"] = normalize_phone(updates["phone"]) or updates["phone"].strip()
        if "amount_due" in updates:
            updates["amount_due"] = money(updates["amount_due"])
        updates["status"] = plan.status
        updates["delivery_fee"] = plan.delivery_fee
        updates["amount_paid"] = plan.amount_paid

        proposed = {**delivery.model_dump(), **updates}
        changes = diff_delivery(delivery, proposed)
        if not changes:
            return delivery, [], plan.warnings

        updated = self.store.update_delivery(delivery.id, {change.field: updates[change.field] for change in changes})
        self.history.record_changes(delivery, updated, actor, changes=changes)
        logger.info(
            "Delivery updated",
            delivery_id=delivery.id,
            transition=plan.kind.value,
            fields=[change.field for change in changes],
            actor=actor,
        )
        return updated, changes, plan.warnings

    def update_delivery(self, delivery_id: int, request: DeliveryUpdateRequest, actor: str) -> DeliveryRecord:
        delivery = self.get_delivery(delivery_id)
        updated, _, _ = self._apply(delivery, request, actor)
        return updated

    def create_delivery(self, request: DeliveryCreateRequest, actor: str) -> DeliveryRecord:
        """Register a delivery; a non-pending initial status goes through the transition rules."""
        phone = normalize_phone(request.phone) or request.phone.strip()
        fields = request.model_dump(
            exclude={"status", "delivery_fee", "amount_paid"},
        )
        fields["phone"] = phone
        fields["amount_due"] = money(request.amount_due)
        if fields.get("agency_id") is None:
            fields["agency_id"] = self.settings.default_agency_id

        initial = DeliveryUpdateRequest(
            status=request.status if request.status != DeliveryStatus.PENDING.value else None,
            delivery_fee=request.delivery_fee,
            amount_paid=request.amount_paid,
        )
        if not initial.is_empty():
            # Priced against a pending draft, so the row is inserted once with its final money.
            draft = DeliveryRecord(id=0, **fields)
            plan = self._plan(draft, initial)
            fields.update(status=plan.status, delivery_fee=plan.delivery_fee, amount_paid=plan.amount_paid)

        delivery_id = self.store.create_delivery(fields)
        delivery = self.get_delivery(delivery_id)
        self.history.record_created(delivery, actor)
        return delivery

    def bulk_create(self, entries: List[Any], actor: str) -> BulkDeliveryResult:
        """Create each entry independently; a bad entry is reported without stopping the batch."""
        if not entries:
            raise ValueError("Deliveries list cannot be empty")
        if len(entries) > MAX_BULK_DELIVERIES:
            raise ValueError(f"Maximum {MAX_BULK_DELIVERIES} deliveries per bulk insert")

        created: List[BulkCreated] = []
        failed: List[BulkFailure] = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict) or not all(entry.get(key) for key in BULK_REQUIRED_FIELDS):
                failed.append(
                    BulkFailure(
                        index=index,
                        error=f"Missing required fields: {', '.join(BULK_REQUIRED_FIELDS)}",
                        data=entry if isinstance(entry, dict) else None,
                    )
                )
                continue
            try:
                delivery = self.create_delivery(DeliveryCreateRequest.model_validate(entry), actor)
            except (ValidationError, ValueError) as exc:
                failed.append(BulkFailure(index=index, error=str(exc), data=entry))
                continue
            created.append(BulkCreated(index=index, id=delivery.id, delivery=delivery))

        logger.info("Bulk delivery insert", created=len(created), failed=len(failed), actor=actor)
        return BulkDeliveryResult(
            message=f"Created {len(created)} delivery/deliveries, {len(failed)} failed",
            success=created,
            failed=failed,
        )

    # Chat ingestion

    def process_message(self, message: IncomingMessage) -> MessageOutcome:
        text = (message.text or "").strip()
        if not self.settings.accepts_group(message.group_id):
            return MessageOutcome(
                outcome="ignored",
                classification=Classification(kind="unknown"),
                reason="group_not_tracked",
            )

        classification = classify(text)
        if classification.kind == "status":
            return self._handle_status(message, text, classification)
        if classification.kind == "delivery":
            return self._handle_new_delivery(message, text, classification)

        logger.info("Message ignored", group_id=message.group_id, message_id=message.message_id)
        return MessageOutcome(outcome="ignored", classification=classification, reason="unrecognized")

    def _handle_new_delivery(
        self,
        message: IncomingMessage,
        text: str,
        classification: Classification,
    ) -> MessageOutcome:
        parsed = parse_delivery_message(text)
        existing = self.store.find_open_delivery_by_phone(parsed.phone)
        if existing is not None:
            logger.info("Open delivery already exists for phone", phone=parsed.phone, delivery_id=existing.id)
            return MessageOutcome(
                outcome="duplicate",
                classification=classification,
                delivery_id=existing.id,
                delivery=existing,
                reason="open_delivery_exists",
            )

        agency_id = message.agency_id if message.agency_id is not None else self.settings.default_agency_id
        delivery_id = self.store.create_delivery(
            {
                "phone": parsed.phone,
                "customer_name": parsed.customer_name,
                "items": parsed.items or "",
                "amount_due": float(parsed.amount_due or 0),
                "quartier": parsed.quartier,
                "carrier": parsed.carrier,
                "notes": f"Original message: {text[:ORIGINAL_MESSAGE_PREVIEW]}",
                "group_id": message.group_id,
                "agency_id": agency_id,
                "whatsapp_message_id": message.message_id,
            }
        )
        delivery = self.get_delivery(delivery_id)
        self.history.record_created(delivery, self.settings.bot_actor)
        if self.notifier.enabled():
            self.notifier.confirm_created(delivery)
        return MessageOutcome(
            outcome="created",
            classification=classification,
            delivery_id=delivery.id,
            delivery=delivery,
        )

    def _request_for_status(
        self,
        update: StatusUpdate,
        delivery: DeliveryRecord,
        is_reply: bool,
    ) -> Tuple[Optional[DeliveryUpdateRequest], Optional[str]]:
        """Map a parsed status command onto an update request, or a reason it cannot be."""
        if update.type in STATUS_TARGETS:
            return DeliveryUpdateRequest(status=STATUS_TARGETS[update.type]), None

        if update.type == StatusUpdateType.PAYMENT:
            amount_due = delivery.amount_due
            remaining = money(amount_due - delivery.amount_paid)
            amount = update.amount if update.amount is not None else (remaining or amount_due)
            new_paid = min(money(amount_due), money(delivery.amount_paid + amount))
            if amount_due > 0 and new_paid >= amount_due:
                return DeliveryUpdateRequest(status=DeliveryStatus.DELIVERED.value, amount_paid=new_paid), None
            return DeliveryUpdateRequest(amount_paid=new_paid), None

        if update.type == StatusUpdateType.MODIFY:
            if update.items:
                return DeliveryUpdateRequest(items=update.items), None
            if update.amount is not None:
                return DeliveryUpdateRequest(amount_due=float(update.amount)), None
            return None, "nothing_to_modify"

        if update.type == StatusUpdateType.NUMBER_CHANGE:
            new_phone = update.new_phone
            if new_phone is None and is_reply and update.phone and update.phone != delivery.phone:
                new_phone = update.phone
            if new_phone is None:
                return None, "missing_new_phone"
            return DeliveryUpdateRequest(phone=new_phone), None

        return None, "unsupported_status"

    def _handle_status(
        self,
        message: IncomingMessage,
        text: str,
        classification: Classification,
    ) -> MessageOutcome:
        update = parse_status_update(text)
        if update is None:
            return MessageOutcome(outcome="ignored", classification=classification, reason="unrecognized")

        reply_target = None
        if message.quoted_message_id:
            reply_target = self.store.find_delivery_by_message_id(message.quoted_message_id)

        delivery = reply_target
        if delivery is None:
            if not update.phone:
                logger.info("Status update without phone", subtype=update.type.value, message_id=message.message_id)
                return MessageOutcome(outcome="incomplete", classification=classification, reason="missing_phone")
            delivery = self.store.find_delivery_for_update(update.phone)
        if delivery is None:
            logger.warning("No delivery found for status update", phone=update.phone, subtype=update.type.value)
            return MessageOutcome(outcome="not_found", classification=classification, reason="delivery_not_found")

        request, reason = self._request_for_status(update, delivery, is_reply=reply_target is not None)
        if request is None:
            logger.info("Incomplete status update", delivery_id=delivery.id, subtype=update.type.value, reason=reason)
            return MessageOutcome(
                outcome="incomplete",
                classification=classification,
                delivery_id=delivery.id,
                delivery=delivery,
                reason=reason,
            )

        updated, changes, warnings = self._apply(delivery, request, self.settings.bot_actor)
        return MessageOutcome(
            outcome="updated" if changes else "unchanged",
            classification=classification,
            delivery_id=updated.id,
            delivery=updated,
            warnings=warnings,
        )


delivery_engine = DeliveryEngine()
