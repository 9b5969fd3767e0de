"""Fee and amount rules applied when a delivery changes status.

Every rule recomputes `amount_paid` from `amount_due`, never from the current
`amount_paid`, so re-applying or chaining transitions cannot double-discount.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from app.models.delivery import DeliveryRecord, DeliveryStatus, DeliveryUpdateRequest

_CENT = Decimal("0.01")

DELIVERED = DeliveryStatus.DELIVERED.value
CLIENT_ABSENT = DeliveryStatus.CLIENT_ABSENT.value
FAILED = DeliveryStatus.FAILED.value
PICKUP = DeliveryStatus.PICKUP.value
ZONE1 = DeliveryStatus.PRESENT_NE_DECROCHE_ZONE1.value
ZONE2 = DeliveryStatus.PRESENT_NE_DECROCHE_ZONE2.value
CANCELLED = DeliveryStatus.CANCELLED.value

ZONE_STATUSES = frozenset({ZONE1, ZONE2})
# Leaving delivered for one of these is handled by the target's own rule.
FEE_BEARING_EXITS = frozenset({CLIENT_ABSENT, FAILED, PICKUP, ZONE1, ZONE2})
ZERO_PAID_STATUSES = frozenset({CLIENT_ABSENT, ZONE1, ZONE2})
# Nothing is collected in these, whatever the request supplies.
ZERO_FEE_STATUSES = frozenset({FAILED, CANCELLED})
SETTLED_STATUSES = frozenset({DELIVERED, PICKUP})


def money(value: float | int | Decimal | None) -> float:
    """Round to cents (half up) and clamp at zero."""
    if value is None:
        return 0.0
    amount = Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)
    if amount < 0:
        amount = Decimal("0.00")
    return float(amount)


class TransitionKind(str, Enum):
    TO_DELIVERED = "to_delivered"
    TO_CLIENT_ABSENT = "to_client_absent"
    TO_FAILED = "to_failed"
    TO_CANCELLED = "to_cancelled"
    TO_PICKUP = "to_pickup"
    TO_ZONE1 = "to_zone1"
    TO_ZONE2 = "to_zone2"
    FROM_ZONE = "from_zone"
    FROM_DELIVERED = "from_delivered"
    MANUAL_FEE = "manual_fee"
    UNCHANGED = "unchanged"


_TARGET_KINDS = (
    (DELIVERED, TransitionKind.TO_DELIVERED),
    (CLIENT_ABSENT, TransitionKind.TO_CLIENT_ABSENT),
    (FAILED, TransitionKind.TO_FAILED),
    (CANCELLED, TransitionKind.TO_CANCELLED),
    (PICKUP, TransitionKind.TO_PICKUP),
    (ZONE1, TransitionKind.TO_ZONE1),
    (ZONE2, TransitionKind.TO_ZONE2),
)


def _normalize_status(status: object) -> str:
    if isinstance(status, Enum):
        return str(status.value)
    return str(status or "").strip().lower()


def derive_transition_kind(old_status: str, new_status: Optional[str], manual_fee: Optional[float]) -> TransitionKind:
    """Pick the single rule that applies to this (old, new) status pair."""
    old = _normalize_status(old_status)
    new = _normalize_status(new_status) if new_status is not None else old

    if new != old:
        for target, kind in _TARGET_KINDS:
            if new == target:
                return kind
        if old in ZONE_STATUSES:
            return TransitionKind.FROM_ZONE
        if old == DELIVERED and new not in FEE_BEARING_EXITS:
            return TransitionKind.FROM_DELIVERED

    if manual_fee is not None:
        return TransitionKind.MANUAL_FEE
    return TransitionKind.UNCHANGED


@dataclass(frozen=True)
class FixedFees:
    """Flat fees for statuses not priced by quartier."""

    pickup: float = 1000.0
    zone1: float = 500.0
    zone2: float = 1000.0


@dataclass
class TransitionContext:
    delivery: DeliveryRecord
    new_status: str
    amount_due: float
    manual_fee: Optional[float]
    supplied_paid: Optional[float]
    tariff_amount: Optional[float]
    quartier: Optional[str]
    fees: FixedFees
    amount_due_changed: bool = False


@dataclass
class TransitionPlan:
    kind: TransitionKind
    status: str
    delivery_fee: float
    amount_paid: float
    warnings: List[str] = field(default_factory=list)


RuleResult = Tuple[float, float, List[str]]
TransitionRule = Callable[[TransitionContext], RuleResult]


def _paid_after_fee(ctx: TransitionContext, fee: float) -> float:
    if ctx.supplied_paid is not None:
        return money(ctx.supplied_paid)
    return money(ctx.amount_due - fee)


def _tariff_fee(ctx: TransitionContext) -> Tuple[float, List[str]]:
    """Manual fee, else the quartier tariff, else the current fee with a warning."""
    if ctx.manual_fee is not None:
        return money(ctx.manual_fee), []
    if not (ctx.quartier or "").strip():
        return money(ctx.delivery.delivery_fee), ["missing_quartier"]
    if ctx.tariff_amount is None:
        return money(ctx.delivery.delivery_fee), ["missing_tariff"]
    return money(ctx.tariff_amount), []


def _fixed_fee(ctx: TransitionContext, default: float) -> float:
    return money(ctx.manual_fee if ctx.manual_fee is not None else default)


def _to_delivered(ctx: TransitionContext) -> RuleResult:
    fee, warnings = _tariff_fee(ctx)
    return fee, _paid_after_fee(ctx, fee), warnings


def _to_client_absent(ctx: TransitionContext) -> RuleResult:
    fee, warnings = _tariff_fee(ctx)
    return fee, 0.0, warnings


def _nothing_collected(ctx: TransitionContext) -> RuleResult:
    warnings = ["manual_fee_ignored"] if ctx.manual_fee else []
    return 0.0, 0.0, warnings


def _to_pickup(ctx: TransitionContext) -> RuleResult:
    fee = _fixed_fee(ctx, ctx.fees.pickup)
    return fee, _paid_after_fee(ctx, fee), []


def _to_zone1(ctx: TransitionContext) -> RuleResult:
    return _fixed_fee(ctx, ctx.fees.zone1), 0.0, []


def _to_zone2(ctx: TransitionContext) -> RuleResult:
    return _fixed_fee(ctx, ctx.fees.zone2), 0.0, []


def _from_zone(ctx: TransitionContext) -> RuleResult:
    fee = _fixed_fee(ctx, 0.0)
    paid = ctx.supplied_paid if ctx.supplied_paid is not None else ctx.delivery.amount_paid
    return fee, money(paid), []


def _from_delivered(ctx: TransitionContext) -> RuleResult:
    fee = _fixed_fee(ctx, 0.0)
    return fee, money(ctx.supplied_paid if ctx.supplied_paid is not None else 0.0), []


def _manual_fee(ctx: TransitionContext) -> RuleResult:
    if ctx.new_status in ZERO_FEE_STATUSES:
        return 0.0, 0.0, ["manual_fee_ignored"]
    fee = money(ctx.manual_fee)
    if ctx.new_status in ZERO_PAID_STATUSES:
        return fee, 0.0, []
    return fee, _paid_after_fee(ctx, fee), []


def _unchanged(ctx: TransitionContext) -> RuleResult:
    fee = money(ctx.delivery.delivery_fee)
    if ctx.new_status in ZERO_FEE_STATUSES:
        return 0.0, 0.0, []
    if ctx.new_status in ZERO_PAID_STATUSES:
        return fee, 0.0, []
    if ctx.amount_due_changed and ctx.new_status in SETTLED_STATUSES:
        return fee, _paid_after_fee(ctx, fee), []
    paid = ctx.supplied_paid if ctx.supplied_paid is not None else ctx.delivery.amount_paid
    return fee, money(paid), []


TRANSITION_RULES: Dict[TransitionKind, TransitionRule] = {
    TransitionKind.TO_DELIVERED: _to_delivered,
    TransitionKind.TO_CLIENT_ABSENT: _to_client_absent,
    TransitionKind.TO_FAILED: _nothing_collected,
    TransitionKind.TO_CANCELLED: _nothing_collected,
    TransitionKind.TO_PICKUP: _to_pickup,
    TransitionKind.TO_ZONE1: _to_zone1,
    TransitionKind.TO_ZONE2: _to_zone2,
    TransitionKind.FROM_ZONE: _from_zone,
    TransitionKind.FROM_DELIVERED: _from_delivered,
    TransitionKind.MANUAL_FEE: _manual_fee,
    TransitionKind.UNCHANGED: _unchanged,
}


def needs_tariff_lookup(kind: TransitionKind, request: DeliveryUpdateRequest) -> bool:
    """Only quartier-priced targets without a manual fee read the tariff table."""
    return kind in (TransitionKind.TO_DELIVERED, TransitionKind.TO_CLIENT_ABSENT) and request.delivery_fee is None


def plan_transition(
    delivery: DeliveryRecord,
    request: DeliveryUpdateRequest,
    tariff_amount: Optional[float] = None,
    fees: Optional[FixedFees] = None,
) -> TransitionPlan:
    """Compute status, fee and paid amount for `request` applied to `delivery`."""
    new_status = _normalize_status(request.status) if request.status is not None else delivery.status
    kind = derive_transition_kind(delivery.status, new_status, request.delivery_fee)
    amount_due = request.amount_due if request.amount_due is not None else delivery.amount_due
    quartier = request.quartier if (request.quartier or "").strip() else delivery.quartier

    ctx = TransitionContext(
        delivery=delivery,
        new_status=new_status,
        amount_due=money(amount_due),
        manual_fee=request.delivery_fee,
        supplied_paid=request.amount_paid,
        tariff_amount=tariff_amount,
        quartier=quartier,
        fees=fees or FixedFees(),
        amount_due_changed=money(amount_due) != money(delivery.amount_due),
    )
    delivery_fee, amount_paid, warnings = TRANSITION_RULES[kind](ctx)
    return TransitionPlan(
        kind=kind,
        status=new_status,
        delivery_fee=delivery_fee,
        amount_paid=amount_paid,
        warnings=warnings,
    )
