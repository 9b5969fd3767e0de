"""Fee and amount rules for status transitions."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.models.delivery import DeliveryRecord, DeliveryUpdateRequest  # noqa: E402
from app.services.transitions import (  # noqa: E402
    FixedFees,
    TRANSITION_RULES,
    TransitionKind,
    derive_transition_kind,
    money,
    needs_tariff_lookup,
    plan_transition,
)


def _delivery(**overrides) -> DeliveryRecord:
    row = {
        "id": 1,
        "phone": "612345678",
        "items": "2 robes",
        "amount_due": 15000.0,
        "amount_paid": 0.0,
        "delivery_fee": 0.0,
        "status": "pending",
        "quartier": "Bonapriso",
        "agency_id": 1,
    }
    row.update(overrides)
    return DeliveryRecord(**row)


def _apply(delivery: DeliveryRecord, tariff: float | None = None, **request) -> DeliveryRecord:
    plan = plan_transition(delivery, DeliveryUpdateRequest(**request), tariff_amount=tariff)
    return delivery.model_copy(
        update={"status": plan.status, "delivery_fee": plan.delivery_fee, "amount_paid": plan.amount_paid}
    )


def test_every_kind_has_a_rule():
    assert set(TRANSITION_RULES) == set(TransitionKind)


@pytest.mark.parametrize(
    "old,new,fee,expected",
    [
        ("pending", "delivered", None, TransitionKind.TO_DELIVERED),
        ("pending", "client_absent", None, TransitionKind.TO_CLIENT_ABSENT),
        ("delivered", "failed", None, TransitionKind.TO_FAILED),
        ("pickup", "cancelled", None, TransitionKind.TO_CANCELLED),
        ("delivered", "cancelled", 500.0, TransitionKind.TO_CANCELLED),
        ("pending", "pickup", None, TransitionKind.TO_PICKUP),
        ("pending", "present_ne_decroche_zone1", None, TransitionKind.TO_ZONE1),
        ("present_ne_decroche_zone1", "present_ne_decroche_zone2", None, TransitionKind.TO_ZONE2),
        ("present_ne_decroche_zone2", "pending", None, TransitionKind.FROM_ZONE),
        ("delivered", "pending", None, TransitionKind.FROM_DELIVERED),
        ("delivered", "delivered", 1000.0, TransitionKind.MANUAL_FEE),
        ("delivered", "delivered", None, TransitionKind.UNCHANGED),
        ("pending", None, None, TransitionKind.UNCHANGED),
    ],
)
def test_derive_transition_kind(old, new, fee, expected):
    assert derive_transition_kind(old, new, fee) == expected


def test_delivered_applies_tariff_and_recomputes_from_amount_due():
    delivered = _apply(_delivery(), tariff=1500.0, status="delivered")
    assert delivered.delivery_fee == 1500.0
    assert delivered.amount_paid == 13500.0
    assert delivered.amount_paid + delivered.delivery_fee == delivered.amount_due


def test_reapplying_delivered_is_idempotent():
    once = _apply(_delivery(), tariff=1500.0, status="delivered")
    twice = _apply(once, tariff=1500.0, status="delivered")
    assert (twice.delivery_fee, twice.amount_paid) == (once.delivery_fee, once.amount_paid)


def test_chained_fee_bearing_transitions_never_double_discount():
    picked = _apply(_delivery(), status="pickup")
    delivered = _apply(picked, tariff=1500.0, status="delivered")
    assert delivered.amount_paid == 13500.0


def test_reversal_from_delivered_resets_money():
    delivered = _apply(_delivery(), tariff=1500.0, status="delivered")
    reverted = _apply(delivered, status="pending")
    assert reverted.status == "pending"
    assert reverted.delivery_fee == 0.0
    assert reverted.amount_paid == 0.0


def test_failed_collects_nothing():
    delivered = _apply(_delivery(), tariff=1500.0, status="delivered")
    failed = _apply(delivered, status="failed")
    assert (failed.delivery_fee, failed.amount_paid) == (0.0, 0.0)


def test_cancelled_clears_fee_and_paid():
    pending = _apply(_delivery(amount_paid=5000.0, delivery_fee=300.0), status="cancelled")
    assert (pending.delivery_fee, pending.amount_paid) == (0.0, 0.0)

    picked = _apply(_delivery(), status="pickup")
    cancelled = _apply(picked, status="cancelled")
    assert (cancelled.delivery_fee, cancelled.amount_paid) == (0.0, 0.0)

    plan = plan_transition(cancelled, DeliveryUpdateRequest(delivery_fee=800.0, amount_paid=2000.0))
    assert plan.kind == TransitionKind.MANUAL_FEE
    assert (plan.delivery_fee, plan.amount_paid) == (0.0, 0.0)
    assert plan.warnings == ["manual_fee_ignored"]

    edited = plan_transition(cancelled, DeliveryUpdateRequest(amount_paid=2000.0, notes="annulé"))
    assert (edited.delivery_fee, edited.amount_paid) == (0.0, 0.0)


def test_client_absent_keeps_fee_and_forces_zero_paid():
    absent = _apply(_delivery(amount_paid=5000.0), tariff=1500.0, status="client_absent")
    assert absent.delivery_fee == 1500.0
    assert absent.amount_paid == 0.0

    manual = _apply(_delivery(), status="client_absent", delivery_fee=800.0, amount_paid=3000.0)
    assert manual.delivery_fee == 800.0
    assert manual.amount_paid == 0.0


def test_pickup_uses_flat_fee_and_ignores_tariff():
    picked = _apply(_delivery(), tariff=2500.0, status="pickup")
    assert picked.delivery_fee == 1000.0
    assert picked.amount_paid == 14000.0


def test_zone_fees_and_exit():
    zone1 = _apply(_delivery(amount_paid=2000.0), status="present_ne_decroche_zone1")
    assert (zone1.delivery_fee, zone1.amount_paid) == (500.0, 0.0)

    zone2 = _apply(zone1, status="present_ne_decroche_zone2")
    assert (zone2.delivery_fee, zone2.amount_paid) == (1000.0, 0.0)

    back = _apply(zone2, status="pending")
    assert (back.delivery_fee, back.amount_paid) == (0.0, 0.0)


def test_fixed_fees_are_configurable():
    plan = plan_transition(
        _delivery(),
        DeliveryUpdateRequest(status="pickup"),
        fees=FixedFees(pickup=1200.0, zone1=600.0, zone2=900.0),
    )
    assert plan.delivery_fee == 1200.0
    assert plan.amount_paid == 13800.0


def test_missing_tariff_keeps_previous_fee_and_warns():
    plan = plan_transition(_delivery(delivery_fee=700.0), DeliveryUpdateRequest(status="delivered"))
    assert plan.status == "delivered"
    assert plan.delivery_fee == 700.0
    assert plan.amount_paid == 14300.0
    assert plan.warnings == ["missing_tariff"]


def test_missing_quartier_does_not_block_delivery():
    plan = plan_transition(_delivery(quartier=None), DeliveryUpdateRequest(status="delivered"), tariff_amount=1500.0)
    assert plan.status == "delivered"
    assert plan.delivery_fee == 0.0
    assert plan.amount_paid == 15000.0
    assert plan.warnings == ["missing_quartier"]


def test_manual_fee_overrides_tariff_and_drives_amount_paid():
    delivered = _apply(_delivery(), tariff=1500.0, status="delivered", delivery_fee=2000.0)
    assert delivered.delivery_fee == 2000.0
    assert delivered.amount_paid == 13000.0

    adjusted = _apply(delivered, delivery_fee=1000.0)
    assert adjusted.status == "delivered"
    assert adjusted.delivery_fee == 1000.0
    assert adjusted.amount_paid == 14000.0


def test_supplied_amount_paid_is_kept():
    delivered = _apply(_delivery(), tariff=1500.0, status="delivered", amount_paid=15000.0)
    assert delivered.delivery_fee == 1500.0
    assert delivered.amount_paid == 15000.0


def test_opaque_status_has_no_money_side_effects():
    plan = plan_transition(_delivery(delivery_fee=300.0, amount_paid=100.0), DeliveryUpdateRequest(status="postponed"))
    assert plan.kind == TransitionKind.UNCHANGED
    assert plan.status == "postponed"
    assert (plan.delivery_fee, plan.amount_paid) == (300.0, 100.0)


def test_needs_tariff_lookup_only_for_priced_targets_without_manual_fee():
    assert needs_tariff_lookup(TransitionKind.TO_DELIVERED, DeliveryUpdateRequest(status="delivered"))
    assert needs_tariff_lookup(TransitionKind.TO_CLIENT_ABSENT, DeliveryUpdateRequest(status="client_absent"))
    assert not needs_tariff_lookup(
        TransitionKind.TO_DELIVERED, DeliveryUpdateRequest(status="delivered", delivery_fee=100.0)
    )
    assert not needs_tariff_lookup(TransitionKind.TO_PICKUP, DeliveryUpdateRequest(status="pickup"))


def test_money_rounds_half_up_and_clamps():
    assert money(10.005) == 10.01
    assert money(-5) == 0.0
    assert money(None) == 0.0
    assert money(1499.999) == 1500.0


def test_tariff_example_twelve_thousand_due():
    plan = plan_transition(_delivery(amount_due=12000.0), DeliveryUpdateRequest(status="delivered"), tariff_amount=2000.0)
    assert (plan.delivery_fee, plan.amount_paid) == (2000.0, 10000.0)


def test_amount_due_change_on_settled_row_recomputes_paid():
    delivered = _apply(_delivery(amount_due=12000.0), tariff=2000.0, status="delivered")
    assert (delivered.delivery_fee, delivered.amount_paid) == (2000.0, 10000.0)

    raised = _apply(delivered, amount_due=15000.0)
    assert raised.delivery_fee == 2000.0
    assert raised.amount_paid == 13000.0

    supplied = _apply(delivered, amount_due=15000.0, amount_paid=12000.0)
    assert supplied.amount_paid == 12000.0

    pending = _apply(_delivery(amount_paid=5000.0), amount_due=20000.0)
    assert pending.amount_paid == 5000.0


START_ROWS = {
    "delivered": {"status": "delivered", "delivery_fee": 1500.0, "amount_paid": 13500.0},
    "pickup": {"status": "pickup", "delivery_fee": 1000.0, "amount_paid": 14000.0},
    "zone1": {"status": "present_ne_decroche_zone1", "delivery_fee": 500.0, "amount_paid": 0.0},
    "zone2": {"status": "present_ne_decroche_zone2", "delivery_fee": 1000.0, "amount_paid": 0.0},
    "pending": {"status": "pending", "delivery_fee": 0.0, "amount_paid": 5000.0},
}
SUPPLIED = {
    "plain": {},
    "paid": {"amount_paid": 3000.0},
    "fee": {"delivery_fee": 700.0},
    "paid_and_fee": {"amount_paid": 3000.0, "delivery_fee": 700.0},
}


@pytest.mark.parametrize("supplied", sorted(SUPPLIED))
@pytest.mark.parametrize("target", ["client_absent", "present_ne_decroche_zone1", "present_ne_decroche_zone2"])
@pytest.mark.parametrize("start", sorted(START_ROWS))
def test_no_show_targets_always_force_zero_paid(start, target, supplied):
    plan = plan_transition(
        _delivery(**START_ROWS[start]),
        DeliveryUpdateRequest(status=target, **SUPPLIED[supplied]),
        tariff_amount=1500.0,
    )
    assert plan.status == target
    assert plan.amount_paid == 0.0
    if "delivery_fee" in SUPPLIED[supplied]:
        assert plan.delivery_fee == 700.0
