"""Classification and extraction of group-chat messages."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.models.delivery import StatusUpdateType  # noqa: E402
from app.services.classifier import STATUS_RULES, classify, is_delivery_message, is_status_update  # noqa: E402
from app.services.delivery_parser import parse_delivery_message  # noqa: E402
from app.services.status_parser import parse_status_update  # noqa: E402


def test_status_rules_are_evaluated_in_documented_order():
    assert [rule.subtype for rule in STATUS_RULES] == [
        StatusUpdateType.PAYMENT,
        StatusUpdateType.DELIVERED,
        StatusUpdateType.FAILED,
        StatusUpdateType.PICKUP,
        StatusUpdateType.MODIFY,
        StatusUpdateType.NUMBER_CHANGE,
        StatusUpdateType.PENDING,
        StatusUpdateType.CLIENT_ABSENT,
        StatusUpdateType.PRESENT_NE_DECROCHE_ZONE1,
        StatusUpdateType.PRESENT_NE_DECROCHE_ZONE2,
    ]


@pytest.mark.parametrize(
    "text,subtype",
    [
        ("612345678 livré", StatusUpdateType.DELIVERED),
        ("612345678 collecté 5k", StatusUpdateType.PAYMENT),
        ("Livré et collecté 612345678", StatusUpdateType.PAYMENT),
        ("612345678 échec", StatusUpdateType.FAILED),
        ("612345678 ne répond pas", StatusUpdateType.FAILED),
        ("612345678 elle passe au bureau", StatusUpdateType.PICKUP),
        ("Modifier 612345678 prend 3 robes", StatusUpdateType.MODIFY),
        ("Changer numéro 612345678 699887766", StatusUpdateType.NUMBER_CHANGE),
        ("612345678 en attente", StatusUpdateType.PENDING),
        ("612345678 client absent", StatusUpdateType.CLIENT_ABSENT),
        ("612345678 présent ne décroche pas zone 1", StatusUpdateType.PRESENT_NE_DECROCHE_ZONE1),
        ("612345678 présent ne décroche pas zone 2", StatusUpdateType.PRESENT_NE_DECROCHE_ZONE2),
    ],
)
def test_classify_status_messages(text, subtype):
    result = classify(text)
    assert result.kind == "status"
    assert result.subtype == subtype
    assert is_status_update(text)


def test_classify_new_delivery_and_noise():
    assert classify("612345678\n2 robes + 1 sac\n15k\nBonapriso").kind == "delivery"
    assert is_delivery_message("612345678 2 robes 15k Akwa")
    assert classify("Bonjour à tous").kind == "unknown"
    assert classify("612345678\nrobe rouge").kind == "unknown"
    assert classify("").kind == "unknown"


def test_parse_delivery_strict_layout():
    parsed = parse_delivery_message("612345678\n2 robes + 1 sac\n15k\nBonapriso")
    assert parsed.valid
    assert parsed.format == "strict"
    assert parsed.phone == "612345678"
    assert parsed.items == "2 robes + 1 sac"
    assert parsed.amount_due == 15000
    assert parsed.quartier == "Bonapriso"


def test_parse_delivery_quartier_first_layout():
    parsed = parse_delivery_message("Bessengue\n1 sac\n2 robes\n14000\n651 07 35 74")
    assert parsed.format == "alternative"
    assert parsed.phone == "651073574"
    assert parsed.items == "1 sac, 2 robes"
    assert parsed.amount_due == 14000
    assert parsed.quartier == "Bessengue"


def test_parse_delivery_fallback_uses_last_line_as_quartier():
    parsed = parse_delivery_message("612345678\n3 robes\n1 sac\n20000\nAkwa")
    assert parsed.format == "fallback"
    assert parsed.phone == "612345678"
    assert parsed.amount_due == 20000
    assert parsed.items == "3 robes, 1 sac"
    assert parsed.quartier == "Akwa"


def test_parse_delivery_single_line_scans_whole_text():
    parsed = parse_delivery_message("612345678 2 robes 15k Akwa")
    assert parsed.phone == "612345678"
    assert parsed.amount_due == 15000
    assert parsed.items == "2 robes"
    assert parsed.quartier == "Akwa"


def test_parse_delivery_partial_and_invalid():
    only_phone = parse_delivery_message("612345678\nrobe rouge")
    assert only_phone.valid
    assert only_phone.amount_due is None
    assert only_phone.items == "robe rouge"

    nothing = parse_delivery_message("Bonjour tout le monde")
    assert not nothing.valid


def test_parse_status_reads_phone_after_keyword():
    update = parse_status_update("Livré 612345678")
    assert update.type == StatusUpdateType.DELIVERED
    assert update.phone == "612345678"

    before = parse_status_update("612345678 livré")
    assert before.phone == "612345678"


def test_parse_payment_amount_and_missing_phone():
    update = parse_status_update("collecté 5k 612345678")
    assert update.type == StatusUpdateType.PAYMENT
    assert update.phone == "612345678"
    assert update.amount == 5000

    full = parse_status_update("612345678 payé")
    assert full.amount is None

    anonymous = parse_status_update("payé 5000")
    assert anonymous.phone is None
    assert anonymous.amount == 5000


def test_parse_modify_items_or_amount():
    items = parse_status_update("Modifier 612345678 prend 3 robes et 1 sac")
    assert items.type == StatusUpdateType.MODIFY
    assert items.phone == "612345678"
    assert items.items == "3 robes et 1 sac"
    assert items.amount is None

    amount = parse_status_update("Modifier 612345678 montant 20000")
    assert amount.items is None
    assert amount.amount == 20000


def test_parse_number_change_needs_two_phones():
    update = parse_status_update("Changer numéro 612345678 699887766")
    assert update.type == StatusUpdateType.NUMBER_CHANGE
    assert update.phone == "612345678"
    assert update.new_phone == "699887766"

    incomplete = parse_status_update("Nouveau numéro 612345678")
    assert incomplete.phone == "612345678"
    assert incomplete.new_phone is None


def test_parse_status_returns_none_without_keyword():
    assert parse_status_update("Bonjour") is None
    assert parse_status_update("") is None
