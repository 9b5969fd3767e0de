"""Unit tests for delivery, tariff and history persistence."""
from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

TMP = Path(__file__).resolve().parent / ".tmp_ledger"
TMP.mkdir(parents=True, exist_ok=True)
os.environ["DELIVERY_DB_PATH"] = str(TMP / "deliveries.db")
os.environ["DEFAULT_AGENCY_ID"] = "1"

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.models.delivery import HistoryEntry  # noqa: E402
from app.services.delivery_store import DeliveryStore  # noqa: E402
from app.services.history import HistoryRecorder, diff_delivery  # noqa: E402


@pytest.fixture()
def store(tmp_path):
    return DeliveryStore(db_path=str(tmp_path / "ledger.db"))


def test_create_and_lookup_by_phone_and_message_id(store):
    first = store.create_delivery({"phone": "612345678", "items": "2 robes", "amount_due": 15000})
    second = store.create_delivery(
        {"phone": "612345678", "items": "1 sac", "amount_due": 8000, "whatsapp_message_id": "wamid-2"}
    )

    latest = store.find_delivery_for_update("612345678")
    assert latest.id == second
    assert latest.status == "pending"
    assert latest.amount_paid == 0.0

    store.update_delivery(second, {"status": "delivered"})
    open_row = store.find_open_delivery_by_phone("612345678")
    assert open_row.id == first
    assert store.find_delivery_for_update("612345678").id == second

    assert store.find_delivery_by_message_id("wamid-2").id == second
    assert store.find_delivery_by_message_id("unknown") is None
    assert store.find_delivery_for_update("699000000") is None


def test_update_rejects_unknown_fields_and_missing_rows(store):
    delivery_id = store.create_delivery({"phone": "612345678", "amount_due": 1000})
    with pytest.raises(ValueError):
        store.update_delivery(delivery_id, {"secret": 1})
    with pytest.raises(KeyError):
        store.update_delivery(9999, {"status": "failed"})
    with pytest.raises(ValueError):
        store.create_delivery({"items": "no phone"})


def test_list_deliveries_filters(store):
    store.create_delivery({"phone": "612345678", "amount_due": 1000})
    delivered = store.create_delivery({"phone": "699887766", "amount_due": 2000})
    store.update_delivery(delivered, {"status": "delivered"})

    assert [row.id for row in store.list_deliveries(status="delivered")] == [delivered]
    today = store.get_delivery(delivered).created_at.date().isoformat()
    assert len(store.list_deliveries(date=today)) == 2
    assert store.list_deliveries(date="1999-01-01") == []
    assert len(store.list_deliveries(limit=1)) == 1


def test_tariffs_match_quartier_case_insensitively(store):
    store.upsert_tariff(1, "Bonapriso", 1500)
    assert store.get_tariff(1, "  BONAPRISO ").tarif_amount == 1500
    assert store.get_tariff(2, "Bonapriso") is None
    assert store.get_tariff(1, None) is None

    updated = store.upsert_tariff(1, "bonapriso", 2000)
    assert updated.tarif_amount == 2000
    assert len(store.list_tariffs(agency_id=1)) == 1

    assert store.delete_tariff(1, "Bonapriso") is True
    assert store.delete_tariff(1, "Bonapriso") is False
    with pytest.raises(ValueError):
        store.upsert_tariff(1, "Akwa", -1)


def test_history_round_trip_and_field_diff(store):
    delivery_id = store.create_delivery({"phone": "612345678", "amount_due": 15000})
    before = store.get_delivery(delivery_id)
    after = store.update_delivery(delivery_id, {"status": "delivered", "amount_paid": 13500, "delivery_fee": 1500})

    changes = diff_delivery(before, after)
    assert [change.action for change in changes] == [
        "updated_amount_paid",
        "updated_status",
        "updated_delivery_fee",
    ]
    assert changes[1].label == "Statut"

    recorder = HistoryRecorder(store)
    recorder.record_created(before, actor="bot")
    recorder.record_changes(before, after, actor="agent")
    store.append_history(HistoryEntry(delivery_id=delivery_id, action="note", actor="agent"))

    history = store.list_history(delivery_id)
    assert [entry.action for entry in history][:2] == ["created", "updated_amount_paid"]
    assert history[0].new_value["phone"] == "612345678"
    assert history[2].old_value == "pending"
    assert history[2].new_value == "delivered"
    assert len(history) == 5


def test_diff_compares_money_numerically(store):
    delivery_id = store.create_delivery({"phone": "612345678", "amount_due": 15000})
    row = store.get_delivery(delivery_id)
    assert diff_delivery(row, {**row.model_dump(), "amount_due": 15000}) == []


def test_reset_clears_rows(store):
    store.create_delivery({"phone": "612345678", "amount_due": 1000})
    store.upsert_tariff(1, "Akwa", 1000)
    store.reset()
    assert store.list_deliveries() == []
    assert store.list_tariffs() == []


def test_search_matches_substrings_newest_first(store):
    first = store.create_delivery({"phone": "612345678", "items": "2 robes", "quartier": "Bonapriso"})
    second = store.create_delivery(
        {"phone": "699887766", "items": "1 sac", "customer_name": "Madame Robert", "quartier": "Akwa"}
    )

    assert [row.id for row in store.search_deliveries("rob")] == [second, first]
    assert [row.id for row in store.search_deliveries("BONA")] == [first]
    assert [row.id for row in store.search_deliveries("99887")] == [second]
    assert store.search_deliveries("   ") == []
    assert len(store.search_deliveries("6", limit=1)) == 1
