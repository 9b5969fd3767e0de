"""SQLite-backed store for deliveries, quartier tariffs and the change history."""
from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock, RLock
from typing import Any, Dict, List, Optional

from app.core.config import get_settings
from app.core.logging import logger
from app.models.delivery import DeliveryRecord, DeliveryStatus, HistoryEntry, TariffRecord

CLOSED_STATUSES = (
    DeliveryStatus.DELIVERED.value,
    DeliveryStatus.FAILED.value,
    DeliveryStatus.CANCELLED.value,
)

DELIVERY_COLUMNS = (
    "phone",
    "customer_name",
    "items",
    "amount_due",
    "amount_paid",
    "delivery_fee",
    "status",
    "quartier",
    "notes",
    "carrier",
    "group_id",
    "agency_id",
    "whatsapp_message_id",
)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True)


def quartier_key(quartier: str | None) -> str:
    return " ".join((quartier or "").split()).lower()


class DeliveryStore:
    """Durable state for the delivery ledger."""

    _lock_registry: dict[str, RLock] = {}
    _lock_registry_guard = Lock()

    def __init__(self, db_path: str | None = None) -> None:
        settings = get_settings()
        self._db_path = Path((db_path or settings.delivery_db_path or "").strip() or "./data/deliveries.db")
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = self._get_shared_lock(str(self._db_path.resolve()))
        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            timeout=30.0,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA synchronous = NORMAL")
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.execute("PRAGMA busy_timeout = 30000")
        self._initialize_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    @classmethod
    def _get_shared_lock(cls, key: str) -> RLock:
        with cls._lock_registry_guard:
            lock = cls._lock_registry.get(key)
            if lock is None:
                lock = RLock()
                cls._lock_registry[key] = lock
            return lock

    def _initialize_schema(self) -> None:
        with self._lock:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS deliveries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    phone TEXT NOT NULL,
                    customer_name TEXT,
                    items TEXT NOT NULL DEFAULT '',
                    amount_due REAL NOT NULL DEFAULT 0,
                    amount_paid REAL NOT NULL DEFAULT 0,
                    delivery_fee REAL NOT NULL DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'pending',
                    quartier TEXT,
                    notes TEXT,
                    carrier TEXT,
                    group_id TEXT,
                    agency_id INTEGER,
                    whatsapp_message_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_deliveries_phone ON deliveries (phone, created_at DESC);
                CREATE INDEX IF NOT EXISTS idx_deliveries_status ON deliveries (status);
                CREATE INDEX IF NOT EXISTS idx_deliveries_message ON deliveries (whatsapp_message_id);
                CREATE INDEX IF NOT EXISTS idx_deliveries_created ON deliveries (created_at);

                CREATE TABLE IF NOT EXISTS delivery_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    delivery_id INTEGER NOT NULL REFERENCES deliveries (id),
                    action TEXT NOT NULL,
                    field TEXT,
                    old_value_json TEXT,
                    new_value_json TEXT,
                    actor TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_history_delivery ON delivery_history (delivery_id, id);

                CREATE TABLE IF NOT EXISTS tariffs (
                    agency_id INTEGER NOT NULL,
                    quartier_key TEXT NOT NULL,
                    quartier TEXT NOT NULL,
                    tarif_amount REAL NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (agency_id, quartier_key)
                );
                """
            )
            self._conn.commit()

    @staticmethod
    def _delivery_from_row(row: sqlite3.Row) -> DeliveryRecord:
        return DeliveryRecord(**dict(row))

    def reset(self) -> None:
        """Drop every row; used by tests and local resets."""
        with self._lock:
            for table in ("delivery_history", "deliveries", "tariffs"):
                self._conn.execute(f"DELETE FROM {table}")
            self._conn.execute("DELETE FROM sqlite_sequence WHERE name IN ('deliveries', 'delivery_history')")
            self._conn.commit()

    # Deliveries

    def get_delivery(self, delivery_id: int) -> Optional[DeliveryRecord]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM deliveries WHERE id = ?", (delivery_id,)).fetchone()
        if not row:
            return None
        return self._delivery_from_row(row)

    def find_delivery_for_update(self, phone: str) -> Optional[DeliveryRecord]:
        """Most recently created delivery for `phone`, whatever its status."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM deliveries WHERE phone = ? ORDER BY created_at DESC, id DESC LIMIT 1",
                (phone,),
            ).fetchone()
        if not row:
            return None
        return self._delivery_from_row(row)

    def find_open_delivery_by_phone(self, phone: str) -> Optional[DeliveryRecord]:
        placeholders = ", ".join("?" for _ in CLOSED_STATUSES)
        with self._lock:
            row = self._conn.execute(
                f"""
                SELECT * FROM deliveries
                WHERE phone = ? AND status NOT IN ({placeholders})
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                (phone, *CLOSED_STATUSES),
            ).fetchone()
        if not row:
            return None
        return self._delivery_from_row(row)

    def find_delivery_by_message_id(self, message_id: str) -> Optional[DeliveryRecord]:
        if not message_id:
            return None
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM deliveries WHERE whatsapp_message_id = ? ORDER BY id DESC LIMIT 1",
                (message_id,),
            ).fetchone()
        if not row:
            return None
        return self._delivery_from_row(row)

    def list_deliveries(
        self,
        status: Optional[str] = None,
        date: Optional[str] = None,
        limit: int = 500,
    ) -> List[DeliveryRecord]:
        """Newest first. `date` is a `YYYY-MM-DD` creation day (UTC)."""
        clauses: List[str] = []
        params: List[Any] = []
        if status:
            clauses.append("status = ?")
            params.append(status)
        if date:
            clauses.append("substr(created_at, 1, 10) = ?")
            params.append(date)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(max(1, int(limit)))
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM deliveries {where} ORDER BY created_at DESC, id DESC LIMIT ?",
                tuple(params),
            ).fetchall()
        return [self._delivery_from_row(row) for row in rows]

    def search_deliveries(self, query: str, limit: int = 100) -> List[DeliveryRecord]:
        """Substring match on phone, items, customer name and quartier, newest first."""
        term = (query or "").strip()
        if not term:
            return []
        pattern = f"%{term}%"
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT * FROM deliveries
                WHERE phone LIKE ? OR items LIKE ? OR customer_name LIKE ? OR quartier LIKE ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (pattern, pattern, pattern, pattern, max(1, int(limit))),
            ).fetchall()
        return [self._delivery_from_row(row) for row in rows]

    def create_delivery(self, fields: Dict[str, Any]) -> int:
        unknown = set(fields) - set(DELIVERY_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown delivery fields: {sorted(unknown)}")
        if not fields.get("phone"):
            raise ValueError("phone is required")

        row = {column: fields.get(column) for column in DELIVERY_COLUMNS}
        row["items"] = row["items"] or ""
        row["amount_due"] = row["amount_due"] or 0.0
        row["amount_paid"] = row["amount_paid"] or 0.0
        row["delivery_fee"] = row["delivery_fee"] or 0.0
        row["status"] = row["status"] or DeliveryStatus.PENDING.value
        now = _utc_now_iso()
        columns = (*DELIVERY_COLUMNS, "created_at", "updated_at")
        values = (*(row[column] for column in DELIVERY_COLUMNS), now, now)

        with self._lock:
            cursor = self._conn.execute(
                f"INSERT INTO deliveries ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
                values,
            )
            self._conn.commit()
        delivery_id = int(cursor.lastrowid)
        logger.info("Delivery created", delivery_id=delivery_id, phone=row["phone"], amount_due=row["amount_due"])
        return delivery_id

    def update_delivery(self, delivery_id: int, fields: Dict[str, Any]) -> DeliveryRecord:
        """Write `fields` in one statement and return the fresh row."""
        unknown = set(fields) - set(DELIVERY_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown delivery fields: {sorted(unknown)}")

        with self._lock:
            if fields:
                assignments = ", ".join(f"{column} = ?" for column in fields)
                cursor = self._conn.execute(
                    f"UPDATE deliveries SET {assignments}, updated_at = ? WHERE id = ?",
                    (*fields.values(), _utc_now_iso(), delivery_id),
                )
                self._conn.commit()
                if cursor.rowcount == 0:
                    raise KeyError(delivery_id)
            record = self.get_delivery(delivery_id)
        if record is None:
            raise KeyError(delivery_id)
        return record

    # Tariffs

    @staticmethod
    def _tariff_from_row(row: sqlite3.Row) -> TariffRecord:
        return TariffRecord(
            agency_id=row["agency_id"],
            quartier=row["quartier"],
            tarif_amount=row["tarif_amount"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def get_tariff(self, agency_id: int | None, quartier: str | None) -> Optional[TariffRecord]:
        key = quartier_key(quartier)
        if agency_id is None or not key:
            return None
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM tariffs WHERE agency_id = ? AND quartier_key = ?",
                (agency_id, key),
            ).fetchone()
        if not row:
            return None
        return self._tariff_from_row(row)

    def upsert_tariff(self, agency_id: int, quartier: str, tarif_amount: float) -> TariffRecord:
        key = quartier_key(quartier)
        if not key:
            raise ValueError("quartier is required")
        if tarif_amount < 0:
            raise ValueError("tarif_amount must be non-negative")
        now = _utc_now_iso()
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO tariffs (agency_id, quartier_key, quartier, tarif_amount, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(agency_id, quartier_key)
                DO UPDATE SET quartier = excluded.quartier,
                              tarif_amount = excluded.tarif_amount,
                              updated_at = excluded.updated_at
                """,
                (agency_id, key, quartier.strip(), float(tarif_amount), now, now),
            )
            self._conn.commit()
            tariff = self.get_tariff(agency_id, quartier)
        if tariff is None:
            raise KeyError((agency_id, quartier))
        return tariff

    def list_tariffs(self, agency_id: Optional[int] = None) -> List[TariffRecord]:
        with self._lock:
            if agency_id is None:
                rows = self._conn.execute("SELECT * FROM tariffs ORDER BY agency_id, quartier_key").fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT * FROM tariffs WHERE agency_id = ? ORDER BY quartier_key",
                    (agency_id,),
                ).fetchall()
        return [self._tariff_from_row(row) for row in rows]

    def delete_tariff(self, agency_id: int, quartier: str) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM tariffs WHERE agency_id = ? AND quartier_key = ?",
                (agency_id, quartier_key(quartier)),
            )
            self._conn.commit()
        return cursor.rowcount > 0

    # History

    def append_history(self, entry: HistoryEntry) -> HistoryEntry:
        created_at = entry.created_at.astimezone(timezone.utc).isoformat()
        with self._lock:
            cursor = self._conn.execute(
                """
                INSERT INTO delivery_history
                    (delivery_id, action, field, old_value_json, new_value_json, actor, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.delivery_id,
                    entry.action,
                    entry.field,
                    _json_dumps(entry.old_value),
                    _json_dumps(entry.new_value),
                    entry.actor,
                    created_at,
                ),
            )
            self._conn.commit()
        return entry.model_copy(update={"id": int(cursor.lastrowid)})

    def list_history(self, delivery_id: int) -> List[HistoryEntry]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id, delivery_id, action, field, old_value_json, new_value_json, actor, created_at
                FROM delivery_history
                WHERE delivery_id = ?
                ORDER BY id
                """,
                (delivery_id,),
            ).fetchall()
        return [
            HistoryEntry(
                id=row["id"],
                delivery_id=row["delivery_id"],
                action=row["action"],
                field=row["field"],
                old_value=json.loads(row["old_value_json"]) if row["old_value_json"] is not None else None,
                new_value=json.loads(row["new_value_json"]) if row["new_value_json"] is not None else None,
                actor=row["actor"],
                created_at=row["created_at"],
            )
            for row in rows
        ]


delivery_store = DeliveryStore()
