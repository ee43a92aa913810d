"""SQLite ledger for restart-safe ATH tracking and notification dedup."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from athwatch.domain.models import ATHEvent, NotificationRecord, StoredAsset
from athwatch.errors import LedgerError


class SqliteLedger:
    """SQLite-backed implementation of the ATH ledger.

    One connection is shared by the scheduler thread and the dispatch worker
    pool, so every statement runs under an internal lock.
    """

    def __init__(self, db_path: str) -> None:
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        try:
            self.connection = sqlite3.connect(db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise LedgerError(f"Cannot open ledger at {db_path}: {exc}") from exc
        self.connection.row_factory = sqlite3.Row
        self._initialize_schema()

    def get_stored_asset(self, asset_id: str) -> StoredAsset | None:
        with self._guard("read asset"):
            row = self.connection.execute(
                "SELECT asset_id, ath, ath_date FROM assets WHERE asset_id = ?",
                (asset_id,),
            ).fetchone()
        if row is None:
            return None
        return StoredAsset(
            asset_id=str(row["asset_id"]),
            ath=float(row["ath"]),
            ath_date=self._parse_ts(row["ath_date"]),
        )

    def write_stored_asset(self, asset_id: str, ath: float, ath_date: datetime) -> StoredAsset:
        with self._guard("write asset"):
            self._upsert_asset(asset_id, ath, ath_date)
            self.connection.commit()
        return self._require_asset(asset_id)

    def append_notification_history(self, event: ATHEvent) -> None:
        with self._guard("append event"):
            self._insert_event(event, "INSERT OR IGNORE")
            self.connection.commit()

    def record_crossing(self, event: ATHEvent, ath_date: datetime) -> StoredAsset:
        """Commit the raised ATH and its history row together or not at all."""
        with self._guard("record crossing"):
            try:
                self._upsert_asset(event.asset_id, event.new_ath, ath_date)
                self._insert_event(event, "INSERT")
            except sqlite3.Error:
                self.connection.rollback()
                raise
            self.connection.commit()
        return self._require_asset(event.asset_id)

    def get_event(self, event_id: str) -> ATHEvent | None:
        with self._guard("read event"):
            row = self.connection.execute(
                "SELECT * FROM events WHERE event_id = ?",
                (event_id,),
            ).fetchone()
        return self._row_to_event(row) if row is not None else None

    def get_notification_history_since(self, since: datetime) -> list[ATHEvent]:
        with self._guard("read history"):
            rows = self.connection.execute(
                """
                SELECT * FROM events
                WHERE detected_ts >= ?
                ORDER BY detected_ts ASC, rowid ASC
                """,
                (self._format_ts(since),),
            ).fetchall()
        return [self._row_to_event(row) for row in rows]

    def list_undispatched_events(self, since: datetime) -> list[ATHEvent]:
        with self._guard("read pending events"):
            rows = self.connection.execute(
                """
                SELECT * FROM events
                WHERE dispatched = 0
                  AND detected_ts >= ?
                ORDER BY detected_ts ASC, rowid ASC
                """,
                (self._format_ts(since),),
            ).fetchall()
        return [self._row_to_event(row) for row in rows]

    def has_notification_record(self, event_id: str, recipient_id: str) -> bool:
        with self._guard("read record"):
            row = self.connection.execute(
                """
                SELECT 1
                FROM notification_records
                WHERE event_id = ?
                  AND recipient_id = ?
                LIMIT 1
                """,
                (event_id, recipient_id),
            ).fetchone()
        return row is not None

    def write_notification_record(self, record: NotificationRecord) -> bool:
        with self._guard("write record"):
            cursor = self.connection.execute(
                """
                INSERT OR IGNORE INTO notification_records(
                    event_id,
                    recipient_id,
                    asset_id,
                    sent_ts
                )
                VALUES(?, ?, ?, ?)
                """,
                (
                    record.event_id,
                    record.recipient_id,
                    record.asset_id,
                    self._format_ts(record.sent_at),
                ),
            )
            self.connection.commit()
        return cursor.rowcount > 0

    def count_notification_records(self, event_id: str) -> int:
        with self._guard("count records"):
            row = self.connection.execute(
                "SELECT COUNT(*) AS total FROM notification_records WHERE event_id = ?",
                (event_id,),
            ).fetchone()
        return int(row["total"])

    def update_recipient_count(self, event_id: str, recipient_count: int) -> int:
        with self._guard("update recipient count"):
            self.connection.execute(
                """
                UPDATE events
                SET recipient_count = MAX(recipient_count, ?)
                WHERE event_id = ?
                """,
                (int(recipient_count), event_id),
            )
            self.connection.commit()
            row = self.connection.execute(
                "SELECT recipient_count FROM events WHERE event_id = ?",
                (event_id,),
            ).fetchone()
        if row is None:
            raise LedgerError(f"Unknown event {event_id}")
        return int(row["recipient_count"])

    def mark_dispatched(self, event_id: str) -> None:
        with self._guard("mark dispatched"):
            self.connection.execute(
                "UPDATE events SET dispatched = 1 WHERE event_id = ?",
                (event_id,),
            )
            self.connection.commit()

    def get_recipient_history(self, recipient_id: str) -> list[tuple[ATHEvent, datetime]]:
        with self._guard("read recipient history"):
            rows = self.connection.execute(
                """
                SELECT events.*, notification_records.sent_ts AS sent_ts
                FROM notification_records
                JOIN events ON events.event_id = notification_records.event_id
                WHERE notification_records.recipient_id = ?
                ORDER BY notification_records.sent_ts DESC
                """,
                (recipient_id,),
            ).fetchall()
        return [(self._row_to_event(row), self._parse_ts(row["sent_ts"])) for row in rows]

    def close(self) -> None:
        with self._lock:
            self.connection.close()

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        with self._lock:
            try:
                yield
            except sqlite3.Error as exc:
                raise LedgerError(f"Ledger {operation} failed: {exc}") from exc

    def _initialize_schema(self) -> None:
        with self._guard("initialize schema"):
            self.connection.execute(
                """
                CREATE TABLE IF NOT EXISTS assets(
                    asset_id TEXT PRIMARY KEY,
                    ath REAL NOT NULL,
                    ath_date TEXT NOT NULL,
                    updated_ts TEXT NOT NULL
                )
                """
            )
            self.connection.execute(
                """
                CREATE TABLE IF NOT EXISTS events(
                    event_id TEXT PRIMARY KEY,
                    asset_id TEXT NOT NULL,
                    symbol TEXT NOT NULL,
                    name TEXT NOT NULL,
                    new_ath REAL NOT NULL,
                    previous_ath REAL NOT NULL,
                    detected_ts TEXT NOT NULL,
                    recipient_count INTEGER NOT NULL DEFAULT 0,
                    dispatched INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            self.connection.execute(
                """
                CREATE TABLE IF NOT EXISTS notification_records(
                    event_id TEXT NOT NULL,
                    recipient_id TEXT NOT NULL,
                    asset_id TEXT NOT NULL,
                    sent_ts TEXT NOT NULL,
                    PRIMARY KEY(event_id, recipient_id)
                )
                """
            )
            self.connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_events_detected_ts
                ON events(detected_ts)
                """
            )
            self.connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_notification_records_recipient
                ON notification_records(recipient_id)
                """
            )
            self.connection.commit()

    def _row_to_event(self, row: sqlite3.Row) -> ATHEvent:
        return ATHEvent(
            event_id=str(row["event_id"]),
            asset_id=str(row["asset_id"]),
            symbol=str(row["symbol"]),
            name=str(row["name"]),
            new_ath=float(row["new_ath"]),
            previous_ath=float(row["previous_ath"]),
            detected_at=self._parse_ts(row["detected_ts"]),
            recipient_count=int(row["recipient_count"]),
            dispatched=bool(row["dispatched"]),
        )

    def _upsert_asset(self, asset_id: str, ath: float, ath_date: datetime) -> None:
        self.connection.execute(
            """
            INSERT INTO assets(asset_id, ath, ath_date, updated_ts)
            VALUES(?, ?, ?, ?)
            ON CONFLICT(asset_id) DO UPDATE SET
                ath_date = CASE
                    WHEN excluded.ath > assets.ath THEN excluded.ath_date
                    ELSE assets.ath_date
                END,
                ath = MAX(assets.ath, excluded.ath),
                updated_ts = excluded.updated_ts
            """,
            (asset_id, float(ath), self._format_ts(ath_date), self._utc_now()),
        )

    def _insert_event(self, event: ATHEvent, verb: str) -> None:
        self.connection.execute(
            f"""
            {verb} INTO events(
                event_id,
                asset_id,
                symbol,
                name,
                new_ath,
                previous_ath,
                detected_ts,
                recipient_count,
                dispatched
            )
            VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.event_id,
                event.asset_id,
                event.symbol,
                event.name,
                event.new_ath,
                event.previous_ath,
                self._format_ts(event.detected_at),
                event.recipient_count,
                int(event.dispatched),
            ),
        )

    def _require_asset(self, asset_id: str) -> StoredAsset:
        stored = self.get_stored_asset(asset_id)
        if stored is None:
            raise LedgerError(f"ATH write for {asset_id} was not persisted")
        return stored


    @staticmethod
    def _format_ts(value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC).isoformat(timespec="microseconds")

    @staticmethod
    def _parse_ts(value: str) -> datetime:
        parsed = datetime.fromisoformat(str(value))
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=UTC)
        return parsed

    @staticmethod
    def _utc_now() -> str:
        return datetime.now(tz=UTC).isoformat()
