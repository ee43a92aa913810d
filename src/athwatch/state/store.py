"""Ledger contract used by the detector, dispatcher and reporting queries."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from athwatch.domain.models import ATHEvent, NotificationRecord, StoredAsset


class Ledger(Protocol):
    """Persistence API for per-asset ATH state and notification history."""

    def get_stored_asset(self, asset_id: str) -> StoredAsset | None:
        """Return the last confirmed ATH for an asset, if any."""

    def write_stored_asset(self, asset_id: str, ath: float, ath_date: datetime) -> StoredAsset:
        """Persist an ATH; a lower value than the stored one is never written."""

    def append_notification_history(self, event: ATHEvent) -> None:
        """Persist a detected event."""

    def record_crossing(self, event: ATHEvent, ath_date: datetime) -> StoredAsset:
        """Raise the stored ATH to `event.new_ath` and persist the event atomically."""


    def get_event(self, event_id: str) -> ATHEvent | None:
        """Return a stored event by id."""

    def get_notification_history_since(self, since: datetime) -> list[ATHEvent]:
        """Return events detected at or after `since`, oldest first."""

    def list_undispatched_events(self, since: datetime) -> list[ATHEvent]:
        """Return events detected since `since` that never completed dispatch."""

    def has_notification_record(self, event_id: str, recipient_id: str) -> bool:
        """Return true when the recipient already received the event."""

    def write_notification_record(self, record: NotificationRecord) -> bool:
        """Persist a send record; return false when one already existed."""

    def count_notification_records(self, event_id: str) -> int:
        """Return how many recipients were sent the event."""

    def update_recipient_count(self, event_id: str, recipient_count: int) -> int:
        """Raise an event's recipient count and return the stored value."""

    def mark_dispatched(self, event_id: str) -> None:
        """Flag an event as having completed one dispatch pass."""

    def get_recipient_history(self, recipient_id: str) -> list[tuple[ATHEvent, datetime]]:
        """Return (event, sent_at) pairs for one recipient, newest first."""

    def close(self) -> None:
        """Close persistence resources."""
