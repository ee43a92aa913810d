"""Read-only queries behind the history and notification-count views."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from athwatch.domain.models import ATHEvent, utc_now
from athwatch.state.store import Ledger


@dataclass(frozen=True)
class UserNotificationCounts:
    """Per-recipient counts; `total` counts one per asset per calendar day."""

    recipient_id: str
    total: int
    recent_30d: int
    weekly_7d: int
    all_time: int


@dataclass(frozen=True)
class NotificationStats:
    """Aggregate notification history over a trailing window."""

    days: int
    total_notifications: int
    unique_notifications: int
    total_recipients: int
    average_recipients_per_notification: float
    unique_assets: int


def dedupe_by_asset_day(events: list[ATHEvent]) -> list[ATHEvent]:
    """Keep the first event per asset and calendar day (UTC)."""
    unique: list[ATHEvent] = []
    seen: set[tuple[str, str]] = set()
    for event in events:
        key = event.history_key()
        if key in seen:
            continue
        seen.add(key)
        unique.append(event)
    return unique


def recent_events(ledger: Ledger, hours: int = 24, now: datetime | None = None) -> list[ATHEvent]:
    """Return events detected in the trailing window, newest first."""
    cutoff = (now or utc_now()) - timedelta(hours=hours)
    events = ledger.get_notification_history_since(cutoff)
    return sorted(events, key=lambda event: event.detected_at, reverse=True)


def user_notification_counts(
    ledger: Ledger,
    recipient_id: str,
    now: datetime | None = None,
) -> UserNotificationCounts:
    current = now or utc_now()
    history = ledger.get_recipient_history(recipient_id)
    events = [event for event, _sent_at in history]
    thirty_days_ago = current - timedelta(days=30)
    seven_days_ago = current - timedelta(days=7)
    return UserNotificationCounts(
        recipient_id=recipient_id,
        total=len(dedupe_by_asset_day(events)),
        recent_30d=sum(1 for _event, sent_at in history if sent_at >= thirty_days_ago),
        weekly_7d=sum(1 for _event, sent_at in history if sent_at >= seven_days_ago),
        all_time=len(history),
    )


def notification_stats(
    ledger: Ledger,
    days: int = 7,
    now: datetime | None = None,
) -> NotificationStats:
    cutoff = (now or utc_now()) - timedelta(days=days)
    events = ledger.get_notification_history_since(cutoff)
    total_notifications = len(events)
    total_recipients = sum(event.recipient_count for event in events)
    average = total_recipients / total_notifications if total_notifications else 0.0
    return NotificationStats(
        days=days,
        total_notifications=total_notifications,
        unique_notifications=len(dedupe_by_asset_day(events)),
        total_recipients=total_recipients,
        average_recipients_per_notification=round(average, 2),
        unique_assets=len({event.asset_id for event in events}),
    )
