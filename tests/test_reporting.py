from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

from athwatch.domain.models import ATHEvent, NotificationRecord
from athwatch.reporting import (
    dedupe_by_asset_day,
    notification_stats,
    recent_events,
    user_notification_counts,
)
from athwatch.state.sqlite_store import SqliteLedger

NOW = datetime(2025, 3, 10, 18, 0, tzinfo=UTC)


def _event(asset_id: str, detected_at: datetime, recipient_count: int = 0) -> ATHEvent:
    return ATHEvent(
        asset_id=asset_id,
        symbol=asset_id.upper()[:3],
        name=asset_id.title(),
        new_ath=110.0,
        previous_ath=100.0,
        detected_at=detected_at,
        recipient_count=recipient_count,
    )


def _record(ledger: SqliteLedger, event: ATHEvent, recipient_id: str) -> None:
    ledger.write_notification_record(
        NotificationRecord(
            event_id=event.event_id,
            recipient_id=recipient_id,
            asset_id=event.asset_id,
            sent_at=event.detected_at,
        )
    )


def test_same_asset_same_day_counts_once() -> None:
    morning = _event("bitcoin", NOW.replace(hour=8))
    evening = _event("bitcoin", NOW.replace(hour=20))
    next_day = _event("bitcoin", NOW + timedelta(days=1))
    other = _event("ethereum", NOW.replace(hour=9))

    unique = dedupe_by_asset_day([morning, evening, next_day, other])

    assert unique == [morning, next_day, other]


def test_recent_events_are_newest_first_within_window(tmp_path: Path) -> None:
    ledger = SqliteLedger(str(tmp_path / "ledger.db"))
    old = _event("bitcoin", NOW - timedelta(hours=30))
    first = _event("ethereum", NOW - timedelta(hours=5))
    second = _event("solana", NOW - timedelta(hours=1))
    for event in (old, first, second):
        ledger.append_notification_history(event)

    events = recent_events(ledger, hours=24, now=NOW)

    assert [event.asset_id for event in events] == ["solana", "ethereum"]
    ledger.close()


def test_user_counts_dedupe_total_but_not_window_counts(tmp_path: Path) -> None:
    ledger = SqliteLedger(str(tmp_path / "ledger.db"))
    same_day_a = _event("bitcoin", NOW - timedelta(hours=6))
    same_day_b = _event("bitcoin", NOW - timedelta(hours=2))
    last_month = _event("ethereum", NOW - timedelta(days=20))
    long_ago = _event("solana", NOW - timedelta(days=90))
    for event in (same_day_a, same_day_b, last_month, long_ago):
        ledger.append_notification_history(event)
        _record(ledger, event, "user-1")
    _record(ledger, same_day_a, "user-2")

    counts = user_notification_counts(ledger, "user-1", now=NOW)

    assert counts.total == 3
    assert counts.weekly_7d == 2
    assert counts.recent_30d == 3
    assert counts.all_time == 4
    assert user_notification_counts(ledger, "nobody", now=NOW).total == 0
    ledger.close()


def test_notification_stats_summarize_window(tmp_path: Path) -> None:
    ledger = SqliteLedger(str(tmp_path / "ledger.db"))
    events = [
        _event("bitcoin", NOW - timedelta(hours=6), recipient_count=4),
        _event("bitcoin", NOW - timedelta(hours=2), recipient_count=2),
        _event("ethereum", NOW - timedelta(days=2), recipient_count=3),
        _event("solana", NOW - timedelta(days=10), recipient_count=7),
    ]
    for event in events:
        ledger.append_notification_history(event)

    stats = notification_stats(ledger, days=7, now=NOW)

    assert stats.total_notifications == 3
    assert stats.unique_notifications == 2
    assert stats.unique_assets == 2
    assert stats.total_recipients == 9
    assert stats.average_recipients_per_notification == 3.0
    ledger.close()


def test_notification_stats_handle_empty_history(tmp_path: Path) -> None:
    ledger = SqliteLedger(str(tmp_path / "ledger.db"))

    stats = notification_stats(ledger, days=7, now=NOW)

    assert stats.total_notifications == 0
    assert stats.average_recipients_per_notification == 0.0
    ledger.close()
