from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from athwatch.domain.models import AssetQuote, ATHEvent, Subscriber
from athwatch.errors import DeliveryError, RecipientError
from athwatch.notify.dispatcher import NotificationDispatcher
from athwatch.state.sqlite_store import SqliteLedger

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


class StubDirectory:
    def __init__(self, subscribers: list[Subscriber]) -> None:
        self.subscribers = subscribers

    def get_eligible_recipients(self) -> list[Subscriber]:
        return list(self.subscribers)


class BrokenDirectory:
    def get_eligible_recipients(self) -> list[Subscriber]:
        raise RecipientError("subscribers unavailable")


class RecordingSender:
    def __init__(self, failing: set[str] | None = None, result: bool = True) -> None:
        self.failing = failing or set()
        self.result = result
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def send(self, recipient: Subscriber, event: ATHEvent, quote: AssetQuote | None) -> bool:
        _ = quote
        with self._lock:
            self.calls.append((recipient.recipient_id, event.event_id))
        if recipient.recipient_id in self.failing:
            raise DeliveryError("mailbox unavailable")
        return self.result


def _subscribers(*ids: str) -> list[Subscriber]:
    return [Subscriber(recipient_id=rid, email=f"{rid}@example.com") for rid in ids]


def _stored_event(ledger: SqliteLedger, detected_at: datetime = NOW) -> ATHEvent:
    event = ATHEvent(
        asset_id="bitcoin",
        symbol="BTC",
        name="Bitcoin",
        new_ath=105.0,
        previous_ath=100.0,
        detected_at=detected_at,
    )
    ledger.append_notification_history(event)
    return event


def _dispatcher(ledger: SqliteLedger, directory, sender) -> NotificationDispatcher:
    return NotificationDispatcher(
        ledger=ledger,
        recipients=directory,
        sender=sender,
        max_workers=4,
        batch_size=2,
        clock=lambda: NOW,
    )


def test_dispatch_sends_once_per_recipient_and_records_count(tmp_path: Path) -> None:
    ledger = SqliteLedger(str(tmp_path / "ledger.db"))
    event = _stored_event(ledger)
    sender = RecordingSender()
    dispatcher = _dispatcher(ledger, StubDirectory(_subscribers("u1", "u2", "u3")), sender)

    result = dispatcher.dispatch(event)

    assert result.sent == 3
    assert result.failed == 0
    assert result.recipient_count == 3
    assert sorted(rid for rid, _ in sender.calls) == ["u1", "u2", "u3"]
    stored = ledger.get_event(event.event_id)
    assert stored.recipient_count == ledger.count_notification_records(event.event_id) == 3
    assert stored.dispatched is True
    ledger.close()


def test_redispatching_a_completed_event_sends_to_nobody_new(tmp_path: Path) -> None:
    ledger = SqliteLedger(str(tmp_path / "ledger.db"))
    event = _stored_event(ledger)
    sender = RecordingSender()
    dispatcher = _dispatcher(ledger, StubDirectory(_subscribers("u1", "u2")), sender)
    dispatcher.dispatch(event)
    sender.calls.clear()

    result = dispatcher.dispatch(event)

    assert sender.calls == []
    assert result.sent == 0
    assert result.already_notified == 2
    assert result.recipient_count == 2
    ledger.close()


def test_partial_failure_is_retried_only_for_missing_recipients(tmp_path: Path) -> None:
    ledger = SqliteLedger(str(tmp_path / "ledger.db"))
    event = _stored_event(ledger)
    directory = StubDirectory(_subscribers("u1", "u2"))

    first = _dispatcher(ledger, directory, RecordingSender(failing={"u2"})).dispatch(event)

    assert first.sent == 1
    assert first.failed == 1
    assert first.recipient_count == 1
    assert ledger.get_event(event.event_id).dispatched is False

    retry_sender = RecordingSender()
    second = _dispatcher(ledger, directory, retry_sender).dispatch(event)

    assert retry_sender.calls == [("u2", event.event_id)]
    assert second.sent == 1
    assert second.recipient_count == 2
    assert ledger.count_notification_records(event.event_id) == 2
    assert ledger.get_event(event.event_id).dispatched is True
    ledger.close()


def test_unconfirmed_send_writes_no_record(tmp_path: Path) -> None:
    ledger = SqliteLedger(str(tmp_path / "ledger.db"))
    event = _stored_event(ledger)
    dispatcher = _dispatcher(
        ledger, StubDirectory(_subscribers("u1")), RecordingSender(result=False)
    )

    result = dispatcher.dispatch(event)

    assert result.failed == 1
    assert not ledger.has_notification_record(event.event_id, "u1")
    assert ledger.get_event(event.event_id).recipient_count == 0
    ledger.close()


def test_duplicate_subscribers_are_sent_once(tmp_path: Path) -> None:
    ledger = SqliteLedger(str(tmp_path / "ledger.db"))
    event = _stored_event(ledger)
    sender = RecordingSender()
    directory = StubDirectory(_subscribers("u1", "u1", "u2"))

    result = _dispatcher(ledger, directory, sender).dispatch(event)

    assert result.sent == 2
    assert len(sender.calls) == 2
    ledger.close()


def test_event_without_recipients_is_marked_dispatched(tmp_path: Path) -> None:
    ledger = SqliteLedger(str(tmp_path / "ledger.db"))
    event = _stored_event(ledger)

    result = _dispatcher(ledger, StubDirectory([]), RecordingSender()).dispatch(event)

    assert result.recipient_count == 0
    assert ledger.get_event(event.event_id).dispatched is True
    ledger.close()


def test_recipient_lookup_failure_propagates_from_dispatch(tmp_path: Path) -> None:
    ledger = SqliteLedger(str(tmp_path / "ledger.db"))
    event = _stored_event(ledger)

    with pytest.raises(RecipientError):
        _dispatcher(ledger, BrokenDirectory(), RecordingSender()).dispatch(event)

    assert ledger.get_event(event.event_id).dispatched is False
    ledger.close()


def test_dispatch_pending_skips_excluded_and_contains_failures(tmp_path: Path) -> None:
    ledger = SqliteLedger(str(tmp_path / "ledger.db"))
    current = _stored_event(ledger, detected_at=NOW)
    pending = _stored_event(ledger, detected_at=NOW - timedelta(hours=3))
    sender = RecordingSender()
    dispatcher = _dispatcher(ledger, StubDirectory(_subscribers("u1")), sender)

    results = dispatcher.dispatch_pending(NOW - timedelta(hours=24), exclude={current.event_id})

    assert [result.event_id for result in results] == [pending.event_id]
    assert sender.calls == [("u1", pending.event_id)]

    broken = _dispatcher(ledger, BrokenDirectory(), sender)
    assert broken.dispatch_pending(NOW - timedelta(hours=24)) == []
    ledger.close()
