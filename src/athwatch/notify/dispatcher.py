"""Exactly-once-recorded fan-out of ATH events to eligible recipients."""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime

from athwatch.domain.models import (
    AssetQuote,
    ATHEvent,
    DispatchResult,
    NotificationRecord,
    Subscriber,
    utc_now,
)
from athwatch.errors import LedgerError, RecipientError
from athwatch.logging.logger import HumanLogger
from athwatch.notify.recipients import RecipientDirectory
from athwatch.notify.senders import Sender
from athwatch.state.store import Ledger


class NotificationDispatcher:
    """Deliver each event once per eligible recipient and record the delivery.

    The dedup key is (event id, recipient id). Recipients that already hold a
    record are skipped, so re-dispatching a partially sent event only reaches
    the recipients that are still missing one.
    """

    def __init__(
        self,
        ledger: Ledger,
        recipients: RecipientDirectory,
        sender: Sender,
        human_logger: HumanLogger | None = None,
        max_workers: int = 8,
        batch_size: int = 50,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.ledger = ledger
        self.recipients = recipients
        self.sender = sender
        self.human_logger = human_logger or HumanLogger()
        self.max_workers = max(1, max_workers)
        self.batch_size = max(1, batch_size)
        self.clock = clock

    def dispatch(self, event: ATHEvent, quote: AssetQuote | None = None) -> DispatchResult:
        subscribers = self._unique(self.recipients.get_eligible_recipients())
        pending: list[Subscriber] = []
        already_notified = 0
        for subscriber in subscribers:
            if self.ledger.has_notification_record(event.event_id, subscriber.recipient_id):
                already_notified += 1
                continue
            pending.append(subscriber)

        sent = 0
        failed = 0
        if pending:
            workers = min(self.max_workers, len(pending))
            with ThreadPoolExecutor(
                max_workers=workers,
                thread_name_prefix="athwatch-send",
            ) as pool:
                for start in range(0, len(pending), self.batch_size):
                    batch = pending[start : start + self.batch_size]
                    futures = [
                        pool.submit(self._deliver, event, subscriber, quote) for subscriber in batch
                    ]
                    for future in as_completed(futures):
                        if future.result():
                            sent += 1
                        else:
                            failed += 1

        recorded = self.ledger.count_notification_records(event.event_id)
        recipient_count = self.ledger.update_recipient_count(event.event_id, recorded)
        if failed == 0:
            self.ledger.mark_dispatched(event.event_id)
        self.human_logger.dispatch_summary(
            symbol=event.symbol,
            event_id=event.event_id,
            sent=sent,
            eligible=len(pending),
            recipient_count=recipient_count,
        )
        return DispatchResult(
            event_id=event.event_id,
            recipient_count=recipient_count,
            sent=sent,
            failed=failed,
            already_notified=already_notified,
        )

    def dispatch_pending(
        self,
        since: datetime,
        exclude: set[str] | None = None,
    ) -> list[DispatchResult]:
        """Re-dispatch history events that never completed a clean pass.

        Events in `exclude` were already handled by the caller this cycle.
        A recipient lookup or ledger failure leaves that event pending for the
        next pass.
        """
        skip = exclude or set()
        results: list[DispatchResult] = []
        for event in self.ledger.list_undispatched_events(since):
            if event.event_id in skip:
                continue
            try:
                results.append(self.dispatch(event))
            except (RecipientError, LedgerError) as exc:
                self.human_logger.error(f"recovery of event {event.event_id} failed: {exc}")
        return results

    def _deliver(self, event: ATHEvent, subscriber: Subscriber, quote: AssetQuote | None) -> bool:
        try:
            confirmed = self.sender.send(subscriber, event, quote)
        except Exception as exc:
            self.human_logger.delivery_failed(subscriber.recipient_id, event.event_id, str(exc))
            return False
        if not confirmed:
            self.human_logger.delivery_failed(
                subscriber.recipient_id, event.event_id, "sender did not confirm"
            )
            return False
        record = NotificationRecord(
            event_id=event.event_id,
            recipient_id=subscriber.recipient_id,
            asset_id=event.asset_id,
            sent_at=self.clock(),
        )
        try:
            self.ledger.write_notification_record(record)
        except LedgerError as exc:
            self.human_logger.delivery_failed(subscriber.recipient_id, event.event_id, str(exc))
            return False
        self.human_logger.delivered(subscriber.recipient_id, event.symbol, event.event_id)
        return True

    @staticmethod
    def _unique(subscribers: list[Subscriber]) -> list[Subscriber]:
        unique: list[Subscriber] = []
        seen: set[str] = set()
        for subscriber in subscribers:
            if subscriber.recipient_id in seen:
                continue
            seen.add(subscriber.recipient_id)
            unique.append(subscriber)
        return unique
