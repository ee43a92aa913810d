"""Runtime wiring, cycle orchestration and operator actions."""

from __future__ import annotations

import signal
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

from athwatch.config import Settings
from athwatch.data.base import SnapshotSource
from athwatch.data.coingecko import CoinGeckoSnapshotSource
from athwatch.data.csv_data import CsvSnapshotSource
from athwatch.detection.detector import ATHDetector
from athwatch.domain.events import JobEvent
from athwatch.domain.models import AssetQuote, ATHEvent, CycleReport, DispatchResult, utc_now
from athwatch.errors import LedgerError, RecipientError, SchedulerError, SnapshotError
from athwatch.logging.event_sink import JsonlEventSink, generate_plotly_report
from athwatch.logging.logger import HumanLogger
from athwatch.notify.dispatcher import NotificationDispatcher
from athwatch.notify.recipients import CsvRecipientDirectory, RecipientDirectory
from athwatch.notify.senders import LogSender, ResendEmailSender, Sender
from athwatch.reporting import notification_stats, recent_events, user_notification_counts
from athwatch.scheduling.scheduler import JobScheduler
from athwatch.state.sqlite_store import SqliteLedger
from athwatch.state.store import Ledger


@dataclass
class Pipeline:
    """Collaborators shared by every cycle of one process."""

    ledger: Ledger
    source: SnapshotSource
    detector: ATHDetector
    dispatcher: NotificationDispatcher
    human_logger: HumanLogger


@dataclass
class RunContext:
    """Per-run output locations and telemetry sink."""

    run_id: str
    events_path: Path
    report_path: Path
    event_sink: JsonlEventSink


def run(settings: Settings, shutdown: threading.Event | None = None) -> int:
    """Start the scheduler and block until SIGINT/SIGTERM."""
    pipeline = build_pipeline(settings)
    context = open_run_context(settings)
    human_logger = pipeline.human_logger
    stop_requested = shutdown or threading.Event()

    human_logger.run_started(context.run_id, settings.interval_seconds, settings.data_source)
    context.event_sink.emit(
        JobEvent(
            run_id=context.run_id,
            event_type="run_started",
            payload={
                "interval_seconds": settings.interval_seconds,
                "data_source": settings.data_source,
                "sender": settings.sender,
            },
        )
    )
    scheduler = JobScheduler(
        cycle=lambda: execute_cycle(settings, pipeline, context.run_id, context.event_sink),
        human_logger=human_logger,
    )
    previous_handlers = install_shutdown_handlers(stop_requested)

    exit_code = 0
    try:
        scheduler.start(settings.interval_seconds, run_immediately=settings.run_on_start)
        while not stop_requested.wait(1.0):
            pass
    except KeyboardInterrupt:
        exit_code = 0
    except SchedulerError as exc:
        human_logger.error(str(exc))
        context.event_sink.emit(
            JobEvent(
                run_id=context.run_id,
                event_type="error",
                payload={"message": str(exc)},
            )
        )
        exit_code = 1
    finally:
        restore_handlers(previous_handlers)
        scheduler.stop()
        # The ledger is closed below; an in-flight cycle must finish first.
        scheduler.join()
        status = scheduler.status()
        context.event_sink.emit(
            JobEvent(
                run_id=context.run_id,
                event_type="run_stopped",
                payload={
                    "cycles_completed": status.cycles_completed,
                    "cycles_failed": status.cycles_failed,
                    "ticks_skipped": status.ticks_skipped,
                    "last_error": status.last_error,
                },
            )
        )
        try:
            generate_plotly_report(str(context.events_path), str(context.report_path))
        finally:
            pipeline.ledger.close()
    return exit_code


def run_once_command(settings: Settings) -> int:
    """Run a single cycle through the scheduler's guarded entry point."""
    pipeline = build_pipeline(settings)
    context = open_run_context(settings)
    scheduler = JobScheduler(
        cycle=lambda: execute_cycle(settings, pipeline, context.run_id, context.event_sink),
        human_logger=pipeline.human_logger,
    )
    try:
        report = scheduler.run_once()
        generate_plotly_report(str(context.events_path), str(context.report_path))
    finally:
        pipeline.ledger.close()
    if report is None:
        return 1
    print(
        f"cycle {context.run_id[:10]}: quotes={report.quote_count} "
        f"events={report.event_count} recovered={len(report.recovered_event_ids)} "
        f"sent={report.sent} failed={report.failed}"
    )
    return 0 if report.failed == 0 else 1


def execute_cycle(
    settings: Settings,
    pipeline: Pipeline,
    run_id: str,
    event_sink: JsonlEventSink,
) -> CycleReport:
    """Poll, detect, dispatch fresh events, then retry pending ones."""
    human_logger = pipeline.human_logger
    started_at = utc_now()
    human_logger.cycle_started(run_id)

    try:
        quotes = pipeline.source.get_ranked_quotes()
    except SnapshotError as exc:
        human_logger.error(f"snapshot failed: {exc}")
        event_sink.emit(
            JobEvent(
                run_id=run_id,
                event_type="cycle_failed",
                payload={"stage": "snapshot", "message": str(exc)},
            )
        )
        raise
    snapshot_as_of = latest_quote_time(quotes)
    human_logger.quotes_fetched(len(quotes), snapshot_as_of)
    quotes_by_id = {quote.asset_id: quote for quote in quotes}

    events = pipeline.detector.detect(quotes)
    sent = 0
    failed = 0
    for event in events:
        event_sink.emit(
            JobEvent(
                run_id=run_id,
                event_type="ath_detected",
                payload=serialize_event(event),
            )
        )
        result = dispatch_event(
            pipeline=pipeline,
            event=event,
            quote=quotes_by_id.get(event.asset_id),
        )
        if result is None:
            continue
        sent += result.sent
        failed += result.failed
        event_sink.emit(
            JobEvent(
                run_id=run_id,
                event_type="dispatch",
                payload=serialize_dispatch(event.symbol, result),
            )
        )

    since = started_at - timedelta(hours=settings.recovery_window_hours)
    try:
        recovered = pipeline.dispatcher.dispatch_pending(
            since,
            exclude={event.event_id for event in events},
        )
    except LedgerError as exc:
        human_logger.error(f"recovery pass failed: {exc}")
        recovered = []
    for result in recovered:
        sent += result.sent
        failed += result.failed
        event_sink.emit(
            JobEvent(
                run_id=run_id,
                event_type="dispatch",
                payload={**serialize_dispatch("", result), "recovered": True},
            )
        )

    report = CycleReport(
        run_id=run_id,
        started_at=started_at,
        finished_at=utc_now(),
        quote_count=len(quotes),
        event_ids=[event.event_id for event in events],
        recovered_event_ids=[result.event_id for result in recovered],
        sent=sent,
        failed=failed,
    )
    human_logger.cycle_summary(
        events=report.event_count,
        recovered=len(report.recovered_event_ids),
        sent=report.sent,
        failed=report.failed,
        duration_seconds=report.duration_seconds,
    )
    event_sink.emit(
        JobEvent(
            run_id=run_id,
            event_type="cycle_summary",
            payload={
                "quotes": report.quote_count,
                "snapshot_as_of": snapshot_as_of.isoformat() if snapshot_as_of else None,
                "events": report.event_ids,
                "recovered": report.recovered_event_ids,
                "sent": report.sent,
                "failed": report.failed,
                "duration_seconds": round(report.duration_seconds, 3),
            },
        )
    )
    return report


def latest_quote_time(quotes: list[AssetQuote]) -> datetime | None:
    """Newest provider `last_updated` stamp in a snapshot, if any quote carries one."""
    stamps = [quote.last_updated for quote in quotes if quote.last_updated is not None]
    return max(stamps) if stamps else None


def dispatch_event(
    pipeline: Pipeline,
    event: ATHEvent,
    quote: AssetQuote | None = None,
) -> DispatchResult | None:
    """Dispatch one fresh event; failures leave it pending for recovery."""
    try:
        return pipeline.dispatcher.dispatch(event, quote)
    except (RecipientError, LedgerError) as exc:
        pipeline.human_logger.error(f"dispatch of event {event.event_id} failed: {exc}")
        return None


def resend(settings: Settings, event_id: str) -> int:
    """Re-dispatch one stored event; recipients already holding a record are skipped."""
    pipeline = build_pipeline(settings)
    try:
        event = pipeline.ledger.get_event(event_id)
        if event is None:
            print(f"Unknown event id: {event_id}")
            return 1
        result = dispatch_event(pipeline, event)
    finally:
        pipeline.ledger.close()
    if result is None:
        return 1
    print(
        f"{event.symbol} event {event.event_id}: sent={result.sent} failed={result.failed} "
        f"already_notified={result.already_notified} recipients={result.recipient_count}"
    )
    return 0 if result.failed == 0 else 1


def show_recent(settings: Settings, hours: int) -> int:
    """Print ATH events detected within the trailing window."""
    ledger = build_ledger(settings)
    try:
        events = recent_events(ledger, hours=hours)
    finally:
        ledger.close()
    if not events:
        print(f"No ATH events in the last {hours}h")
        return 0
    print(f"ATH events in the last {hours}h: {len(events)}")
    for event in events:
        print(
            f"  {event.detected_at.isoformat(timespec='seconds')} {event.symbol:<8} "
            f"new={event.new_ath:.8g} prev={event.previous_ath:.8g} "
            f"({event.percent_increase:+.2f}%) recipients={event.recipient_count} "
            f"id={event.event_id}"
        )
    return 0


def show_user_count(settings: Settings, recipient_id: str) -> int:
    """Print per-recipient notification counts."""
    ledger = build_ledger(settings)
    try:
        counts = user_notification_counts(ledger, recipient_id)
    finally:
        ledger.close()
    print(f"Notifications for {counts.recipient_id}")
    print(f"  total:     {counts.total}")
    print(f"  last 30d:  {counts.recent_30d}")
    print(f"  last 7d:   {counts.weekly_7d}")
    print(f"  all time:  {counts.all_time}")
    return 0


def show_stats(settings: Settings, days: int) -> int:
    """Print aggregate notification statistics."""
    ledger = build_ledger(settings)
    try:
        stats = notification_stats(ledger, days=days)
    finally:
        ledger.close()
    print(f"Notification stats, last {stats.days}d")
    print(f"  notifications:        {stats.total_notifications}")
    print(f"  unique (asset, day):  {stats.unique_notifications}")
    print(f"  unique assets:        {stats.unique_assets}")
    print(f"  recipients:           {stats.total_recipients}")
    print(f"  avg per notification: {stats.average_recipients_per_notification:.2f}")
    return 0


def serialize_event(event: ATHEvent) -> dict[str, Any]:
    """Convert an ATH event into a stable event payload."""
    return {
        "event_id": event.event_id,
        "asset_id": event.asset_id,
        "symbol": event.symbol,
        "new_ath": event.new_ath,
        "previous_ath": event.previous_ath,
        "percent_increase": round(event.percent_increase, 4),
        "detected_at": event.detected_at.isoformat(),
    }


def serialize_dispatch(symbol: str, result: DispatchResult) -> dict[str, Any]:
    return {
        "event_id": result.event_id,
        "symbol": symbol,
        "sent": result.sent,
        "failed": result.failed,
        "already_notified": result.already_notified,
        "recipient_count": result.recipient_count,
    }


def install_shutdown_handlers(shutdown: threading.Event) -> dict[int, Any]:
    """Route SIGINT/SIGTERM to `shutdown`; returns the handlers they replaced."""
    previous: dict[int, Any] = {}
    if threading.current_thread() is not threading.main_thread():
        return previous

    def _handle(signum: int, _frame: Any) -> None:
        _ = signum
        shutdown.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, _handle)
    return previous


def restore_handlers(previous: dict[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def open_run_context(settings: Settings) -> RunContext:
    run_id = uuid4().hex
    run_directory = Path(settings.events_dir) / run_id
    run_directory.mkdir(parents=True, exist_ok=True)
    events_path = run_directory / "events.jsonl"
    return RunContext(
        run_id=run_id,
        events_path=events_path,
        report_path=run_directory / "report.html",
        event_sink=JsonlEventSink(str(events_path)),
    )


def build_pipeline(
    settings: Settings,
    human_logger: HumanLogger | None = None,
) -> Pipeline:
    """Wire every collaborator from settings."""
    logger = human_logger or HumanLogger(
        level=settings.log_level,
        log_file=settings.log_file or None,
    )
    ledger = build_ledger(settings)
    return Pipeline(
        ledger=ledger,
        source=build_snapshot_source(settings, logger),
        detector=ATHDetector(ledger, human_logger=logger),
        dispatcher=NotificationDispatcher(
            ledger=ledger,
            recipients=build_recipients(settings),
            sender=build_sender(settings, logger),
            human_logger=logger,
            max_workers=settings.dispatch_workers,
            batch_size=settings.dispatch_batch_size,
        ),
        human_logger=logger,
    )


def build_snapshot_source(settings: Settings, human_logger: HumanLogger) -> SnapshotSource:
    """Select snapshot source implementation from settings."""
    if settings.data_source == "csv":
        return CsvSnapshotSource(settings.quotes_csv_path)
    return CoinGeckoSnapshotSource(
        base_url=settings.coingecko_base_url,
        api_key=settings.coingecko_api_key,
        pages=settings.ranked_pages,
        per_page=settings.per_page,
        timeout=settings.http_timeout,
        max_retries=settings.max_retries,
        human_logger=human_logger,
    )


def build_ledger(settings: Settings) -> Ledger:
    return SqliteLedger(settings.state_db_path)


def build_recipients(settings: Settings) -> RecipientDirectory:
    return CsvRecipientDirectory(settings.subscribers_path)


def build_sender(settings: Settings, human_logger: HumanLogger) -> Sender:
    """Select sender implementation from settings."""
    if settings.sender == "resend":
        return ResendEmailSender(
            api_key=settings.resend_api_key,
            from_address=settings.email_from,
            base_url=settings.resend_base_url,
            timeout=settings.http_timeout,
            max_retries=settings.max_retries,
        )
    return LogSender(human_logger)

