"""Self-owned repeating timer driving the detect-then-dispatch cycle."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from athwatch.domain.models import CycleReport, utc_now
from athwatch.errors import SchedulerError
from athwatch.logging.logger import HumanLogger


@dataclass(frozen=True)
class SchedulerStatus:
    """Point-in-time view of scheduler state and last-run telemetry."""

    running: bool
    interval_seconds: float | None
    in_flight: bool
    started_at: datetime | None
    last_run_at: datetime | None
    last_success_at: datetime | None
    last_failure_at: datetime | None
    last_error: str | None
    last_duration_seconds: float | None
    last_event_count: int
    cycles_completed: int
    cycles_failed: int
    ticks_skipped: int


class JobScheduler:
    """Run one cycle per interval on a background thread, never overlapping.

    `run_once` is shared by the timer and by operators. A cycle that is
    already in flight makes any concurrent trigger a logged no-op. `stop`
    only prevents future ticks; a running cycle is left to finish.
    """

    def __init__(
        self,
        cycle: Callable[[], CycleReport],
        human_logger: HumanLogger | None = None,
        clock: Callable[[], datetime] = utc_now,
        thread_factory: Callable[..., threading.Thread] = threading.Thread,
    ) -> None:
        self.cycle = cycle
        self.human_logger = human_logger or HumanLogger()
        self.clock = clock
        self.thread_factory = thread_factory
        self._state_lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None
        self._running = False
        self._interval_seconds: float | None = None
        self._started_at: datetime | None = None
        self._in_flight = False
        self._last_run_at: datetime | None = None
        self._last_success_at: datetime | None = None
        self._last_failure_at: datetime | None = None
        self._last_error: str | None = None
        self._last_duration_seconds: float | None = None
        self._last_event_count = 0
        self._cycles_completed = 0
        self._cycles_failed = 0
        self._ticks_skipped = 0

    def start(self, interval_seconds: float, run_immediately: bool = False) -> None:
        with self._state_lock:
            if self._running:
                self.human_logger.scheduler("already running")
                return
            if interval_seconds is None or interval_seconds <= 0:
                raise SchedulerError(f"interval_seconds must be positive, got {interval_seconds}")
            stop_event = threading.Event()
            try:
                thread = self.thread_factory(
                    target=self._loop,
                    args=(stop_event, float(interval_seconds), run_immediately),
                    name="athwatch-scheduler",
                    daemon=True,
                )
                thread.start()
            except RuntimeError as exc:
                raise SchedulerError(f"Cannot start scheduler thread: {exc}") from exc
            self._stop_event = stop_event
            self._thread = thread
            self._running = True
            self._interval_seconds = float(interval_seconds)
            self._started_at = self.clock()
        self.human_logger.scheduler(
            "started",
            {"every": f"{interval_seconds}s", "immediate": run_immediately},
        )

    def stop(self) -> None:
        with self._state_lock:
            if not self._running:
                return
            if self._stop_event is not None:
                self._stop_event.set()
            self._running = False
            self._stop_event = None
        self.human_logger.scheduler("stopped")

    def join(self, timeout: float | None = None) -> None:
        """Wait for the timer thread, including any cycle still in flight."""
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def run_once(self) -> CycleReport | None:
        """Run one cycle now; return None when skipped or failed."""
        return self._run_cycle(stop_event=None)

    def status(self) -> SchedulerStatus:
        with self._state_lock:
            return SchedulerStatus(
                running=self._running,
                interval_seconds=self._interval_seconds,
                in_flight=self._in_flight,
                started_at=self._started_at,
                last_run_at=self._last_run_at,
                last_success_at=self._last_success_at,
                last_failure_at=self._last_failure_at,
                last_error=self._last_error,
                last_duration_seconds=self._last_duration_seconds,
                last_event_count=self._last_event_count,
                cycles_completed=self._cycles_completed,
                cycles_failed=self._cycles_failed,
                ticks_skipped=self._ticks_skipped,
            )

    @property
    def running(self) -> bool:
        return self._running

    def _loop(self, stop_event: threading.Event, interval: float, run_immediately: bool) -> None:
        if run_immediately and not stop_event.is_set():
            self._run_cycle(stop_event)
        while not stop_event.wait(interval):
            self._run_cycle(stop_event)

    def _run_cycle(self, stop_event: threading.Event | None) -> CycleReport | None:
        if not self._cycle_lock.acquire(blocking=False):
            with self._state_lock:
                self._ticks_skipped += 1
            self.human_logger.cycle_skipped("previous cycle still in flight")
            return None
        try:
            # A tick that raced with stop() must not start a cycle.
            if stop_event is not None and stop_event.is_set():
                return None
            started_at = self.clock()
            with self._state_lock:
                self._in_flight = True
                self._last_run_at = started_at
            try:
                report = self.cycle()
            except Exception as exc:
                finished_at = self.clock()
                message = str(exc) or exc.__class__.__name__
                with self._state_lock:
                    self._last_failure_at = finished_at
                    self._last_error = message
                    self._last_duration_seconds = (finished_at - started_at).total_seconds()
                    self._cycles_failed += 1
                self.human_logger.error(f"cycle failed: {message}")
                return None
            finished_at = self.clock()
            with self._state_lock:
                self._last_success_at = finished_at
                self._last_duration_seconds = (finished_at - started_at).total_seconds()
                self._last_event_count = report.event_count
                self._cycles_completed += 1
            return report
        finally:
            with self._state_lock:
                self._in_flight = False
            self._cycle_lock.release()
