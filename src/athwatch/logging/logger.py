"""Concise human-readable pipeline logger."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any


class HumanLogger:
    """Console logger with fixed line types."""

    def __init__(self, level: str = "INFO", log_file: str | None = None) -> None:
        self._logger = logging.getLogger("athwatch")
        self._logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        self._logger.propagate = False
        if not self._logger.handlers:
            formatter = logging.Formatter("%(asctime)s | %(message)s", "%Y-%m-%d %H:%M:%S")
            handler = logging.StreamHandler()
            handler.setFormatter(formatter)
            self._logger.addHandler(handler)
            if log_file:
                file_handler = logging.FileHandler(log_file)
                file_handler.setFormatter(formatter)
                self._logger.addHandler(file_handler)

    def run_started(self, run_id: str, interval_seconds: int, data_source: str) -> None:
        self._logger.info(
            "run | %s | every %ss | source %s",
            self._short_id(run_id),
            interval_seconds,
            data_source,
        )

    def cycle_started(self, run_id: str) -> None:
        self._logger.debug("cycle | start | %s", self._short_id(run_id))

    def quotes_fetched(self, count: int, as_of: datetime | None = None) -> None:
        if as_of is None:
            self._logger.info("cycle | quotes %s", count)
            return
        self._logger.info(
            "cycle | quotes %s | as of %s", count, as_of.isoformat(timespec="seconds")
        )

    def seeded(self, asset_id: str, ath: float) -> None:
        self._logger.debug("seed | %s | ath %s", asset_id, self._format_price(ath))

    def catch_up(self, asset_id: str, previous_ath: float, reported_ath: float) -> None:
        self._logger.info(
            "catch-up | %s | stored %s -> reported %s",
            asset_id,
            self._format_price(previous_ath),
            self._format_price(reported_ath),
        )

    def ath_detected(
        self,
        symbol: str,
        new_ath: float,
        previous_ath: float,
        percent_increase: float,
    ) -> None:
        self._logger.info(
            "ath | %s | new %s | prev %s | %s",
            symbol,
            self._format_price(new_ath),
            self._format_price(previous_ath),
            f"{percent_increase:+.2f}%",
        )

    def anomaly(self, asset_id: str, reason: str) -> None:
        self._logger.warning("anomaly | %s | %s", asset_id or "?", reason)

    def delivered(
        self,
        recipient_id: str,
        symbol: str,
        event_id: str,
        dry_run: bool = False,
    ) -> None:
        if dry_run:
            self._logger.info(
                "deliver | dry-run | %s | %s | event %s", recipient_id, symbol, event_id
            )
            return
        self._logger.debug("deliver | sent | %s | %s | event %s", recipient_id, symbol, event_id)

    def delivery_failed(self, recipient_id: str, event_id: str, reason: str) -> None:
        self._logger.warning(
            "deliver | failed | %s | event %s | %s",
            recipient_id,
            self._short_id(event_id),
            reason,
        )

    def dispatch_summary(
        self,
        symbol: str,
        event_id: str,
        sent: int,
        eligible: int,
        recipient_count: int,
    ) -> None:
        self._logger.info(
            "dispatch | %s | event %s | sent %s/%s | total %s",
            symbol,
            self._short_id(event_id),
            sent,
            eligible,
            recipient_count,
        )

    def cycle_summary(
        self,
        events: int,
        recovered: int,
        sent: int,
        failed: int,
        duration_seconds: float,
    ) -> None:
        parts = [f"cycle | done | ath {events}"]
        if recovered:
            parts.append(f"recovered {recovered}")
        parts.append(f"sent {sent}")
        if failed:
            parts.append(f"failed {failed}")
        parts.append(f"{duration_seconds:.2f}s")
        self._logger.info(" | ".join(parts))

    def cycle_skipped(self, reason: str) -> None:
        self._logger.warning("cycle | skipped | %s", reason)

    def scheduler(self, status: str, details: dict[str, Any] | None = None) -> None:
        parts = [f"scheduler | {status}"]
        for key, value in sorted((details or {}).items()):
            parts.append(f"{key} {value}")
        self._logger.info(" | ".join(parts))

    def error(self, message: str) -> None:
        self._logger.error("error | %s", message)

    @staticmethod
    def _short_id(value: str | None, head: int = 10, tail: int = 6) -> str:
        if not value:
            return ""
        text = str(value)
        if len(text) <= head + tail + 1:
            return text
        return f"{text[:head]}...{text[-tail:]}"

    @staticmethod
    def _format_price(value: float) -> str:
        if abs(value) >= 1:
            return f"${value:,.2f}"
        return f"${value:.8f}".rstrip("0").rstrip(".")

