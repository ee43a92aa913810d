"""All-time-high detection against the ledger."""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import datetime

from athwatch.domain.models import AssetQuote, ATHEvent, utc_now
from athwatch.errors import LedgerError
from athwatch.logging.logger import HumanLogger
from athwatch.state.store import Ledger


def validate_quote(quote: AssetQuote) -> str | None:
    """Return an anomaly reason, or None when the quote can be evaluated."""
    if not quote.asset_id:
        return "missing asset id"
    price = quote.current_price
    if price is None or isinstance(price, bool) or not isinstance(price, (int, float)):
        return "missing current price"
    if not math.isfinite(price):
        return "non-finite current price"
    if price <= 0:
        return f"non-positive current price {price}"
    return None


def reported_ath(quote: AssetQuote) -> float | None:
    """Return the provider-reported ATH when it is usable."""
    value = quote.ath
    if value is None or not math.isfinite(value) or value <= 0:
        return None
    return float(value)


def is_crossing(current_price: float, stored_ath: float) -> bool:
    """Strictly above the stored ATH; equality is not a new high."""
    return current_price > stored_ath


def resolve_new_ath(current_price: float, reported: float | None, previous_ath: float) -> float:
    """Trust the higher of observed and reported highs, never below the stored value."""
    candidates = [current_price, previous_ath]
    if reported is not None:
        candidates.append(reported)
    return max(candidates)


class ATHDetector:
    """Diff fresh quotes against the ledger and emit ATH crossing events.

    The new high and its history row are committed in one ledger transaction
    before `detect` returns the event. A crash after the commit leaves an
    undispatched event for the next recovery pass; a failed commit leaves the
    stored high untouched, so the crossing is detected again next cycle.
    """

    def __init__(
        self,
        ledger: Ledger,
        human_logger: HumanLogger | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.ledger = ledger
        self.human_logger = human_logger or HumanLogger()
        self.clock = clock

    def detect(self, quotes: list[AssetQuote]) -> list[ATHEvent]:
        events: list[ATHEvent] = []
        seen: set[str] = set()
        for quote in quotes:
            reason = validate_quote(quote)
            if reason is not None:
                self.human_logger.anomaly(quote.asset_id, reason)
                continue
            if quote.asset_id in seen:
                self.human_logger.anomaly(quote.asset_id, "duplicate quote in snapshot")
                continue
            seen.add(quote.asset_id)
            try:
                event = self._evaluate(quote)
            except LedgerError as exc:
                self.human_logger.error(f"{quote.asset_id}: {exc}")
                continue
            if event is not None:
                events.append(event)
        return events

    def _evaluate(self, quote: AssetQuote) -> ATHEvent | None:
        now = self.clock()
        reported = reported_ath(quote)
        stored = self.ledger.get_stored_asset(quote.asset_id)

        if stored is None:
            seed = resolve_new_ath(quote.current_price, reported, 0.0)
            seed_date = self._ath_date(quote, seed, now)
            self.ledger.write_stored_asset(quote.asset_id, seed, seed_date)
            self.human_logger.seeded(quote.asset_id, seed)
            return None

        if not is_crossing(quote.current_price, stored.ath):
            if reported is not None and reported > stored.ath:
                self.ledger.write_stored_asset(
                    quote.asset_id,
                    reported,
                    quote.ath_date or now,
                )
                self.human_logger.catch_up(quote.asset_id, stored.ath, reported)
            return None

        new_ath = resolve_new_ath(quote.current_price, reported, stored.ath)
        event = ATHEvent(
            asset_id=quote.asset_id,
            symbol=quote.symbol or quote.asset_id.upper(),
            name=quote.name or quote.asset_id,
            new_ath=new_ath,
            previous_ath=stored.ath,
            detected_at=now,
        )
        self.ledger.record_crossing(event, self._ath_date(quote, new_ath, now))
        self.human_logger.ath_detected(
            event.symbol,
            event.new_ath,
            event.previous_ath,
            event.percent_increase,
        )
        return event

    @staticmethod
    def _ath_date(quote: AssetQuote, ath: float, now: datetime) -> datetime:
        if quote.ath_date is not None and ath > quote.current_price:
            return quote.ath_date
        return now
