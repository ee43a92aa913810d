from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from athwatch.detection.detector import (
    ATHDetector,
    is_crossing,
    resolve_new_ath,
    validate_quote,
)
from athwatch.domain.models import AssetQuote, ATHEvent, StoredAsset
from athwatch.errors import LedgerError
from athwatch.state.sqlite_store import SqliteLedger

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
EARLIER = datetime(2024, 11, 5, 8, 30, tzinfo=UTC)


def _quote(asset_id: str, price: float, ath: float | None = None, **kwargs) -> AssetQuote:
    return AssetQuote(
        asset_id=asset_id,
        symbol=asset_id.upper()[:4],
        name=asset_id.title(),
        current_price=price,
        ath=ath,
        **kwargs,
    )


def _detector(tmp_path: Path) -> tuple[ATHDetector, SqliteLedger]:
    ledger = SqliteLedger(str(tmp_path / "ledger.db"))
    return ATHDetector(ledger, clock=lambda: NOW), ledger


def test_crossing_above_stored_ath_emits_event_and_raises_stored_value(tmp_path: Path) -> None:
    detector, ledger = _detector(tmp_path)
    ledger.write_stored_asset("bitcoin", 100.0, EARLIER)

    events = detector.detect([_quote("bitcoin", 105.0, ath=103.0)])

    assert len(events) == 1
    assert events[0].new_ath == 105.0
    assert events[0].previous_ath == 100.0
    assert events[0].detected_at == NOW
    stored = ledger.get_stored_asset("bitcoin")
    assert stored == StoredAsset(asset_id="bitcoin", ath=105.0, ath_date=NOW)
    ledger.close()


def test_unseen_asset_is_seeded_with_higher_reported_ath_without_event(tmp_path: Path) -> None:
    detector, ledger = _detector(tmp_path)

    events = detector.detect([_quote("solana", 50.0, ath=52.0, ath_date=EARLIER)])

    assert events == []
    stored = ledger.get_stored_asset("solana")
    assert stored is not None
    assert stored.ath == 52.0
    assert stored.ath_date == EARLIER
    assert ledger.get_notification_history_since(EARLIER) == []
    ledger.close()


def test_price_equal_to_stored_ath_is_not_a_crossing(tmp_path: Path) -> None:
    detector, ledger = _detector(tmp_path)
    ledger.write_stored_asset("bitcoin", 100.0, EARLIER)

    events = detector.detect([_quote("bitcoin", 100.0, ath=100.0)])

    assert events == []
    assert ledger.get_stored_asset("bitcoin").ath == 100.0
    ledger.close()


def test_reported_ath_above_stored_is_caught_up_silently(tmp_path: Path) -> None:
    detector, ledger = _detector(tmp_path)
    ledger.write_stored_asset("ethereum", 100.0, EARLIER)

    events = detector.detect([_quote("ethereum", 90.0, ath=120.0, ath_date=EARLIER)])

    assert events == []
    assert ledger.get_stored_asset("ethereum").ath == 120.0
    ledger.close()


def test_crossing_uses_reported_ath_when_it_is_higher(tmp_path: Path) -> None:
    detector, ledger = _detector(tmp_path)
    ledger.write_stored_asset("bitcoin", 100.0, EARLIER)

    events = detector.detect([_quote("bitcoin", 105.0, ath=110.0)])

    assert events[0].new_ath == 110.0
    assert ledger.get_stored_asset("bitcoin").ath == 110.0
    ledger.close()


def test_invalid_prices_are_skipped_without_touching_the_ledger(tmp_path: Path) -> None:
    detector, ledger = _detector(tmp_path)

    events = detector.detect(
        [
            _quote("nan-coin", float("nan")),
            _quote("zero-coin", 0.0),
            _quote("negative-coin", -3.0),
            _quote("inf-coin", float("inf")),
            _quote("", 10.0),
        ]
    )

    assert events == []
    for asset_id in ("nan-coin", "zero-coin", "negative-coin", "inf-coin"):
        assert ledger.get_stored_asset(asset_id) is None
    ledger.close()


def test_duplicate_asset_in_one_snapshot_yields_one_event(tmp_path: Path) -> None:
    detector, ledger = _detector(tmp_path)
    ledger.write_stored_asset("bitcoin", 100.0, EARLIER)

    events = detector.detect([_quote("bitcoin", 101.0), _quote("bitcoin", 102.0)])

    assert len(events) == 1
    assert events[0].new_ath == 101.0
    ledger.close()


def test_detected_event_is_persisted_as_undispatched_history(tmp_path: Path) -> None:
    detector, ledger = _detector(tmp_path)
    ledger.write_stored_asset("bitcoin", 100.0, EARLIER)

    [event] = detector.detect([_quote("bitcoin", 120.0)])

    stored_event = ledger.get_event(event.event_id)
    assert stored_event is not None
    assert stored_event.dispatched is False
    assert [pending.event_id for pending in ledger.list_undispatched_events(EARLIER)] == [
        event.event_id
    ]
    ledger.close()


def test_events_follow_snapshot_order(tmp_path: Path) -> None:
    detector, ledger = _detector(tmp_path)
    for asset_id in ("alpha", "beta", "gamma"):
        ledger.write_stored_asset(asset_id, 10.0, EARLIER)

    events = detector.detect(
        [_quote("gamma", 11.0), _quote("alpha", 12.0), _quote("beta", 9.0)]
    )

    assert [event.asset_id for event in events] == ["gamma", "alpha"]
    ledger.close()


class FlakyLedger(SqliteLedger):
    def get_stored_asset(self, asset_id: str) -> StoredAsset | None:
        if asset_id == "broken":
            raise LedgerError("disk I/O error")
        return super().get_stored_asset(asset_id)


def test_ledger_failure_only_aborts_that_asset(tmp_path: Path) -> None:
    ledger = FlakyLedger(str(tmp_path / "ledger.db"))
    ledger.write_stored_asset("bitcoin", 100.0, EARLIER)
    detector = ATHDetector(ledger, clock=lambda: NOW)

    events = detector.detect([_quote("broken", 50.0), _quote("bitcoin", 101.0)])

    assert [event.asset_id for event in events] == ["bitcoin"]
    ledger.close()


def test_rule_helpers() -> None:
    assert is_crossing(100.01, 100.0)
    assert not is_crossing(100.0, 100.0)
    assert resolve_new_ath(105.0, 103.0, 100.0) == 105.0
    assert resolve_new_ath(105.0, None, 100.0) == 105.0
    assert resolve_new_ath(50.0, 52.0, 0.0) == 52.0
    assert validate_quote(_quote("btc", 1.0)) is None
    assert validate_quote(_quote("btc", float("nan"))) == "non-finite current price"


class FailOnceCrossingLedger(SqliteLedger):
    def __init__(self, db_path: str) -> None:
        super().__init__(db_path)
        self.failures = 1

    def record_crossing(self, event: ATHEvent, ath_date: datetime) -> StoredAsset:
        if self.failures:
            self.failures -= 1
            raise LedgerError("database is locked")
        return super().record_crossing(event, ath_date)


def test_failed_crossing_commit_is_detected_again_next_cycle(tmp_path: Path) -> None:
    ledger = FailOnceCrossingLedger(str(tmp_path / "ledger.db"))
    ledger.write_stored_asset("bitcoin", 100.0, EARLIER)
    detector = ATHDetector(ledger, clock=lambda: NOW)

    first = detector.detect([_quote("bitcoin", 105.0)])
    assert first == []
    assert ledger.get_stored_asset("bitcoin").ath == 100.0

    [event] = detector.detect([_quote("bitcoin", 105.0)])
    assert event.new_ath == 105.0
    assert ledger.get_stored_asset("bitcoin").ath == 105.0
    assert [pending.event_id for pending in ledger.list_undispatched_events(EARLIER)] == [
        event.event_id
    ]
    ledger.close()
