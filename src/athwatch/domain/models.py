"""Core ATH pipeline domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from uuid import uuid4


def utc_now() -> datetime:
    """Return an aware UTC timestamp."""
    return datetime.now(tz=UTC)


def new_event_id() -> str:
    """Generate an opaque 16-character event id."""
    return uuid4().hex[:16]


class SubscriptionStatus(StrEnum):
    """Subscription states known to the recipient directory."""

    ACTIVE = "active"
    EXPIRED = "expired"
    PENDING = "pending"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AssetQuote:
    """Fresh per-tick market data for one ranked asset."""

    asset_id: str
    symbol: str
    name: str
    current_price: float
    ath: float | None = None
    ath_date: datetime | None = None
    market_cap_rank: int | None = None
    last_updated: datetime | None = None


@dataclass(frozen=True)
class StoredAsset:
    """Last confirmed all-time-high held by the ledger."""

    asset_id: str
    ath: float
    ath_date: datetime


@dataclass(frozen=True)
class ATHEvent:
    """A detected all-time-high crossing."""

    asset_id: str
    symbol: str
    name: str
    new_ath: float
    previous_ath: float
    detected_at: datetime = field(default_factory=utc_now)
    event_id: str = field(default_factory=new_event_id)
    recipient_count: int = 0
    dispatched: bool = False

    @property
    def percent_increase(self) -> float:
        if self.previous_ath <= 0:
            return 0.0
        return (self.new_ath - self.previous_ath) / self.previous_ath * 100.0

    def history_key(self) -> tuple[str, str]:
        """Asset and calendar day; same-day events count once in history views."""
        return self.asset_id, self.detected_at.astimezone(UTC).date().isoformat()


@dataclass(frozen=True)
class NotificationRecord:
    """Proof that one recipient was sent one event."""

    event_id: str
    recipient_id: str
    asset_id: str
    sent_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class Subscriber:
    """Notification recipient as resolved by the recipient directory."""

    recipient_id: str
    email: str
    notifications_enabled: bool = True
    is_active: bool = True
    role: str = "user"
    subscription_status: str = SubscriptionStatus.ACTIVE
    subscription_end: datetime | None = None

    def is_eligible(self, now: datetime | None = None) -> bool:
        """Return true when this subscriber is entitled to ATH notifications."""
        if not self.notifications_enabled or not self.is_active:
            return False
        if self.role == "admin":
            return False
        if self.subscription_status != SubscriptionStatus.ACTIVE:
            return False
        if self.subscription_end is None:
            return True
        return (now or utc_now()) <= self.subscription_end


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of one dispatch call for one event."""

    event_id: str
    recipient_count: int
    sent: int = 0
    failed: int = 0
    already_notified: int = 0


@dataclass(frozen=True)
class CycleReport:
    """Aggregate statistics of one detect-then-dispatch cycle."""

    run_id: str
    started_at: datetime
    finished_at: datetime
    quote_count: int = 0
    event_ids: list[str] = field(default_factory=list)
    recovered_event_ids: list[str] = field(default_factory=list)
    sent: int = 0
    failed: int = 0

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def event_count(self) -> int:
        return len(self.event_ids)
