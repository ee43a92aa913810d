"""Domain models and event types."""

from .events import JobEvent
from .models import (
    AssetQuote,
    ATHEvent,
    CycleReport,
    DispatchResult,
    NotificationRecord,
    StoredAsset,
    Subscriber,
    SubscriptionStatus,
    new_event_id,
    utc_now,
)

__all__ = [
    "AssetQuote",
    "ATHEvent",
    "CycleReport",
    "DispatchResult",
    "JobEvent",
    "NotificationRecord",
    "StoredAsset",
    "Subscriber",
    "SubscriptionStatus",
    "new_event_id",
    "utc_now",
]
