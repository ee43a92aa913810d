"""Recipient resolution for ATH notifications."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

import pandas as pd

from athwatch.domain.models import Subscriber, utc_now
from athwatch.errors import RecipientError

TRUTHY = {"1", "true", "yes", "y", "on"}


class RecipientDirectory(Protocol):
    """Interface for resolving who is entitled to notifications."""

    def get_eligible_recipients(self) -> list[Subscriber]:
        """Return subscribers currently eligible for ATH notifications."""


class CsvRecipientDirectory:
    """Read subscribers from a CSV export and apply the eligibility rules.

    The file is re-read on every call so subscription changes made by the
    web application are picked up by the next cycle.
    """

    column_aliases = {
        "id": "recipient_id",
        "user_id": "recipient_id",
        "userid": "recipient_id",
        "notificationsenabled": "notifications_enabled",
        "isactive": "is_active",
        "status": "subscription_status",
        "enddate": "subscription_end",
        "end_date": "subscription_end",
    }

    def __init__(self, path: str, clock: Callable[[], datetime] = utc_now) -> None:
        self.path = Path(path)
        self.clock = clock

    def get_eligible_recipients(self) -> list[Subscriber]:
        now = self.clock()
        return [subscriber for subscriber in self.load_subscribers() if subscriber.is_eligible(now)]

    def load_subscribers(self) -> list[Subscriber]:
        if not self.path.exists():
            raise RecipientError(f"Subscribers CSV not found: {self.path}")
        try:
            frame = pd.read_csv(self.path, dtype=str, keep_default_na=False)
        except (OSError, ValueError) as exc:
            raise RecipientError(f"Cannot read subscribers CSV {self.path}: {exc}") from exc
        frame = frame.rename(
            columns=lambda column: self.column_aliases.get(
                str(column).strip().lower(), str(column).strip().lower()
            )
        )
        for column in ("recipient_id", "email"):
            if column not in frame.columns:
                raise RecipientError(f"Subscribers CSV {self.path} missing column: {column}")

        subscribers: list[Subscriber] = []
        seen: set[str] = set()
        for row in frame.to_dict("records"):
            recipient_id = str(row["recipient_id"]).strip()
            email = str(row["email"]).strip()
            if not recipient_id or not email or recipient_id in seen:
                continue
            seen.add(recipient_id)
            subscribers.append(
                Subscriber(
                    recipient_id=recipient_id,
                    email=email,
                    notifications_enabled=_parse_flag(row.get("notifications_enabled"), True),
                    is_active=_parse_flag(row.get("is_active"), True),
                    role=str(row.get("role") or "user").strip().lower(),
                    subscription_status=str(row.get("subscription_status") or "active")
                    .strip()
                    .lower(),
                    subscription_end=_parse_end(row.get("subscription_end")),
                )
            )
        return subscribers


def _parse_flag(value: object, default: bool) -> bool:
    if value is None or not str(value).strip():
        return default
    return str(value).strip().lower() in TRUTHY


def _parse_end(value: object) -> datetime | None:
    if value is None or not str(value).strip():
        return None
    parsed = pd.to_datetime(str(value).strip(), utc=True, errors="coerce")
    if pd.isna(parsed):
        # Unparseable end dates are treated as already expired.
        return datetime.min.replace(tzinfo=UTC)
    return parsed.to_pydatetime()
