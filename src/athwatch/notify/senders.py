"""Outbound notification senders."""

from __future__ import annotations

from time import sleep
from typing import Protocol

import requests

from athwatch.domain.models import AssetQuote, ATHEvent, Subscriber
from athwatch.errors import DeliveryError
from athwatch.logging.logger import HumanLogger


class Sender(Protocol):
    """Interface for delivering one event to one recipient."""

    def send(self, recipient: Subscriber, event: ATHEvent, quote: AssetQuote | None) -> bool:
        """Deliver the notification; return true only on confirmed send."""


def build_subject(event: ATHEvent) -> str:
    return f"{event.name} ({event.symbol}) hit a new all-time high"


def build_text(event: ATHEvent, quote: AssetQuote | None = None) -> str:
    """Plain-text notification body."""
    lines = [
        f"{event.name} ({event.symbol}) reached a new all-time high of {_price(event.new_ath)}.",
        f"Previous all-time high: {_price(event.previous_ath)} "
        f"({event.percent_increase:+.2f}%).",
        f"Detected at {event.detected_at.strftime('%Y-%m-%d %H:%M:%S %Z').strip()}.",
    ]
    if quote is not None and quote.market_cap_rank is not None:
        lines.append(f"Market cap rank: #{quote.market_cap_rank}.")
    return "\n".join(lines)


def _price(value: float) -> str:
    if abs(value) >= 1:
        return f"${value:,.2f}"
    return f"${value:.8f}".rstrip("0").rstrip(".")


class LogSender:
    """Dry-run sender that only logs what would be delivered."""

    def __init__(self, human_logger: HumanLogger | None = None) -> None:
        self.human_logger = human_logger or HumanLogger()

    def send(self, recipient: Subscriber, event: ATHEvent, quote: AssetQuote | None) -> bool:
        _ = quote
        self.human_logger.delivered(
            recipient.recipient_id, event.symbol, event.event_id, dry_run=True
        )
        return True


class ResendEmailSender:
    """Email sender backed by the Resend HTTP API, with retry on throttling."""

    def __init__(
        self,
        api_key: str,
        from_address: str,
        base_url: str = "https://api.resend.com",
        timeout: int = 20,
        max_retries: int = 3,
    ) -> None:
        if not api_key:
            raise DeliveryError("RESEND_API_KEY is required for the resend sender")
        self.base_url = base_url.rstrip("/")
        self.from_address = from_address
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )

    def send(self, recipient: Subscriber, event: ATHEvent, quote: AssetQuote | None) -> bool:
        payload = {
            "from": self.from_address,
            "to": [recipient.email],
            "subject": build_subject(event),
            "text": build_text(event, quote),
            "headers": {"X-Entity-Ref-ID": f"{event.event_id}:{recipient.recipient_id}"},
        }
        body = self._request_with_retry("/emails", payload)
        if not body.get("id"):
            raise DeliveryError(f"Resend accepted the request without a message id: {body}")
        return True

    def _request_with_retry(self, path: str, payload: dict) -> dict:
        url = f"{self.base_url}{path}"
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.post(url, json=payload, timeout=self.timeout)
            except requests.RequestException as exc:
                if attempt == self.max_retries:
                    raise DeliveryError(f"Resend request failed: {exc}") from exc
                sleep(float(attempt))
                continue
            if response.status_code == 429:
                if attempt == self.max_retries:
                    raise DeliveryError("Resend rate limit exceeded")
                sleep(float(attempt))
                continue
            if response.status_code >= 500:
                if attempt == self.max_retries:
                    raise DeliveryError(f"Resend server error: {response.status_code}")
                sleep(float(attempt))
                continue
            if response.status_code >= 400:
                detail = response.text.strip() or "No response body"
                raise DeliveryError(f"Resend error {response.status_code}: {detail}")
            try:
                body = response.json()
            except ValueError:
                body = {}
            return body if isinstance(body, dict) else {}
        raise DeliveryError("Resend request exhausted retries")
