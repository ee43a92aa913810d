from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from athwatch.domain.models import AssetQuote, ATHEvent, Subscriber
from athwatch.errors import DeliveryError
from athwatch.notify.senders import LogSender, ResendEmailSender, build_subject, build_text

EVENT = ATHEvent(
    asset_id="bitcoin",
    symbol="BTC",
    name="Bitcoin",
    new_ath=110000.0,
    previous_ath=100000.0,
    detected_at=datetime(2025, 3, 1, 12, 0, tzinfo=UTC),
    event_id="evt-0001",
)
RECIPIENT = Subscriber(recipient_id="u1", email="one@example.com")


class FakeResponse:
    def __init__(self, status_code: int, payload: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self) -> Any:
        return self._payload


class FakeSession:
    def __init__(self, responses: list[FakeResponse]) -> None:
        self.responses = responses
        self.posts: list[dict[str, Any]] = []

    def post(self, url: str, json: dict[str, Any], timeout: int) -> FakeResponse:
        self.posts.append({"url": url, "json": json, "timeout": timeout})
        return self.responses.pop(0)


def _sender(session: FakeSession, max_retries: int = 3) -> ResendEmailSender:
    sender = ResendEmailSender(
        api_key="re_test",
        from_address="athwatch <alerts@example.com>",
        max_retries=max_retries,
    )
    sender.session = session
    return sender


def test_message_content_mentions_asset_and_change() -> None:
    quote = AssetQuote(
        asset_id="bitcoin",
        symbol="BTC",
        name="Bitcoin",
        current_price=110000.0,
        market_cap_rank=1,
    )

    text = build_text(EVENT, quote)

    assert build_subject(EVENT) == "Bitcoin (BTC) hit a new all-time high"
    assert "$110,000.00" in text
    assert "$100,000.00" in text
    assert "+10.00%" in text
    assert "Market cap rank: #1." in text


def test_resend_sender_posts_email_and_requires_message_id() -> None:
    session = FakeSession([FakeResponse(200, {"id": "msg-1"})])

    assert _sender(session).send(RECIPIENT, EVENT, None) is True

    [post] = session.posts
    assert post["url"] == "https://api.resend.com/emails"
    assert post["json"]["to"] == ["one@example.com"]
    assert post["json"]["headers"]["X-Entity-Ref-ID"] == "evt-0001:u1"


def test_resend_sender_rejects_response_without_id() -> None:
    session = FakeSession([FakeResponse(200, {})])

    with pytest.raises(DeliveryError, match="without a message id"):
        _sender(session).send(RECIPIENT, EVENT, None)


def test_resend_sender_retries_throttling(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("athwatch.notify.senders.sleep", lambda _seconds: None)
    session = FakeSession([FakeResponse(429), FakeResponse(200, {"id": "msg-2"})])

    assert _sender(session).send(RECIPIENT, EVENT, None) is True
    assert len(session.posts) == 2


def test_resend_sender_surfaces_client_errors() -> None:
    session = FakeSession([FakeResponse(422, text="invalid from address")])

    with pytest.raises(DeliveryError, match="422: invalid from address"):
        _sender(session).send(RECIPIENT, EVENT, None)


def test_resend_sender_requires_api_key() -> None:
    with pytest.raises(DeliveryError, match="RESEND_API_KEY"):
        ResendEmailSender(api_key="", from_address="alerts@example.com")


def test_log_sender_always_confirms() -> None:
    assert LogSender().send(RECIPIENT, EVENT, None) is True
