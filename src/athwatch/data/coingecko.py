"""CoinGecko ranked market snapshot source."""

from __future__ import annotations

from datetime import datetime
from time import sleep
from typing import Any

import requests

from athwatch.domain.models import AssetQuote
from athwatch.errors import SnapshotError
from athwatch.logging.logger import HumanLogger


class CoinGeckoSnapshotSource:
    """Fetch the market-cap ranked asset list from CoinGecko's `/coins/markets`."""

    def __init__(
        self,
        base_url: str = "https://api.coingecko.com/api/v3",
        api_key: str = "",
        pages: int = 2,
        per_page: int = 100,
        vs_currency: str = "usd",
        timeout: int = 20,
        max_retries: int = 3,
        human_logger: HumanLogger | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.pages = pages
        self.per_page = per_page
        self.vs_currency = vs_currency
        self.timeout = timeout
        self.max_retries = max_retries
        self.human_logger = human_logger
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if api_key:
            self.session.headers.update({"x-cg-demo-api-key": api_key})

    def get_ranked_quotes(self) -> list[AssetQuote]:
        quotes: list[AssetQuote] = []
        seen: set[str] = set()
        for page in range(1, self.pages + 1):
            payload = self._request_with_retry(
                path="/coins/markets",
                params={
                    "vs_currency": self.vs_currency,
                    "order": "market_cap_desc",
                    "per_page": str(self.per_page),
                    "page": str(page),
                    "sparkline": "false",
                    "price_change_percentage": "24h",
                },
            )
            if not isinstance(payload, list):
                raise SnapshotError(f"CoinGecko page {page} returned a non-list payload")
            for item in payload:
                quote = self._to_quote(item)
                if quote is None or quote.asset_id in seen:
                    continue
                seen.add(quote.asset_id)
                quotes.append(quote)
        return quotes

    def _to_quote(self, item: Any) -> AssetQuote | None:
        if not isinstance(item, dict) or not str(item.get("id") or "").strip():
            if self.human_logger is not None:
                self.human_logger.anomaly("", "market row without id")
            return None
        current_price = self._parse_optional_float(item.get("current_price"))
        rank = item.get("market_cap_rank")
        return AssetQuote(
            asset_id=str(item["id"]).strip(),
            symbol=str(item.get("symbol") or "").upper(),
            name=str(item.get("name") or item["id"]),
            current_price=current_price if current_price is not None else float("nan"),
            ath=self._parse_optional_float(item.get("ath")),
            ath_date=self._parse_optional_ts(item.get("ath_date")),
            market_cap_rank=int(rank) if isinstance(rank, (int, float)) else None,
            last_updated=self._parse_optional_ts(item.get("last_updated")),
        )

    def _request_with_retry(self, path: str, params: dict[str, str]) -> Any:
        url = f"{self.base_url}{path}"
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.get(url, params=params, timeout=self.timeout)
            except requests.RequestException as exc:
                if attempt == self.max_retries:
                    raise SnapshotError(f"CoinGecko request failed: {exc}") from exc
                sleep(float(attempt))
                continue
            if response.status_code == 429:
                if attempt == self.max_retries:
                    raise SnapshotError("CoinGecko rate limit exceeded")
                sleep(float(attempt))
                continue
            if response.status_code >= 500:
                if attempt == self.max_retries:
                    raise SnapshotError(f"CoinGecko server error: {response.status_code}")
                sleep(float(attempt))
                continue
            if response.status_code >= 400:
                detail = response.text.strip() or "No response body"
                raise SnapshotError(f"CoinGecko error {response.status_code}: {detail}")
            try:
                return response.json()
            except ValueError as exc:
                raise SnapshotError(f"CoinGecko returned invalid JSON: {exc}") from exc
        raise SnapshotError("CoinGecko request exhausted retries")

    @staticmethod
    def _parse_optional_float(value: Any) -> float | None:
        if value is None or isinstance(value, bool):
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _parse_optional_ts(value: Any) -> datetime | None:
        if not isinstance(value, str) or not value.strip():
            return None
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
