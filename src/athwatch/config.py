"""Environment and CLI runtime configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Self

from dotenv import load_dotenv

from athwatch.errors import ConfigError

DATA_SOURCES = {"coingecko", "csv"}
SENDERS = {"log", "resend"}


def parse_bool(value: str | None, default: bool) -> bool:
    """Parse truthy environment strings."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def parse_int(value: str | None, default: int, *, field_name: str) -> int:
    """Parse an integer env value, falling back to `default` when unset."""
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as exc:
        raise ConfigError(f"{field_name} must be an integer, got {value!r}") from exc


def parse_choice(value: str | None, default: str) -> str:
    """Normalize selector values."""
    if value is None or not value.strip():
        return default
    return value.strip().lower()


@dataclass(frozen=True)
class Settings:
    """Immutable runtime settings."""

    interval_seconds: int = 60
    run_on_start: bool = True
    data_source: str = "coingecko"
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coingecko_api_key: str = ""
    ranked_pages: int = 2
    per_page: int = 100
    quotes_csv_path: str = "data/quotes.csv"
    state_db_path: str = "state/athwatch.db"
    subscribers_path: str = "data/subscribers.csv"
    sender: str = "log"
    resend_api_key: str = ""
    resend_base_url: str = "https://api.resend.com"
    email_from: str = "athwatch <notifications@example.com>"
    dispatch_workers: int = 8
    dispatch_batch_size: int = 50
    recovery_window_hours: int = 24
    events_dir: str = "runs"
    log_level: str = "INFO"
    log_file: str = ""
    http_timeout: int = 20
    max_retries: int = 3

    @classmethod
    def from_env(cls) -> Self:
        """Create settings from environment variables and an optional `.env` file."""
        load_dotenv()
        raw = cls(
            interval_seconds=parse_int(
                os.getenv("INTERVAL_SECONDS"), 60, field_name="interval_seconds"
            ),
            run_on_start=parse_bool(os.getenv("RUN_ON_START"), True),
            data_source=parse_choice(os.getenv("DATA_SOURCE"), "coingecko"),
            coingecko_base_url=str(
                os.getenv("COINGECKO_BASE_URL", "https://api.coingecko.com/api/v3")
            ).strip(),
            coingecko_api_key=str(os.getenv("COINGECKO_API_KEY", "")).strip(),
            ranked_pages=parse_int(os.getenv("RANKED_PAGES"), 2, field_name="ranked_pages"),
            per_page=parse_int(os.getenv("PER_PAGE"), 100, field_name="per_page"),
            quotes_csv_path=str(os.getenv("QUOTES_CSV_PATH", "data/quotes.csv")).strip(),
            state_db_path=str(os.getenv("STATE_DB_PATH", "state/athwatch.db")).strip(),
            subscribers_path=str(
                os.getenv("SUBSCRIBERS_PATH", "data/subscribers.csv")
            ).strip(),
            sender=parse_choice(os.getenv("SENDER"), "log"),
            resend_api_key=str(os.getenv("RESEND_API_KEY", "")).strip(),
            resend_base_url=str(os.getenv("RESEND_BASE_URL", "https://api.resend.com")).strip(),
            email_from=str(
                os.getenv("EMAIL_FROM", "athwatch <notifications@example.com>")
            ).strip(),
            dispatch_workers=parse_int(
                os.getenv("DISPATCH_WORKERS"), 8, field_name="dispatch_workers"
            ),
            dispatch_batch_size=parse_int(
                os.getenv("DISPATCH_BATCH_SIZE"), 50, field_name="dispatch_batch_size"
            ),
            recovery_window_hours=parse_int(
                os.getenv("RECOVERY_WINDOW_HOURS"), 24, field_name="recovery_window_hours"
            ),
            events_dir=str(os.getenv("EVENTS_DIR", "runs")).strip(),
            log_level=str(os.getenv("LOG_LEVEL", "INFO")).strip().upper(),
            log_file=str(os.getenv("LOG_FILE", "")).strip(),
            http_timeout=parse_int(os.getenv("HTTP_TIMEOUT"), 20, field_name="http_timeout"),
            max_retries=parse_int(os.getenv("MAX_RETRIES"), 3, field_name="max_retries"),
        )
        return raw.validate()

    def with_overrides(self, **kwargs: object) -> Self:
        """Return a new settings object with updated values."""
        overrides = dict(kwargs)
        for key in ("data_source", "sender"):
            value = overrides.get(key)
            if isinstance(value, str):
                overrides[key] = value.strip().lower()
        updated = replace(self, **overrides)
        return updated.validate()

    def validate(self) -> Self:
        """Validate settings fields."""
        if self.interval_seconds <= 0:
            raise ConfigError("interval_seconds must be positive")
        if self.data_source not in DATA_SOURCES:
            raise ConfigError("data_source must be one of coingecko, csv")
        if self.sender not in SENDERS:
            raise ConfigError("sender must be one of log, resend")
        if self.sender == "resend" and not self.resend_api_key:
            raise ConfigError("RESEND_API_KEY is required when SENDER=resend")
        if self.ranked_pages <= 0:
            raise ConfigError("ranked_pages must be positive")
        if not 1 <= self.per_page <= 250:
            raise ConfigError("per_page must be between 1 and 250")
        if self.dispatch_workers <= 0:
            raise ConfigError("dispatch_workers must be positive")
        if self.dispatch_batch_size <= 0:
            raise ConfigError("dispatch_batch_size must be positive")
        if self.recovery_window_hours < 0:
            raise ConfigError("recovery_window_hours must not be negative")
        if self.http_timeout <= 0:
            raise ConfigError("http_timeout must be positive")
        if self.max_retries <= 0:
            raise ConfigError("max_retries must be positive")
        if not self.state_db_path:
            raise ConfigError("state_db_path must not be empty")
        return self
