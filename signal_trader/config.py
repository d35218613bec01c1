"""
Service Configuration — Environment-driven settings for the signal trader.

The settings manage:
  - Polymarket credentials and endpoints (wallet, key, CLOB, Gamma)
  - The Redis event-source target (host, port, channel, password)
  - Trading parameters (shares per trade, signal max age, boot market)
  - Process settings (log level, JSON logs, tracing, HTTP port)

Every field accepts the names the signal publishers already use
(``REDIS_HOST`` or ``COMMUNITY_REDIS_HOST``, ``SHARES_PER_TRADE`` or
``SIZE_PER_TRADE``, ...).
"""

from __future__ import annotations

import re
from functools import lru_cache

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["EventSourceTarget", "TraderSettings", "get_settings"]

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


# ── Event-source target ──────────────────────────────────────────────


class EventSourceTarget(BaseModel):
    """Where the consumer subscribes. Immutable; reconfiguration builds a new one."""

    model_config = ConfigDict(frozen=True)

    host: str
    port: int = Field(ge=1, le=65535)
    channel: str
    password: str | None = Field(default=None, repr=False)

    def describe(self) -> str:
        """``host:port/channel`` for logs. Never includes the password."""
        return f"{self.host}:{self.port}/{self.channel}"

    def merged(
        self,
        *,
        host: str | None = None,
        port: int | str | None = None,
        channel: str | None = None,
        password: str | None = None,
    ) -> EventSourceTarget | None:
        """Apply a partial update. Returns None when the result is invalid.

        Absent values keep the current ones; given values are trimmed. An
        empty password clears the credential.
        """
        next_host = str(self.host if host is None else host).strip()
        next_channel = str(self.channel if channel is None else channel).strip()
        try:
            next_port = int(self.port if port is None else port)
        except (TypeError, ValueError):
            return None

        if password is None:
            next_password = self.password
        else:
            next_password = str(password).strip() or None

        if not next_host or not next_channel or not 1 <= next_port <= 65535:
            return None

        return EventSourceTarget(
            host=next_host,
            port=next_port,
            channel=next_channel,
            password=next_password,
        )

    def same_connection(self, other: EventSourceTarget) -> bool:
        """True when only the channel differs (or nothing does)."""
        return (self.host, self.port, self.password) == (
            other.host,
            other.port,
            other.password,
        )


# ── Settings ─────────────────────────────────────────────────────────


class TraderSettings(BaseSettings):
    """All runtime configuration, read from the environment and .env files."""

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ── Wallet ───────────────────────────────────────────────────────
    wallet_address: str = Field(
        validation_alias=AliasChoices("WALLET_ADDRESS", "PROXY_WALLET", "wallet_address")
    )
    private_key: str = Field(
        repr=False, validation_alias=AliasChoices("PRIVATE_KEY", "private_key")
    )
    chain_id: int = 137
    signature_type: int = Field(default=2, ge=0, le=2)

    # ── CLOB / Gamma ─────────────────────────────────────────────────
    clob_api_key: str | None = None
    clob_api_secret: str | None = Field(default=None, repr=False)
    clob_api_passphrase: str | None = Field(default=None, repr=False)
    clob_http_url: str = "https://clob.polymarket.com"
    clob_ws_url: str = "wss://ws-subscriptions-clob.polymarket.com/ws/market"
    gamma_events_url: str = "https://gamma-api.polymarket.com/events"
    http_timeout: float = 15.0

    # ── Event source ─────────────────────────────────────────────────
    redis_host: str = Field(
        default="127.0.0.1",
        validation_alias=AliasChoices("REDIS_HOST", "COMMUNITY_REDIS_HOST", "redis_host"),
    )
    redis_port: int = Field(
        default=6379,
        ge=1,
        le=65535,
        validation_alias=AliasChoices("REDIS_PORT", "COMMUNITY_REDIS_PORT", "redis_port"),
    )
    redis_channel: str = Field(
        default="ODDS_FOR_COMMUNITY",
        validation_alias=AliasChoices(
            "REDIS_CHANNEL", "COMMUNITY_REDIS_CHANNEL", "redis_channel"
        ),
    )
    redis_password: str | None = Field(
        default=None,
        repr=False,
        validation_alias=AliasChoices(
            "REDIS_PASSWORD",
            "REDIS_PW",
            "COMMUNITY_REDIS_PASSWORD",
            "COMMUNITY_REDIS_PW",
            "redis_password",
        ),
    )
    event_queue_size: int = Field(default=1000, ge=1)

    # ── Trading ──────────────────────────────────────────────────────
    shares_per_trade: float = Field(
        default=10.0,
        gt=0,
        validation_alias=AliasChoices("SHARES_PER_TRADE", "SIZE_PER_TRADE", "shares_per_trade"),
    )
    market_slug: str | None = None
    signal_max_age_ms: int = Field(default=1000, ge=0)
    market_resolve_retry_seconds: float = Field(default=5.0, gt=0)
    status_interval_seconds: float = Field(default=20.0, gt=0)

    # ── Process ──────────────────────────────────────────────────────
    port: int = 8080
    log_level: str = "INFO"
    json_logs: bool = False
    tracing_enabled: bool = False

    @field_validator("wallet_address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        value = value.strip()
        if not _ADDRESS_RE.match(value):
            raise ValueError("wallet address must be 0x followed by 40 hex characters")
        return value

    @field_validator("private_key", "redis_channel", "redis_host")
    @classmethod
    def _check_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("redis_password", "market_slug", "clob_api_key", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def event_source_target(self) -> EventSourceTarget:
        """Build the boot-time event-source target."""
        return EventSourceTarget(
            host=self.redis_host,
            port=self.redis_port,
            channel=self.redis_channel,
            password=self.redis_password,
        )


@lru_cache
def get_settings() -> TraderSettings:
    """Singleton accessor — parsed once, cached forever."""
    return TraderSettings()
