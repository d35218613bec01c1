"""
Domain models — typed, immutable events and market descriptors.

All models are frozen pydantic models: a value that passed validation can be
shared between the consumer, coordinator, executor and price feed without
copying.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "Direction",
    "Outcome",
    "TradingSignal",
    "MarketUpdate",
    "ResolvedMarket",
    "SLUG_PATTERN",
]

SLUG_PATTERN = re.compile(r"^[a-z0-9-]{6,}$")


class Direction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class Outcome(str, Enum):
    UP = "UP"
    DOWN = "DOWN"


def _check_slug(value: str) -> str:
    if not SLUG_PATTERN.match(value):
        raise ValueError(f"invalid market slug: {value!r}")
    return value


class _Event(BaseModel):
    """Frozen event whose identity ignores the raw payload it was parsed from."""

    model_config = ConfigDict(frozen=True)

    def _identity(self) -> tuple:
        return tuple(self.model_dump().items())

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self._identity() == other._identity()

    def __hash__(self) -> int:
        return hash((type(self), self._identity()))


class TradingSignal(_Event):
    """A validated instruction to trade one outcome of one market."""

    emitted_at_ms: int
    direction: Direction
    outcome: Outcome
    limit_price: float = Field(gt=0, lt=1)
    market_slug: str
    raw_payload: dict[str, Any] = Field(default_factory=dict, repr=False, exclude=True)

    @field_validator("limit_price")
    @classmethod
    def _check_precision(cls, value: float) -> float:
        if round(value, 4) != value:
            raise ValueError("limit price carries more than 4 decimals")
        return value

    @field_validator("market_slug")
    @classmethod
    def _check_market_slug(cls, value: str) -> str:
        return _check_slug(value)

    def summary(self) -> str:
        """``BUY UP @ 0.47 [btc-updown-5m-...]``"""
        return (
            f"{self.direction.value} {self.outcome.value} "
            f"@ {self.limit_price} [{self.market_slug}]"
        )


class MarketUpdate(_Event):
    """An instruction to bind a new active market. Carries no trading intent."""

    emitted_at_ms: int
    market_slug: str
    raw_payload: dict[str, Any] = Field(default_factory=dict, repr=False, exclude=True)

    @field_validator("market_slug")
    @classmethod
    def _check_market_slug(cls, value: str) -> str:
        return _check_slug(value)

    def summary(self) -> str:
        return f"MARKET {self.market_slug}"


class ResolvedMarket(BaseModel):
    """A market slug resolved to its UP/DOWN token identifiers."""

    model_config = ConfigDict(frozen=True)

    market_slug: str
    market_question: str
    event_slug: str
    up_token_id: str
    down_token_id: str
    source_text: str = ""

    @property
    def identity(self) -> tuple[str, str, str]:
        """Change detection key. Question and event slug do not participate."""
        return (self.market_slug, self.up_token_id, self.down_token_id)

    def token_id_for(self, outcome: Outcome) -> str:
        return self.up_token_id if outcome is Outcome.UP else self.down_token_id
