"""
Message Normalizer — raw pub/sub payloads to typed events.

Publishers disagree on field names (``direction`` vs ``side``, ``token`` vs
``outcome``, ``limitPrice`` vs ``price``...) and on units (seconds vs
milliseconds, probabilities vs percentages). This module is the only place
that knows about those variations; everything downstream sees either a
`TradingSignal` or a `MarketUpdate`.

Stateless and pure apart from reading the clock when a timestamp is absent.
"""

from __future__ import annotations

import json
import math
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from pydantic import ValidationError

from signal_trader.errors import InvalidFieldError, MalformedMessageError
from signal_trader.models import (
    SLUG_PATTERN,
    Direction,
    MarketUpdate,
    Outcome,
    TradingSignal,
)

__all__ = ["normalize"]

DIRECTION_KEYS = ("direction", "side", "orderSide", "action")
OUTCOME_KEYS = ("token", "outcome", "marketSide", "position")
PRICE_KEYS = ("limitPrice", "limit_price", "price")
SLUG_KEYS = ("market_slug", "marketSlug", "slug")
TIMESTAMP_KEYS = ("timestamp", "ts", "time")

_DIRECTIONS = {
    "buy": Direction.BUY,
    "b": Direction.BUY,
    "sell": Direction.SELL,
    "s": Direction.SELL,
}

_OUTCOMES = {
    "up": Outcome.UP,
    "yes": Outcome.UP,
    "long": Outcome.UP,
    "1": Outcome.UP,
    "down": Outcome.DOWN,
    "no": Outcome.DOWN,
    "short": Outcome.DOWN,
    "0": Outcome.DOWN,
}

# Epoch values below this are seconds, at or above are milliseconds.
_MS_THRESHOLD = 1e12


def normalize(
    raw: bytes | str, *, received_at_ms: int | None = None
) -> TradingSignal | MarketUpdate:
    """Parse one raw message.

    Args:
        raw: The pub/sub payload, UTF-8 JSON.
        received_at_ms: Timestamp to use when the payload carries none.
            Defaults to the current wall clock.

    Raises:
        MalformedMessageError: Not JSON, or JSON that is not an object.
        InvalidFieldError: A required field is missing or out of range.
    """
    payload = _decode(raw)
    now_ms = received_at_ms if received_at_ms is not None else int(time.time() * 1000)

    raw_ts = _first(payload, TIMESTAMP_KEYS)
    emitted_at_ms = now_ms if raw_ts is None else _to_epoch_ms(raw_ts)
    slug = _to_slug(_first(payload, SLUG_KEYS))

    if not _has_any(payload, DIRECTION_KEYS + OUTCOME_KEYS + PRICE_KEYS):
        return MarketUpdate(
            emitted_at_ms=emitted_at_ms,
            market_slug=slug,
            raw_payload=payload,
        )

    direction = _to_direction(_first(payload, DIRECTION_KEYS))
    outcome = _to_outcome(_first(payload, OUTCOME_KEYS))
    price = _to_price(_first(payload, PRICE_KEYS))

    try:
        return TradingSignal(
            emitted_at_ms=emitted_at_ms,
            direction=direction,
            outcome=outcome,
            limit_price=price,
            market_slug=slug,
            raw_payload=payload,
        )
    except ValidationError as e:
        raise InvalidFieldError(f"Invalid signal: {e}", field="signal") from e


# ── Decoding ─────────────────────────────────────────────────────────


def _decode(raw: bytes | str) -> dict[str, Any]:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessageError("Payload is not UTF-8") from e
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedMessageError(f"Invalid JSON payload: {e.msg}") from e
    if not isinstance(payload, dict):
        raise MalformedMessageError(
            f"Payload must be a JSON object, got {type(payload).__name__}"
        )
    return payload


def _has_any(payload: dict, keys: tuple[str, ...]) -> bool:
    """Key presence counts, even with a null value."""
    return any(key in payload for key in keys)


def _first(payload: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


# ── Field coercion ───────────────────────────────────────────────────


def _to_direction(value: Any) -> Direction:
    direction = _DIRECTIONS.get(_text(value))
    if direction is None:
        raise InvalidFieldError(f"Invalid direction: {value!r}", field="direction")
    return direction


def _to_outcome(value: Any) -> Outcome:
    outcome = _OUTCOMES.get(_text(value))
    if outcome is None:
        raise InvalidFieldError(f"Invalid token: {value!r}", field="token")
    return outcome


def _to_price(value: Any) -> float:
    price = _as_float(value)
    if price is None:
        raise InvalidFieldError(f"Invalid limit price: {value!r}", field="limitPrice")
    if price > 1:
        price = price / 100
    if not 0 < price < 1:
        raise InvalidFieldError(
            f"Limit price out of range (0,1): {value!r}", field="limitPrice"
        )
    return round(price, 4)


def _to_slug(value: Any) -> str:
    if value is None:
        raise InvalidFieldError("Missing market slug", field="market_slug")
    slug = str(value).strip().lower()
    if not SLUG_PATTERN.match(slug):
        raise InvalidFieldError(f"Invalid market slug: {value!r}", field="market_slug")
    return slug


def _to_epoch_ms(value: Any) -> int:
    number = _as_float(value)
    if number is None and isinstance(value, str) and value.strip():
        parsed = _parse_date(value.strip())
        if parsed is not None:
            return int(parsed.timestamp() * 1000)
    if number is None:
        raise InvalidFieldError(f"Invalid timestamp: {value!r}", field="timestamp")
    if number < _MS_THRESHOLD:
        return math.floor(number * 1000)
    return math.floor(number)


def _as_float(value: Any) -> float | None:
    """Finite float from a number or numeric string; None otherwise."""
    if _is_number(value):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _parse_date(text: str) -> datetime | None:
    """ISO-8601 first, then RFC 2822. Naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
