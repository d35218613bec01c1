"""
RedisEventSource — pub/sub transport for the signal stream.

One instance owns one Redis connection to one `EventSourceTarget`. The
consumer creates a new instance for every host/port/password change and
reuses the current one for channel-only changes.

Usage:
    source = RedisEventSource(target)
    await source.connect()
    await source.subscribe(target.channel)
    async for raw in source.messages():
        ...
    await source.close()
"""

from __future__ import annotations

from typing import AsyncIterator

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from signal_trader.config import EventSourceTarget
from signal_trader.errors import EventSourceConnectionError

logger = structlog.get_logger(__name__)

__all__ = ["RedisEventSource"]


class RedisEventSource:
    """Thin async wrapper over ``redis.asyncio`` pub/sub."""

    def __init__(
        self,
        target: EventSourceTarget,
        *,
        connect_timeout: float = 5.0,
        poll_timeout: float = 1.0,
    ):
        self.target = target
        self._connect_timeout = connect_timeout
        self._poll_timeout = poll_timeout
        self._client: redis.Redis | None = None
        self._pubsub = None
        self._closed = False

    async def connect(self) -> None:
        """Open the connection and verify it with PING."""
        self._client = redis.Redis(
            host=self.target.host,
            port=self.target.port,
            password=self.target.password,
            socket_connect_timeout=self._connect_timeout,
            health_check_interval=30,
        )
        try:
            await self._client.ping()
        except RedisError as e:
            raise EventSourceConnectionError(
                f"Redis connection failed: {e}", target=self.target.describe()
            ) from e
        self._pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        logger.info("redis_connected", target=self.target.describe())

    async def subscribe(self, channel: str) -> None:
        try:
            await self._require_pubsub().subscribe(channel)
        except RedisError as e:
            raise EventSourceConnectionError(
                f"Redis subscribe failed: {e}", target=self.target.describe()
            ) from e
        logger.info("redis_subscribed", host=self.target.host, channel=channel)

    async def unsubscribe(self, channel: str) -> None:
        try:
            await self._require_pubsub().unsubscribe(channel)
        except RedisError as e:
            raise EventSourceConnectionError(
                f"Redis unsubscribe failed: {e}", target=self.target.describe()
            ) from e
        logger.info("redis_unsubscribed", host=self.target.host, channel=channel)

    async def messages(self) -> AsyncIterator[bytes]:
        """Yield message payloads until the source is closed.

        Polls with a timeout instead of ``listen()`` so the iterator survives
        the brief window with no subscription during a channel switch.
        """
        pubsub = self._require_pubsub()
        while not self._closed:
            try:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=self._poll_timeout
                )
            except RedisError as e:
                raise EventSourceConnectionError(
                    f"Redis read failed: {e}", target=self.target.describe()
                ) from e
            if message is None or message.get("type") != "message":
                continue
            yield message["data"]

    async def close(self) -> None:
        self._closed = True
        if self._pubsub is not None:
            try:
                await self._pubsub.aclose()
            except RedisError as e:
                logger.debug("redis_pubsub_close_failed", error=str(e))
            self._pubsub = None
        if self._client is not None:
            try:
                await self._client.aclose()
            except RedisError as e:
                logger.debug("redis_close_failed", error=str(e))
            self._client = None
        logger.info("redis_closed", target=self.target.describe())

    def _require_pubsub(self):
        if self._pubsub is None:
            raise EventSourceConnectionError(
                "Event source is not connected", target=self.target.describe()
            )
        return self._pubsub
