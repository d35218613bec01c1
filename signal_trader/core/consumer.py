"""
SignalConsumer — ordered, single-flight processing of the event stream.

Transport and business logic are decoupled by a bounded `asyncio.Queue`:

    reader task ──put──▶ queue ──get──▶ worker task
    (EventSource)                       normalize → bind → execute

- The reader owns the connection. It drives the state machine
  DISCONNECTED → CONNECTING → SUBSCRIBED and resubscribes with a linear
  backoff after any transport failure. A full queue blocks the reader; nothing
  is dropped.
- The worker awaits the complete processing of one message before taking
  the next, so a market rebind always happens-before the sizing of the
  signal that triggered it. Every per-message failure is caught, counted
  and logged; the queue always advances.

The connection target can be changed while running (`update_target`).
Host, port or password changes are all-or-nothing: the new connection is
established first and the old one is kept if that fails.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Protocol

import structlog

from signal_trader.config import EventSourceTarget
from signal_trader.core.coordinator import ActiveMarketCoordinator
from signal_trader.core.executor import TradeExecutor
from signal_trader.core.normalizer import normalize
from signal_trader.errors import EventSourceConnectionError, SignalTraderError
from signal_trader.models import MarketUpdate
from signal_trader.observability import MESSAGES, trace_stage
from signal_trader.utils.resilience import reconnect_delay

logger = structlog.get_logger(__name__)

__all__ = ["ConnectionState", "EventSource", "SignalConsumer"]


class EventSource(Protocol):
    async def connect(self) -> None: ...

    async def subscribe(self, channel: str) -> None: ...

    async def unsubscribe(self, channel: str) -> None: ...

    def messages(self) -> AsyncIterator[bytes | str]: ...

    async def close(self) -> None: ...


SourceFactory = Callable[[EventSourceTarget], EventSource]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"


class SignalConsumer:
    """Owns the event-source subscription and the single processing worker."""

    def __init__(
        self,
        target: EventSourceTarget,
        coordinator: ActiveMarketCoordinator,
        executor: TradeExecutor,
        *,
        source_factory: SourceFactory,
        signal_max_age_ms: int = 1000,
        queue_size: int = 1000,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._target = target
        self._coordinator = coordinator
        self._executor = executor
        self._source_factory = source_factory
        self._signal_max_age_ms = signal_max_age_ms
        self._clock = clock
        self._sleep = sleep

        self._queue: asyncio.Queue[bytes | str] = asyncio.Queue(maxsize=queue_size)
        self._source: EventSource | None = None
        self._reader: asyncio.Task | None = None
        self._worker: asyncio.Task | None = None
        self._reconfigure_lock = asyncio.Lock()
        self._busy = False
        self._stopping = False
        self.state = ConnectionState.DISCONNECTED

        self.received = 0
        self.processed = 0
        self.stale = 0
        self.failed = 0
        self.last_signal_at_ms: int | None = None
        self.last_signal_summary: str | None = None

    @property
    def target(self) -> EventSourceTarget:
        return self._target

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        """Connect (retrying with backoff), then start the reader and worker."""
        if self._worker is not None:
            return
        self._stopping = False
        source = await self._connect_with_backoff(self._target)
        self._source = source
        self._worker = asyncio.create_task(self._drain(), name="signal-worker")
        self._reader = asyncio.create_task(self._read(source), name="signal-reader")
        logger.info("signal_consumer_started", target=self._target.describe())

    async def stop(self, drain_timeout: float | None = None) -> None:
        """Stop reading and draining. An in-flight message is allowed to finish.

        Args:
            drain_timeout: Upper bound in seconds on waiting for the in-flight
                message; None waits as long as it takes.
        """
        self._stopping = True
        await self._cancel(self._reader)
        self._reader = None
        if self._source is not None:
            await self._source.close()
            self._source = None
        self.state = ConnectionState.DISCONNECTED

        if self._worker is not None:
            if self._busy:
                try:
                    await asyncio.wait_for(asyncio.shield(self._worker), drain_timeout)
                except asyncio.TimeoutError:
                    logger.warning("signal_worker_drain_timeout", timeout=drain_timeout)
                    await self._cancel(self._worker)
            else:
                await self._cancel(self._worker)
            self._worker = None
        logger.info(
            "signal_consumer_stopped",
            pending=self._queue.qsize(),
            processed=self.processed,
        )

    async def join(self) -> None:
        """Wait until every queued message has been processed."""
        await self._queue.join()

    async def submit(self, raw: bytes | str) -> None:
        """Enqueue a raw message as if it had arrived from the event source."""
        await self._queue.put(raw)

    @staticmethod
    async def _cancel(task: asyncio.Task | None) -> None:
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ── Transport ────────────────────────────────────────────────────

    async def _open(self, target: EventSourceTarget) -> EventSource:
        """Connect and subscribe, or close the half-open source and raise."""
        source = self._source_factory(target)
        try:
            await source.connect()
            await source.subscribe(target.channel)
        except asyncio.CancelledError:
            await source.close()
            raise
        except Exception as e:
            await source.close()
            if isinstance(e, EventSourceConnectionError):
                raise
            raise EventSourceConnectionError(
                f"Event source connect failed: {e}", target=target.describe()
            ) from e
        return source

    async def _connect_with_backoff(self, target: EventSourceTarget) -> EventSource:
        attempt = 0
        while True:
            self.state = ConnectionState.CONNECTING
            try:
                source = await self._open(target)
            except EventSourceConnectionError as e:
                attempt += 1
                delay = reconnect_delay(attempt)
                self.state = ConnectionState.DISCONNECTED
                logger.warning(
                    "event_source_connect_failed",
                    stage="transport",
                    target=target.describe(),
                    attempt=attempt,
                    retry_in_seconds=delay,
                    error=str(e),
                )
                await self._sleep(delay)
                continue
            self.state = ConnectionState.SUBSCRIBED
            logger.info(
                "event_source_subscribed",
                target=target.describe(),
                attempts=attempt + 1,
            )
            return source

    async def _read(self, source: EventSource) -> None:
        """Pump messages into the queue; resubscribe whenever the source fails."""
        while not self._stopping:
            try:
                async for raw in source.messages():
                    await self._queue.put(raw)
                error: Exception = EventSourceConnectionError(
                    "Event source stream ended", target=self._target.describe()
                )
            except Exception as e:
                error = e
            if self._stopping:
                return

            self.state = ConnectionState.DISCONNECTED
            logger.warning(
                "event_source_disconnected",
                stage="transport",
                target=self._target.describe(),
                error=str(error),
            )
            await source.close()
            source = await self._connect_with_backoff(self._target)
            self._source = source

    # ── Live reconfiguration ─────────────────────────────────────────

    async def update_target(
        self,
        *,
        host: str | None = None,
        port: int | str | None = None,
        channel: str | None = None,
        password: str | None = None,
    ) -> bool:
        """Change the connection target at runtime.

        Returns True when the target changed, False for a no-op or a
        rejected/failed change. A failed reconnect leaves the previous
        connection and target untouched.
        """
        async with self._reconfigure_lock:
            current = self._target
            candidate = current.merged(
                host=host, port=port, channel=channel, password=password
            )
            if candidate is None:
                logger.warning(
                    "event_source_update_ignored",
                    reason="invalid target",
                    host=host,
                    port=port,
                    channel=channel,
                )
                return False
            if candidate == current:
                return False

            if current.same_connection(candidate):
                await self._switch_channel(current, candidate)
            else:
                await self._switch_connection(current, candidate)
            return self._target == candidate

    async def _switch_channel(
        self, current: EventSourceTarget, candidate: EventSourceTarget
    ) -> None:
        source = self._source
        if source is not None:
            try:
                await source.unsubscribe(current.channel)
                await source.subscribe(candidate.channel)
            except Exception as e:
                logger.warning(
                    "event_source_channel_switch_failed",
                    stage="transport",
                    from_channel=current.channel,
                    to_channel=candidate.channel,
                    error=str(e),
                )
                await self._restore_channel(source, current)
                return
        self._target = candidate
        logger.info(
            "event_source_channel_switched",
            from_channel=current.channel,
            to_channel=candidate.channel,
        )

    async def _restore_channel(
        self, source: EventSource, current: EventSourceTarget
    ) -> None:
        """Resubscribe to the kept channel, or drop the connection so the reader reconnects."""
        try:
            await source.subscribe(current.channel)
            return
        except Exception as e:
            logger.warning(
                "event_source_channel_restore_failed",
                stage="transport",
                channel=current.channel,
                error=str(e),
            )
        self.state = ConnectionState.DISCONNECTED
        await source.close()

    async def _switch_connection(
        self, current: EventSourceTarget, candidate: EventSourceTarget
    ) -> None:
        if self._worker is None:
            self._target = candidate
            return

        try:
            new_source = await self._open(candidate)
        except EventSourceConnectionError as e:
            logger.warning(
                "event_source_reconnect_failed",
                stage="transport",
                kept=current.describe(),
                rejected=candidate.describe(),
                error=str(e),
            )
            return

        old_source, old_reader = self._source, self._reader
        self._target = candidate
        self._source = new_source
        self.state = ConnectionState.SUBSCRIBED
        self._reader = asyncio.create_task(self._read(new_source), name="signal-reader")

        await self._cancel(old_reader)
        if old_source is not None:
            await old_source.close()
        logger.info(
            "event_source_reconnected",
            previous=current.describe(),
            target=candidate.describe(),
        )

    # ── Processing ───────────────────────────────────────────────────

    async def _drain(self) -> None:
        while not self._stopping:
            raw = await self._queue.get()
            self._busy = True
            try:
                await self._handle(raw)
            finally:
                self._busy = False
                self._queue.task_done()

    async def _handle(self, raw: bytes | str) -> None:
        """Process one message. Never raises."""
        self.received += 1
        subject: dict = {}
        try:
            with trace_stage("message", channel=self._target.channel):
                await self._process(raw, subject)
        except Exception as e:
            self.failed += 1
            MESSAGES.labels(result="failed").inc()
            stage = e.stage if isinstance(e, SignalTraderError) else "process"
            logger.warning(
                "message_failed",
                stage=stage,
                error_code=getattr(e, "error_code", type(e).__name__),
                error=str(e),
                **subject,
            )

    async def _process(self, raw: bytes | str, subject: dict) -> None:
        now_ms = self._now_ms()
        event = normalize(raw, received_at_ms=now_ms)
        subject["market_slug"] = event.market_slug
        self.last_signal_at_ms = now_ms
        self.last_signal_summary = event.summary()

        if isinstance(event, MarketUpdate):
            logger.info("market_update_received", market_slug=event.market_slug)
            await self._coordinator.bind(event.market_slug, source="market")
            self.processed += 1
            MESSAGES.labels(result="ok").inc()
            return

        subject["outcome"] = event.outcome.value
        age_ms = now_ms - event.emitted_at_ms
        if age_ms > self._signal_max_age_ms:
            self.stale += 1
            MESSAGES.labels(result="stale").inc()
            logger.warning(
                "signal_stale",
                age_ms=age_ms,
                max_age_ms=self._signal_max_age_ms,
                summary=event.summary(),
            )
            await self._coordinator.bind(event.market_slug, source="signal")
            return

        logger.info("signal_received", summary=event.summary(), age_ms=age_ms)
        await self._coordinator.bind(event.market_slug, source="signal")
        await self._executor.execute(event)
        self.processed += 1
        MESSAGES.labels(result="ok").inc()

    # ── Stats ────────────────────────────────────────────────────────

    def get_stats(self) -> dict:
        return {
            "state": self.state.value,
            "connected": self.state is ConnectionState.SUBSCRIBED,
            "host": self._target.host,
            "port": self._target.port,
            "channel": self._target.channel,
            "received": self.received,
            "processed": self.processed,
            "stale": self.stale,
            "failed": self.failed,
            "queued": self._queue.qsize(),
            "last_signal_at_ms": self.last_signal_at_ms,
            "last_signal_summary": self.last_signal_summary,
        }
