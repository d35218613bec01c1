import asyncio
import json

import pytest
from opentelemetry import trace

from signal_trader.config import EventSourceTarget, TraderSettings
from signal_trader.errors import (
    EventSourceConnectionError,
    MarketResolutionError,
    OrderSubmissionError,
)
from signal_trader.models import Direction, ResolvedMarket

MARKET_SLUG = "btc-updown-5m-1767225600"


@pytest.fixture(autouse=True)
def disable_tracing():
    """Disable OpenTelemetry console exports to prevent Pytest stdout closed exceptions."""
    from opentelemetry.sdk.trace import TracerProvider

    trace.set_tracer_provider(TracerProvider())
    yield


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Fakes
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def make_market(
    slug: str = MARKET_SLUG, *, up: str | None = None, down: str | None = None
) -> ResolvedMarket:
    return ResolvedMarket(
        market_slug=slug,
        market_question=f"Bitcoin Up or Down? ({slug})",
        event_slug=slug,
        up_token_id=up or f"{slug}-up",
        down_token_id=down or f"{slug}-down",
        source_text=slug,
    )


class FakeResolver:
    """Resolves any slug to a synthetic market. Can fail, alias or stall."""

    def __init__(self):
        self.calls: list[str] = []
        self.markets: dict[str, ResolvedMarket] = {}
        self.failures = 0
        self.delay = 0.0
        self.gate: asyncio.Event | None = None

    async def resolve(self, slug: str) -> ResolvedMarket:
        self.calls.append(slug)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures > 0:
            self.failures -= 1
            raise MarketResolutionError("gamma unavailable", slug=slug)
        return self.markets.get(slug) or make_market(slug)


class FakeAccount:
    """Records FOK submissions; balances are per token id."""

    def __init__(self):
        self.balances: dict[str, float] = {}
        self.orders: list[tuple[str, Direction, float, float]] = []
        self.balance_error: Exception | None = None
        self.submit_error: Exception | None = None

    async def get_balance(self, token_id: str) -> float:
        if self.balance_error is not None:
            raise self.balance_error
        return self.balances.get(token_id, 0.0)

    async def submit_order(
        self, token_id: str, side: Direction, price: float, size: float
    ) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self.orders.append((token_id, side, price, size))
        return f"order-{len(self.orders)}"


class FakeEventSource:
    """In-memory pub/sub connection driven by the test."""

    def __init__(self, target: EventSourceTarget, *, fail_connect: bool = False):
        self.target = target
        self.fail_connect = fail_connect
        self.fail_subscribe: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def connect(self) -> None:
        if self.fail_connect:
            raise EventSourceConnectionError("refused", target=self.target.describe())
        self.calls.append(("connect", self.target.host))

    async def subscribe(self, channel: str) -> None:
        if channel in self.fail_subscribe:
            self.calls.append(("subscribe-failed", channel))
            raise EventSourceConnectionError("subscribe refused", target=self.target.describe())
        self.calls.append(("subscribe", channel))

    async def unsubscribe(self, channel: str) -> None:
        self.calls.append(("unsubscribe", channel))

    async def messages(self):
        while True:
            item = await self._inbox.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        if not self.closed:
            self._inbox.put_nowait(None)
        self.closed = True

    def publish(self, raw: str | bytes) -> None:
        self._inbox.put_nowait(raw)

    def drop(self) -> None:
        self._inbox.put_nowait(EventSourceConnectionError("connection reset"))


class FakeSourceFactory:
    """Builds FakeEventSources; ``fail_next`` / ``fail_hosts`` simulate outages."""

    def __init__(self):
        self.created: list[FakeEventSource] = []
        self.fail_next = 0
        self.fail_hosts: set[str] = set()

    def __call__(self, target: EventSourceTarget) -> FakeEventSource:
        fail = target.host in self.fail_hosts or self.fail_next > 0
        if self.fail_next > 0:
            self.fail_next -= 1
        source = FakeEventSource(target, fail_connect=fail)
        self.created.append(source)
        return source

    @property
    def latest(self) -> FakeEventSource:
        return self.created[-1]


class FakeSleep:
    """Records requested delays and yields control without waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


async def _eventually(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Fixtures
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.fixture
def market():
    return make_market()


@pytest.fixture
def market_factory():
    return make_market


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def account():
    return FakeAccount()


@pytest.fixture
def source_factory():
    return FakeSourceFactory()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def eventually():
    return _eventually


@pytest.fixture
def target():
    return EventSourceTarget(host="127.0.0.1", port=6379, channel="ODDS_FOR_COMMUNITY")


@pytest.fixture
def submit_failure():
    return OrderSubmissionError("not filled")


WALLET = "0x" + "ab" * 20


def make_settings(**overrides) -> TraderSettings:
    values = {
        "wallet_address": WALLET,
        "private_key": "0x" + "11" * 32,
        "redis_host": "127.0.0.1",
        "redis_port": 6379,
        "redis_channel": "ODDS_FOR_COMMUNITY",
        "redis_password": None,
        "market_slug": None,
        "shares_per_trade": 10,
        "status_interval_seconds": 60,
        "market_resolve_retry_seconds": 0.01,
        "tracing_enabled": False,
    }
    values.update(overrides)
    return TraderSettings(_env_file=None, **values)


class FakeSocket:
    """Async-iterable stand-in for a websockets client connection."""

    def __init__(self):
        self.sent: list[dict] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    def push(self, payload) -> None:
        self._inbox.put_nowait(payload if isinstance(payload, str) else json.dumps(payload))

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(None)


class FakeWebSocketConnect:
    """Replacement for ``websockets.connect``; records every socket opened."""

    def __init__(self):
        self.sockets: list[FakeSocket] = []
        self.calls: list[tuple[str, dict]] = []

    def __call__(self, url: str, **kwargs) -> FakeSocket:
        self.calls.append((url, kwargs))
        socket = FakeSocket()
        self.sockets.append(socket)
        return socket


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def ws_connect():
    return FakeWebSocketConnect()
