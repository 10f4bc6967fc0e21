"""
Pytest Configuration
Provides async fixtures, scripted feeds and recording
callback invokers, with proper test teardown.
"""

import asyncio
import os
import pytest
import pytest_asyncio
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional, Set, Tuple

from ticks_service.config import Settings
from ticks_service.errors import DeliveryError
from ticks_service.observability.metrics import get_registry
from ticks_service.protocols import Quote
from ticks_service.schemas.messages import Callback, CallbackParams
from ticks_service.services.catalog import StaticCatalog
from ticks_service.services.exchanges import ExchangeRegistry
from ticks_service.services.sentry_directory import SentryDirectory
from ticks_service.util import async_tools
from ticks_service.util.async_tools import shutdown_supervised_tasks

_CLOSE = object()


class FakeQuoteStream:
    """Scripted quote stream: tests push quotes, close or break the connection."""

    venue = "binance"

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.connected = False
        self.stalled = False
        self.connect_delay = 0.0
        self.open_count = 0
        self.close_count = 0
        self.instruments: List[str] = []

    def push(self, bid: str, ask: str) -> None:
        self.queue.put_nowait(Quote(bid=bid, ask=ask))

    def close(self) -> None:
        self.queue.put_nowait(_CLOSE)

    def fail(self, exc: Exception) -> None:
        self.queue.put_nowait(exc)

    async def quotes(self, instrument: str):
        self.instruments.append(instrument)
        self.open_count += 1
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        self.connected = not self.stalled
        try:
            while True:
                item = await self.queue.get()
                if item is _CLOSE:
                    return
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.connected = False
            self.close_count += 1


class FakeExchanges(ExchangeRegistry):
    """Registry handing out a fresh FakeQuoteStream per connection."""

    def __init__(self):
        super().__init__()
        self.streams: List[FakeQuoteStream] = []
        self.connect_delay = 0.0
        self.register("binance", self._new_stream)

    def _new_stream(self) -> FakeQuoteStream:
        stream = FakeQuoteStream()
        stream.connect_delay = self.connect_delay
        self.streams.append(stream)
        return stream

    @property
    def latest(self) -> FakeQuoteStream:
        return self.streams[-1]


class RecordingInvoker:
    """Callback invoker that records every execution."""

    def __init__(self):
        self.calls: List[Tuple[str, CallbackParams, str]] = []
        self.hang: Set[str] = set()
        self.fail: Set[str] = set()

    async def invoke(self, callback: Callback, params: CallbackParams, execution_id: str) -> None:
        self.calls.append((callback.name, params, execution_id))
        if callback.name in self.hang:
            await asyncio.Event().wait()
        if callback.name in self.fail:
            raise DeliveryError(f"{callback.name} failed")

    def prices_for(self, requester_id: str) -> List[str]:
        return [str(p.tick.price) for _, p, _ in self.calls if p.requester_id == requester_id]


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.005) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def wait_until():
    """Poll a predicate on the running loop until it holds."""
    return _wait_until


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_settings() -> Settings:
    """Settings with short timeouts so feed and delivery paths run fast."""
    config = Settings()
    config.FEED_HEARTBEAT_INTERVAL_MS = 20
    config.FEED_HEARTBEAT_TIMEOUT_MS = 500
    config.FEED_CANCEL_TIMEOUT_S = 1.0
    config.FEED_CONNECT_TIMEOUT_S = 2.0
    config.CALLBACK_DEFAULT_TIMEOUT_S = 1.0
    config.JOURNAL_ENABLED = False
    config.CATALOG_URL = ""
    return config


@pytest.fixture
def exchanges() -> FakeExchanges:
    return FakeExchanges()


@pytest.fixture
def invoker() -> RecordingInvoker:
    return RecordingInvoker()


@pytest.fixture
def catalog() -> StaticCatalog:
    return StaticCatalog({"binance": ["BTC-USDT", "ETH-USDT"]})


@pytest_asyncio.fixture
async def directory(exchanges, invoker, test_settings):
    """Sentry directory over fake feeds; every sentry is stopped at teardown."""
    directory = SentryDirectory(exchanges, invoker, config=test_settings, clock=lambda: 1700000000.0)

    yield directory

    await directory.shutdown()
    await shutdown_supervised_tasks()


@pytest.fixture
def callback_factory() -> Callable[..., Callback]:
    def _make(name: str = "on_tick", timeout_s: Optional[float] = None) -> Callback:
        return Callback(name=name, url=f"http://listener.local/{name}", timeout_s=timeout_s)
    return _make


@pytest.fixture(autouse=True)
def setup_test_env():
    """Set up test environment: no journal, fresh metrics and task registry."""
    os.environ["JOURNAL_ENABLED"] = "false"
    get_registry().reset()

    yield

    # Tasks left by a finished test loop can never complete
    async_tools._supervised_tasks.clear()
    os.environ.pop("JOURNAL_ENABLED", None)


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with deterministic settings."""
    # Add custom markers
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "deterministic: marks tests as deterministic")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers."""
    for item in items:
        # Mark deterministic tests
        if "deterministic" in item.name:
            item.add_marker(pytest.mark.deterministic)
