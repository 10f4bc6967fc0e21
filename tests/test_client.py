"""
TicksClient tests against the in-process app.
"""

import httpx
import pytest
import pytest_asyncio

from ticks_service.client import TicksClient
from ticks_service.errors import ValidationError
from ticks_service.main import create_app
from ticks_service.runtime import build_runtime
from ticks_service.schemas.messages import Callback
from ticks_service.util.async_tools import shutdown_supervised_tasks

CALLBACK = Callback(name="on_tick", url="http://listener.local/on_tick", timeout_s=5)


@pytest_asyncio.fixture
async def ticks_client(test_settings, exchanges, catalog, invoker):
    runtime = build_runtime(test_settings, exchanges=exchanges, catalog=catalog, invoker=invoker)
    transport = httpx.ASGITransport(app=create_app(runtime))
    client = TicksClient("http://ticks.test", client=httpx.AsyncClient(transport=transport, base_url="http://ticks.test"))

    yield client

    await client.aclose()
    await runtime.stop()
    await shutdown_supervised_tasks()


@pytest.mark.asyncio
async def test_listen_and_stop(ticks_client):
    result = await ticks_client.listen_to_ticks("binance", "BTC-USDT", "s1", CALLBACK)
    assert result.sentry_id == "SentryBinanceBTCUSDT"
    assert result.status == "joined"

    result = await ticks_client.stop_listening_to_ticks("s1", "binance", "BTC-USDT")
    assert result.status == "left"


@pytest.mark.asyncio
async def test_validation_error_is_raised(ticks_client):
    with pytest.raises(ValidationError):
        await ticks_client.listen_to_ticks("binance", "FOO-BAR", "s1", CALLBACK)


@pytest.mark.asyncio
async def test_info(ticks_client):
    info = await ticks_client.info()
    assert info.version == "devel"
