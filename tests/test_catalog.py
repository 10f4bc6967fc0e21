"""
Catalog tests.
"""

import httpx
import pytest

from ticks_service.config import Settings
from ticks_service.errors import CatalogError
from ticks_service.services.catalog import HttpCatalog, StaticCatalog, catalog_from_settings


class TestStaticCatalog:

    @pytest.mark.asyncio
    async def test_known_venue(self):
        catalog = StaticCatalog({"Binance": ["BTC-USDT"]})
        info = await catalog.get_instrument("binance", "BTC-USDT")
        assert info.exists is True
        assert info.supported_pairs == ["BTC-USDT"]

    @pytest.mark.asyncio
    async def test_unknown_venue(self):
        info = await StaticCatalog({}).get_instrument("kraken", "XBT-USD")
        assert info.exists is False


class TestHttpCatalog:

    def make_catalog(self, handler, **kwargs):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HttpCatalog("http://catalog.test/", client=client, **kwargs)

    @pytest.mark.asyncio
    async def test_lists_pairs(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"pairs": ["btc-usdt", "ETH-USDT"]})

        catalog = self.make_catalog(handler)
        info = await catalog.get_instrument("Binance", "BTC-USDT")

        assert info.exists is True
        assert info.supported_pairs == ["BTC-USDT", "ETH-USDT"]
        assert str(requests[0].url) == "http://catalog.test/exchanges/binance"

    @pytest.mark.asyncio
    async def test_404_means_unknown_venue(self):
        catalog = self.make_catalog(lambda request: httpx.Response(404))
        info = await catalog.get_instrument("nowhere", "BTC-USDT")
        assert info.exists is False

    @pytest.mark.asyncio
    async def test_server_error(self):
        catalog = self.make_catalog(lambda request: httpx.Response(500))
        with pytest.raises(CatalogError):
            await catalog.get_instrument("binance", "BTC-USDT")

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(CatalogError):
            await self.make_catalog(handler).get_instrument("binance", "BTC-USDT")

    @pytest.mark.asyncio
    async def test_answers_are_cached(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"pairs": ["BTC-USDT"]})

        catalog = self.make_catalog(handler)
        await catalog.get_instrument("binance", "BTC-USDT")
        await catalog.get_instrument("binance", "ETH-USDT")
        assert len(calls) == 1

        catalog = self.make_catalog(handler, ttl_s=0)
        await catalog.get_instrument("binance", "BTC-USDT")
        await catalog.get_instrument("binance", "BTC-USDT")
        assert len(calls) == 3


def test_catalog_from_settings(monkeypatch):
    monkeypatch.setenv("CATALOG_URL", "")
    monkeypatch.setenv("CATALOG_PAIRS", "binance:BTC-USDT")
    assert isinstance(catalog_from_settings(Settings()), StaticCatalog)

    monkeypatch.setenv("CATALOG_URL", "http://catalog.test")
    assert isinstance(catalog_from_settings(Settings()), HttpCatalog)
