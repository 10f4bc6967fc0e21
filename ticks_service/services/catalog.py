"""
Exchange catalogs.
Answer "does this venue exist and which pairs does it list", either from
static configuration or from a remote catalog service.
"""

import logging
import time
import httpx
from typing import Dict, List, Optional, Tuple

from ticks_service.config import Settings, settings as default_settings
from ticks_service.errors import CatalogError
from ticks_service.protocols import Catalog, InstrumentInfo

logger = logging.getLogger("catalog")


class StaticCatalog:
    """Catalog backed by a fixed venue -> pairs mapping."""

    def __init__(self, pairs: Dict[str, List[str]]):
        self._pairs = {venue.lower(): list(listed) for venue, listed in pairs.items()}

    async def get_instrument(self, venue: str, name: str) -> InstrumentInfo:
        listed = self._pairs.get(venue.lower())
        if listed is None:
            return InstrumentInfo(exists=False, supported_pairs=[])
        return InstrumentInfo(exists=True, supported_pairs=list(listed))


class HttpCatalog:
    """
    Catalog served by ``GET {base_url}/exchanges/{venue}``.

    The response body is ``{"pairs": [...]}``; 404 means the venue is unknown.
    Answers are cached for ``ttl_s`` seconds.
    """

    def __init__(self, base_url: str, timeout_s: float = 10.0, ttl_s: float = 300.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.ttl_s = ttl_s
        self._client = client
        self._cache: Dict[str, Tuple[float, InstrumentInfo]] = {}

    async def get_instrument(self, venue: str, name: str) -> InstrumentInfo:
        venue = venue.lower()
        now = time.monotonic()
        cached = self._cache.get(venue)
        if cached is not None and now - cached[0] < self.ttl_s:
            return cached[1]

        info = await self._fetch(venue)
        self._cache[venue] = (now, info)
        return info

    async def _fetch(self, venue: str) -> InstrumentInfo:
        url = f"{self.base_url}/exchanges/{venue}"
        try:
            if self._client is not None:
                r = await self._client.get(url, timeout=self.timeout_s)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_s) as c:
                    r = await c.get(url)
        except httpx.HTTPError as e:
            logger.error(f"[catalog] Request to {url} failed: {e}")
            raise CatalogError(f"catalog unavailable: {e}", details={"venue": venue}) from e

        if r.status_code == 404:
            return InstrumentInfo(exists=False, supported_pairs=[])
        try:
            r.raise_for_status()
            pairs = r.json().get("pairs", [])
        except (httpx.HTTPStatusError, ValueError, AttributeError) as e:
            logger.error(f"[catalog] Bad response from {url}: {e}")
            raise CatalogError(f"catalog returned an invalid response: {e}", details={"venue": venue}) from e

        return InstrumentInfo(exists=True, supported_pairs=[str(p).upper() for p in pairs])


def catalog_from_settings(config: Settings = default_settings) -> Catalog:
    """Remote catalog when CATALOG_URL is set, static pairs otherwise."""
    if config.CATALOG_URL:
        logger.info(f"[catalog] Using remote catalog at {config.CATALOG_URL}")
        return HttpCatalog(config.CATALOG_URL, timeout_s=config.CATALOG_TIMEOUT_S)
    return StaticCatalog(config.catalog_pairs)
