"""
Venue registry.
Maps a venue name to the factory of its quote stream.
"""

import logging
from typing import Callable, Dict, List

from ticks_service.errors import ValidationError
from ticks_service.protocols import QuoteStream
from ticks_service.services.binance_ws import BinanceBookTickerStream, EXCHANGE_NAME as BINANCE

logger = logging.getLogger("exchanges")

StreamFactory = Callable[[], QuoteStream]


class ExchangeRegistry:
    """Venue name -> quote stream factory."""

    def __init__(self):
        self._factories: Dict[str, StreamFactory] = {}

    def register(self, venue: str, factory: StreamFactory) -> None:
        self._factories[venue.lower()] = factory
        logger.debug(f"[exchanges] Registered venue {venue}")

    def has(self, venue: str) -> bool:
        return venue.lower() in self._factories

    def venues(self) -> List[str]:
        return sorted(self._factories)

    def stream_for(self, venue: str) -> QuoteStream:
        """New quote stream for ``venue`` (one upstream connection per stream)."""
        factory = self._factories.get(venue.lower())
        if factory is None:
            raise ValidationError(f"no feed adapter for venue {venue!r}", details={"venue": venue})
        return factory()


def default_registry() -> ExchangeRegistry:
    """Registry with every built-in venue adapter."""
    registry = ExchangeRegistry()
    registry.register(BINANCE, BinanceBookTickerStream)
    return registry
