"""
Binance book ticker WebSocket stream.
One socket per instrument on the public <symbol>@bookTicker stream.
"""

import json
import logging
import websockets
from typing import AsyncIterator, Optional

from ticks_service.config import settings
from ticks_service.protocols import Quote
from ticks_service.util.pairs import parse_pair

logger = logging.getLogger("binance_ws")

EXCHANGE_NAME = "binance"


def to_binance_symbol(instrument: str) -> str:
    """``BTC-USDT`` -> ``btcusdt`` (stream names are lowercase)."""
    base, quote = parse_pair(instrument)
    return f"{base}{quote}".lower()


class BinanceBookTickerStream:
    """Quote stream for Binance best bid/ask updates."""

    venue = EXCHANGE_NAME

    def __init__(self, ws_url: Optional[str] = None, open_timeout: float = 10.0):
        self.ws_url = (ws_url or settings.BINANCE_WS_URL).rstrip("/")
        self.open_timeout = open_timeout

        # Connection state
        self.connected = False
        self.connect_count = 0

        # Health metrics
        self.messages_received = 0
        self.error_count = 0

    def stream_url(self, instrument: str) -> str:
        return f"{self.ws_url}/{to_binance_symbol(instrument)}@bookTicker"

    async def quotes(self, instrument: str) -> AsyncIterator[Quote]:
        """Connect to the book ticker stream and yield quotes until it closes."""
        url = self.stream_url(instrument)
        try:
            async with websockets.connect(
                url,
                open_timeout=self.open_timeout,
                close_timeout=10
            ) as ws:
                self.connected = True
                self.connect_count += 1
                logger.info(f"[binance_ws] Connected to {url}")

                async for raw_message in ws:
                    quote = self.parse_message(raw_message)
                    if quote is not None:
                        yield quote
        finally:
            self.connected = False
            logger.info(f"[binance_ws] Disconnected from {url}")

    def parse_message(self, raw_message) -> Optional[Quote]:
        """Extract best bid/ask from a bookTicker frame."""
        self.messages_received += 1
        try:
            message = json.loads(raw_message)
        except json.JSONDecodeError as e:
            logger.error(f"[binance_ws] JSON decode error: {e}")
            self.error_count += 1
            return None

        if not isinstance(message, dict):
            logger.debug(f"[binance_ws] Non-dict message: {message}")
            return None

        bid = message.get("b")
        ask = message.get("a")
        if not isinstance(bid, str) or not isinstance(ask, str):
            logger.debug(f"[binance_ws] Unknown message type: {message}")
            return None

        return Quote(bid=bid, ask=ask)
