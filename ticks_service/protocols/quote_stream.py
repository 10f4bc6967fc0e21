"""
Quote Stream Protocol
Defines the venue-specific side of a feed adapter: one upstream
connection yielding raw best bid/ask quotes for a single instrument.
"""

from typing import AsyncIterator, NamedTuple, Protocol
from abc import abstractmethod


class Quote(NamedTuple):
    """Best bid/ask as sent by the venue (raw strings, compared verbatim)."""
    bid: str
    ask: str


class QuoteStream(Protocol):
    """Protocol for a venue book-ticker subscription."""

    venue: str

    @abstractmethod
    def quotes(self, instrument: str) -> AsyncIterator[Quote]:
        """Open one upstream connection and yield quotes until it closes."""
        ...
