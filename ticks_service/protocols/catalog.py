"""
Catalog Protocol
Lookup of the venues and instruments ticks can be listened to.
"""

from typing import List, NamedTuple, Protocol
from abc import abstractmethod


class InstrumentInfo(NamedTuple):
    """Catalog answer for one (venue, instrument) lookup."""
    exists: bool
    supported_pairs: List[str]


class Catalog(Protocol):
    """Protocol for the external catalog service."""

    @abstractmethod
    async def get_instrument(self, venue: str, name: str) -> InstrumentInfo:
        """Check whether ``name`` is listed on ``venue``."""
        ...
