"""
Tick schema - the immutable unit of price data handed from a venue feed
to every subscriber of the matching sentry.
"""

from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field


class Tick(BaseModel):
    """One deduplicated price observation for an instrument."""

    model_config = ConfigDict(frozen=True)

    observed_at: datetime = Field(..., description="Adapter wall-clock time at forwarding (UTC)")
    venue: str = Field(..., description="Venue name (e.g., binance)")
    instrument: str = Field(..., description="Pair within the venue (e.g., BTC-USDT)")
    price: Decimal = Field(..., description="Midpoint of best bid and best ask")


def mid_price(bid: str, ask: str) -> Decimal:
    """Arithmetic mean of best bid and best ask, parsed from venue strings."""
    return (Decimal(bid) + Decimal(ask)) / 2
