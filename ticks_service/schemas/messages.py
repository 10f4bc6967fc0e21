"""
Sentry message schemas.
Inbound control messages, the callback capability record and the
deterministic identifiers derived from a (venue, instrument) pair.
"""

import re
from typing import NamedTuple, Optional
from pydantic import BaseModel, ConfigDict, Field

from ticks_service.schemas.tick import Tick


def to_camel(value: str) -> str:
    """``binance_us`` / ``binance-us`` -> ``BinanceUs``."""
    parts = [p for p in re.split(r"[^0-9A-Za-z]+", value) if p]
    return "".join(p[:1].upper() + p[1:] for p in parts)


class SentryKey(NamedTuple):
    """(venue, instrument) pair identifying one sentry instance."""
    venue: str
    instrument: str

    @property
    def sentry_id(self) -> str:
        return f"Sentry{to_camel(self.venue)}{self.instrument.replace('-', '')}"

    def __str__(self) -> str:
        return f"{self.venue}:{self.instrument}"


class Callback(BaseModel):
    """Capability record describing where and how to deliver ticks."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Name of the external operation to execute")
    url: str = Field(..., min_length=1, description="Execution target address")
    timeout_s: Optional[float] = Field(None, gt=0, description="Execution deadline per delivery")


class JoinRequest(BaseModel):
    """Register a subscriber on a sentry."""

    model_config = ConfigDict(frozen=True)

    subscriber_id: str
    callback: Callback


class LeaveRequest(BaseModel):
    """Remove a subscriber from a sentry."""

    model_config = ConfigDict(frozen=True)

    subscriber_id: str


class TickReceived(BaseModel):
    """New tick forwarded by a feed adapter."""

    model_config = ConfigDict(frozen=True)

    tick: Tick


class CallbackParams(BaseModel):
    """Payload handed to a subscriber's callback."""

    model_config = ConfigDict(frozen=True)

    requester_id: str
    tick: Tick


def send_tick_execution_id(tick: Tick, requester_id: str) -> str:
    """Deterministic id of one callback execution for a tick and subscriber."""
    observed = tick.observed_at.isoformat(timespec="microseconds")
    return f"SendTick{to_camel(tick.venue)}{tick.instrument.replace('-', '')}-{observed}-{requester_id}"
