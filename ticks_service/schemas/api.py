"""
Control surface schemas using Pydantic for validation and serialization.
"""

from pydantic import BaseModel, Field
from typing import Dict, List, Optional

from ticks_service.schemas.messages import Callback


class JoinParams(BaseModel):
    """Register for ticks listening through a callback."""
    venue: str = Field(..., description="Venue name (e.g., binance)")
    instrument: str = Field(..., description="Pair within the venue (e.g., BTC-USDT)")
    subscriber_id: str = Field(..., description="Opaque subscriber identifier")
    callback: Callback


class LeaveParams(BaseModel):
    """Unregister from ticks listening."""
    venue: str
    instrument: str
    subscriber_id: str


class RegistrationResult(BaseModel):
    """Outcome of a join or leave."""
    sentry_id: str
    subscriber_id: str
    status: str                # "joined" | "left"


class ServiceInfo(BaseModel):
    """Service information."""
    version: str


class SentryStatus(BaseModel):
    """Live view of one sentry."""
    sentry_id: str
    venue: str
    instrument: str
    state: str                 # "idle" | "active" | "terminated"
    subscribers: List[str]
    feed_running: bool
    last_tick_price: Optional[str] = None
    last_tick_at: Optional[str] = None
    ticks_received: int = 0


class HealthStatus(BaseModel):
    """Process health."""
    status: str
    version: str
    sentries_active: int
    subscribers_total: int
    supervised_tasks: int
    details: Dict[str, int] = Field(default_factory=dict)
