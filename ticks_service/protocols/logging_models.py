"""
Logging Models
TypedDict models for structured journal and delivery records.
"""

from typing import TypedDict, Optional, Dict, Any


class JournalEntry(TypedDict):
    """One accepted control event of a sentry."""
    ts: str
    event: str  # "join", "leave", "evict", "terminate"
    sentry_id: str
    venue: str
    instrument: str
    subscriber_id: Optional[str]
    callback: Optional[Dict[str, Any]]


class DeliveryRecord(TypedDict):
    """Outcome of one callback invocation."""
    ts: str
    sentry_id: str
    subscriber_id: str
    execution_id: str
    status: str  # "ok", "error", "timeout"
    latency_ms: float
    error: Optional[str]
