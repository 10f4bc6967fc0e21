"""
Protocols
Lightweight Protocols for the collaborators the sentry depends on.
"""

from .quote_stream import Quote, QuoteStream
from .catalog import Catalog, InstrumentInfo
from .callback_invoker import CallbackInvoker
from .logging_models import JournalEntry, DeliveryRecord

__all__ = [
    "Quote",
    "QuoteStream",
    "Catalog",
    "InstrumentInfo",
    "CallbackInvoker",
    "JournalEntry",
    "DeliveryRecord"
]
