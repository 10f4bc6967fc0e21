"""
Callback Invoker Protocol
Generic "execute named external operation with these parameters" seam
used by delivery tasks.
"""

from typing import Protocol
from abc import abstractmethod

from ticks_service.schemas.messages import Callback, CallbackParams


class CallbackInvoker(Protocol):
    """Protocol for invoking a subscriber's callback."""

    @abstractmethod
    async def invoke(self, callback: Callback, params: CallbackParams, execution_id: str) -> None:
        """Run the callback to completion; raise on failure."""
        ...
