"""
Tick delivery.
Per-subscriber hand-off channel and the task forwarding accepted ticks to
the subscriber's callback under an execution deadline.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from ticks_service.errors import DeliveryTimeoutError
from ticks_service.observability.metrics import record_delivery
from ticks_service.protocols import CallbackInvoker, DeliveryRecord
from ticks_service.schemas.messages import Callback, CallbackParams, send_tick_execution_id
from ticks_service.schemas.tick import Tick
from ticks_service.util.async_tools import AsyncTimeoutError, timeout

logger = logging.getLogger("delivery")


class DeliveryChannel:
    """
    Zero-capacity hand-off between a sentry's fan-out and one delivery task.

    ``offer`` only succeeds while the receiving task is idle: nothing pending
    and no tick in flight. It never blocks.
    """

    def __init__(self):
        self._pending: Optional[Tick] = None
        self._busy = False
        self._closed = False
        self._wakeup = asyncio.Event()
        self.accepted = 0
        self.skipped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def idle(self) -> bool:
        """True when an offer would be accepted."""
        return not (self._closed or self._busy or self._pending is not None)

    def offer(self, tick: Tick) -> bool:
        """Hand ``tick`` over if the receiver is idle; report whether it was taken."""
        if not self.idle:
            self.skipped += 1
            return False
        self._pending = tick
        self.accepted += 1
        self._wakeup.set()
        return True

    async def receive(self) -> Optional[Tick]:
        """Wait for the next accepted tick; None once the channel is closed."""
        self._busy = False
        while self._pending is None:
            if self._closed:
                return None
            self._wakeup.clear()
            await self._wakeup.wait()
        tick, self._pending = self._pending, None
        self._busy = True
        return tick

    def close(self) -> None:
        """Stop the receiver; a tick not yet picked up is dropped."""
        self._closed = True
        self._pending = None
        self._wakeup.set()


@dataclass(eq=False)
class Subscriber:
    """A registered recipient of ticks, owned by one sentry."""
    id: str
    callback: Callback
    generation: int
    channel: DeliveryChannel = field(default_factory=DeliveryChannel)
    task: Optional[asyncio.Task] = None
    delivered: int = 0
    failed: int = 0


class DeliveryTask:
    """Forwards ticks accepted by a subscriber's channel to its callback."""

    def __init__(
        self,
        sentry_id: str,
        subscriber: Subscriber,
        invoker: CallbackInvoker,
        default_timeout_s: float,
        on_timeout: Callable[[Subscriber], None],
    ):
        self.sentry_id = sentry_id
        self.subscriber = subscriber
        self.invoker = invoker
        self.default_timeout_s = default_timeout_s
        self.on_timeout = on_timeout

    @property
    def deadline_s(self) -> float:
        return self.subscriber.callback.timeout_s or self.default_timeout_s

    async def run(self) -> None:
        """Deliver until the channel closes or a delivery times out."""
        subscriber = self.subscriber
        while True:
            tick = await subscriber.channel.receive()
            if tick is None:
                break
            if not await self.deliver(tick):
                self.on_timeout(subscriber)
                break

        logger.debug(f"[delivery] Removing listener {subscriber.id} from {self.sentry_id}",
                     extra={"evt": "delivery_stopped", "callback": subscriber.callback.name})

    async def deliver(self, tick: Tick) -> bool:
        """
        Invoke the callback for one tick.

        Returns False only when the invocation exceeded its deadline; any other
        failure is logged and the subscriber stays registered.
        """
        subscriber = self.subscriber
        params = CallbackParams(requester_id=subscriber.id, tick=tick)
        execution_id = send_tick_execution_id(tick, subscriber.id)
        start = time.monotonic()

        try:
            await timeout(
                self.invoker.invoke(subscriber.callback, params, execution_id),
                seconds=self.deadline_s,
            )
        except (AsyncTimeoutError, DeliveryTimeoutError) as e:
            self._record(execution_id, "timeout", start, str(e))
            logger.warning(
                f"[delivery] Listener {subscriber.id} has timed out after {self.deadline_s}s, exiting",
                extra={"evt": "delivery_timeout", "callback": subscriber.callback.name},
            )
            return False
        except Exception as e:
            subscriber.failed += 1
            self._record(execution_id, "error", start, str(e))
            logger.error(
                f"[delivery] Listener {subscriber.id} has errored, continuing: {e}",
                extra={"evt": "delivery_error", "callback": subscriber.callback.name},
            )
            return True

        subscriber.delivered += 1
        self._record(execution_id, "ok", start, None)
        return True

    def _record(self, execution_id: str, status: str, start: float, error: Optional[str]) -> DeliveryRecord:
        latency_ms = (time.monotonic() - start) * 1000.0
        record_delivery(self.sentry_id, status, latency_ms)
        record = DeliveryRecord(
            ts=datetime.now(timezone.utc).isoformat(),
            sentry_id=self.sentry_id,
            subscriber_id=self.subscriber.id,
            execution_id=execution_id,
            status=status,
            latency_ms=round(latency_ms, 3),
            error=error,
        )
        logger.debug(f"[delivery] {status} {execution_id}", extra={"evt": "delivery", "record": record})
        return record
