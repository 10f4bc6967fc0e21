"""
Exchange feed listener.
Turns one venue quote stream into deduplicated ticks, heartbeats while the
upstream connection is up, and hands every tick to its owning sentry.
"""

import asyncio
import logging
import time
from contextlib import aclosing
from datetime import datetime, timezone
from decimal import InvalidOperation
from typing import AsyncIterator, Awaitable, Callable, Optional

from ticks_service.errors import FeedStalledError, ListenerStoppedError, SentryUnreachableError
from ticks_service.protocols import Quote, QuoteStream
from ticks_service.schemas.tick import Tick, mid_price
from ticks_service.util.async_tools import create_supervised_task

logger = logging.getLogger("feed")

TickSink = Callable[[Tick], Awaitable[None]]
Heartbeat = Callable[[], None]


class FeedListener:
    """Deduplicating tick source for a single instrument."""

    def __init__(self, stream: QuoteStream, instrument: str, clock: Callable[[], float] = time.time):
        self.stream = stream
        self.venue = stream.venue
        self.instrument = instrument
        self.clock = clock
        self._last_forwarded: Optional[Quote] = None

        # Health metrics
        self.quotes_seen = 0
        self.ticks_forwarded = 0
        self.duplicates_dropped = 0
        self.invalid_quotes = 0

    def accept(self, quote: Quote) -> Optional[Tick]:
        """Apply the dedup rule to one quote; return the tick to forward, if any."""
        self.quotes_seen += 1

        # Skip if same bid and ask as last forwarded quote
        if self._last_forwarded is not None and quote == self._last_forwarded:
            self.duplicates_dropped += 1
            return None

        try:
            price = mid_price(quote.bid, quote.ask)
        except (InvalidOperation, TypeError) as e:
            self.invalid_quotes += 1
            logger.warning(f"[feed] {self.venue}:{self.instrument} unparseable quote {quote}: {e}")
            return None

        self._last_forwarded = quote
        self.ticks_forwarded += 1
        return Tick(
            observed_at=datetime.fromtimestamp(self.clock(), tz=timezone.utc),
            venue=self.venue,
            instrument=self.instrument,
            price=price,
        )

    async def ticks(self) -> AsyncIterator[Tick]:
        """Open the upstream connection and yield ticks until it closes."""
        async with aclosing(self.stream.quotes(self.instrument)) as quotes:
            async for quote in quotes:
                tick = self.accept(quote)
                if tick is not None:
                    yield tick

    async def listen(
        self,
        sink: TickSink,
        on_heartbeat: Optional[Heartbeat] = None,
        heartbeat_interval_s: float = 0.3,
    ) -> None:
        """
        Forward ticks to ``sink`` until the feed closes or the task is cancelled.

        Returns normally when the sink reports the sentry as gone; raises
        ListenerStoppedError when the upstream closes on its own.
        """
        heartbeat_task = None
        if on_heartbeat is not None:
            heartbeat_task = asyncio.create_task(self._heartbeat_loop(on_heartbeat, heartbeat_interval_s))

        logger.info(f"[feed] Listening to {self.venue}:{self.instrument}")
        try:
            async with aclosing(self.ticks()) as ticks:
                async for tick in ticks:
                    try:
                        await sink(tick)
                    except SentryUnreachableError:
                        logger.info(f"[feed] Sentry for {self.venue}:{self.instrument} is gone, closing feed")
                        return
        except asyncio.CancelledError:
            logger.info(f"[feed] {self.venue}:{self.instrument} listener cancelled")
            raise
        except ListenerStoppedError:
            raise
        except Exception as e:
            logger.error(f"[feed] {self.venue}:{self.instrument} upstream error: {e}")
            raise ListenerStoppedError(
                f"{self.venue} listener stopped: {e}",
                details={"venue": self.venue, "instrument": self.instrument},
            ) from e
        finally:
            if heartbeat_task is not None:
                heartbeat_task.cancel()
                await asyncio.gather(heartbeat_task, return_exceptions=True)

        raise ListenerStoppedError(
            f"{self.venue} listener stopped",
            details={"venue": self.venue, "instrument": self.instrument, "ticks": self.ticks_forwarded},
        )

    async def _heartbeat_loop(self, on_heartbeat: Heartbeat, interval_s: float) -> None:
        while True:
            if getattr(self.stream, "connected", True):
                on_heartbeat()
            await asyncio.sleep(interval_s)


class FeedHandle:
    """A running FeedListener owned by one sentry, with stall watchdog and bounded cancel."""

    def __init__(
        self,
        listener: FeedListener,
        sink: TickSink,
        *,
        name: str,
        heartbeat_interval_s: float = 0.3,
        heartbeat_timeout_s: float = 1.0,
        connect_timeout_s: float = 10.0,
        cancel_timeout_s: float = 5.0,
    ):
        self.listener = listener
        self.sink = sink
        self.name = name
        self.heartbeat_interval_s = heartbeat_interval_s
        self.heartbeat_timeout_s = heartbeat_timeout_s
        self.connect_timeout_s = connect_timeout_s
        self.cancel_timeout_s = cancel_timeout_s
        self.started_at = time.monotonic()
        # Watchdog arms at the first heartbeat, i.e. once the upstream is connected
        self.last_heartbeat: Optional[float] = None
        self.heartbeats = 0
        self.cancel_calls = 0
        self.task: asyncio.Task = create_supervised_task(self._run(), name=name)

    def _beat(self) -> None:
        self.last_heartbeat = time.monotonic()
        self.heartbeats += 1

    async def _run(self) -> None:
        listen_task = asyncio.create_task(
            self.listener.listen(self.sink, self._beat, self.heartbeat_interval_s)
        )
        try:
            while True:
                done, _ = await asyncio.wait({listen_task}, timeout=self.heartbeat_timeout_s)
                if done:
                    return listen_task.result()
                self._check_stall(time.monotonic())
        finally:
            if not listen_task.done():
                listen_task.cancel()
                await asyncio.gather(listen_task, return_exceptions=True)

    def _check_stall(self, now: float) -> None:
        if self.last_heartbeat is None:
            if now - self.started_at <= self.connect_timeout_s:
                return
            logger.error(f"[feed] {self.name} not connected after {self.connect_timeout_s}s")
        elif now - self.last_heartbeat > self.heartbeat_timeout_s:
            logger.error(f"[feed] {self.name} missed heartbeats for {self.heartbeat_timeout_s}s")
        else:
            return
        raise FeedStalledError(
            f"{self.listener.venue} feed stalled",
            details={"venue": self.listener.venue, "instrument": self.listener.instrument},
        )

    @property
    def running(self) -> bool:
        return not self.task.done()

    def error(self) -> Optional[BaseException]:
        """Terminal error of the feed, if it ended with one."""
        if not self.task.done() or self.task.cancelled():
            return None
        return self.task.exception()

    async def cancel(self) -> bool:
        """
        Cancel the listener and wait for it to acknowledge.

        Returns False if the listener did not stop within cancel_timeout_s.
        """
        self.cancel_calls += 1
        if self.task.done():
            # Consume the outcome so a finished feed does not log as unretrieved
            self.error()
            return True

        self.task.cancel()
        done, _ = await asyncio.wait({self.task}, timeout=self.cancel_timeout_s)
        if not done:
            logger.warning(f"[feed] {self.name} did not acknowledge cancellation within {self.cancel_timeout_s}s")
            return False
        self.error()
        return True
