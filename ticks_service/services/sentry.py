"""
Sentry: per-(venue, instrument) tick distributor.

A sentry owns the subscriber set for one instrument, runs the feed for it
while at least one subscriber is registered, and fans every received tick
out to the subscribers' delivery tasks. Control messages are drained once
per loop iteration, joins before leaves, so the set only changes between
ticks.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, Mapping, Optional, Union

from ticks_service.config import Settings, settings as default_settings
from ticks_service.errors import SentryUnreachableError, TicksServiceError
from ticks_service.observability.metrics import (
    record_eviction,
    record_fanout,
    record_sentry_lifecycle,
    record_subscribers,
    record_tick_received,
)
from ticks_service.protocols import CallbackInvoker
from ticks_service.schemas.api import SentryStatus
from ticks_service.schemas.messages import Callback, JoinRequest, LeaveRequest, SentryKey, TickReceived
from ticks_service.schemas.tick import Tick
from ticks_service.services.delivery import DeliveryTask, Subscriber
from ticks_service.services.exchanges import ExchangeRegistry
from ticks_service.services.feed import FeedHandle, FeedListener
from ticks_service.util.async_tools import create_supervised_task

if TYPE_CHECKING:
    from ticks_service.services.journal import SubscriptionJournal

logger = logging.getLogger("sentry")

ControlMessage = Union[JoinRequest, LeaveRequest]
SentryMessage = Union[JoinRequest, LeaveRequest, TickReceived]


class SentryState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    TERMINATED = "terminated"


def apply_control(state: Mapping[str, Callback], message: ControlMessage) -> Dict[str, Callback]:
    """
    Subscriber set after one control message, ordered by subscriber id.

    Join inserts or replaces the callback (latest wins); leave of an unknown
    id leaves the set unchanged.
    """
    next_state = dict(state)
    if isinstance(message, JoinRequest):
        next_state[message.subscriber_id] = message.callback
    elif isinstance(message, LeaveRequest):
        next_state.pop(message.subscriber_id, None)
    else:
        raise TypeError(f"not a control message: {type(message).__name__}")
    return dict(sorted(next_state.items()))


class Sentry:
    """Single-threaded owner of one instrument's subscribers and feed."""

    def __init__(
        self,
        key: SentryKey,
        *,
        exchanges: ExchangeRegistry,
        invoker: CallbackInvoker,
        journal: Optional["SubscriptionJournal"] = None,
        config: Settings = default_settings,
        clock: Callable[[], float] = time.time,
        incarnation: int = 1,
        predecessor: Optional[asyncio.Task] = None,
        initial_subscribers: Optional[Mapping[str, Callback]] = None,
    ):
        self.key = key
        self.sentry_id = key.sentry_id
        self.exchanges = exchanges
        self.invoker = invoker
        self.journal = journal
        self.config = config
        self.clock = clock
        self.incarnation = incarnation
        self.predecessor = predecessor
        self.initial_subscribers = dict(initial_subscribers or {})

        # Mailboxes
        self.join_mailbox: asyncio.Queue = asyncio.Queue()
        self.leave_mailbox: asyncio.Queue = asyncio.Queue()
        self.tick_mailbox: asyncio.Queue = asyncio.Queue()

        self.state = SentryState.IDLE
        self.subscribers: Dict[str, Subscriber] = {}
        self.feed: Optional[FeedHandle] = None
        self.task: Optional[asyncio.Task] = None
        self.exit_reason: Optional[str] = None

        self._generation = 0
        self.ticks_received = 0
        self.last_tick: Optional[Tick] = None
        self.evictions = 0

    @property
    def name(self) -> str:
        return f"{self.sentry_id}#{self.incarnation}"

    @property
    def accepting(self) -> bool:
        """Whether messages can still be delivered to this instance."""
        return self.state != SentryState.TERMINATED and not (self.task is not None and self.task.done())

    def start(self) -> asyncio.Task:
        self.task = create_supervised_task(self.run(), name=f"sentry:{self.name}")
        return self.task

    def signal(self, message: SentryMessage) -> None:
        """Enqueue a message; raises SentryUnreachableError once terminated."""
        if not self.accepting:
            raise SentryUnreachableError(
                f"sentry {self.sentry_id} is not running",
                details={"sentry_id": self.sentry_id},
            )
        if isinstance(message, JoinRequest):
            self.join_mailbox.put_nowait(message)
        elif isinstance(message, LeaveRequest):
            self.leave_mailbox.put_nowait(message)
        elif isinstance(message, TickReceived):
            self.tick_mailbox.put_nowait(message)
        else:
            raise TypeError(f"unsupported sentry message: {type(message).__name__}")

    async def signal_tick(self, tick: Tick) -> None:
        """Feed sink: address ticks to this instance only."""
        self.signal(TickReceived(tick=tick))

    async def run(self) -> None:
        try:
            if self.predecessor is not None and not self.predecessor.done():
                logger.info(f"[sentry] {self.name} waiting for previous instance to release the feed")
                await asyncio.gather(self.predecessor, return_exceptions=True)

            for subscriber_id, callback in self.initial_subscribers.items():
                self._add(subscriber_id, callback)
            self._drain_control()

            if self.subscribers:
                self.state = SentryState.ACTIVE
                record_sentry_lifecycle("started")
                logger.info(f"[sentry] {self.name} started with {len(self.subscribers)} subscribers",
                            extra={"evt": "sentry_started"})
                self._start_feed()

            while self.subscribers:
                tick = await self._next_tick()
                if tick is None:
                    self._feed_stopped()
                    break
                self._drain_control()
                self._fan_out(tick)

            if self.exit_reason is None:
                self.exit_reason = "empty"
        except asyncio.CancelledError:
            self.exit_reason = "shutdown"
            raise
        finally:
            await self._terminate()

    async def _next_tick(self) -> Optional[Tick]:
        """Next tick from the mailbox; None once the feed has ended."""
        if not self.tick_mailbox.empty():
            return self._receive(self.tick_mailbox.get_nowait())
        if self.feed is None or not self.feed.running:
            return None

        get_task = asyncio.create_task(self.tick_mailbox.get())
        try:
            done, _ = await asyncio.wait({get_task, self.feed.task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            get_task.cancel()
            raise

        if get_task in done:
            return self._receive(get_task.result())
        get_task.cancel()
        return None

    def _receive(self, message: TickReceived) -> Tick:
        self.ticks_received += 1
        self.last_tick = message.tick
        record_tick_received(self.sentry_id)
        return message.tick

    def _drain_control(self) -> None:
        while not self.join_mailbox.empty():
            self._handle_join(self.join_mailbox.get_nowait())
        while not self.leave_mailbox.empty():
            self._handle_leave(self.leave_mailbox.get_nowait())

    def _handle_join(self, message: JoinRequest) -> None:
        self._add(message.subscriber_id, message.callback)
        if self.journal is not None:
            self.journal.record_join(self.key, message.subscriber_id, message.callback)
        logger.info(f"[sentry] {self.name} joined {message.subscriber_id} ({len(self.subscribers)} subscribers)",
                    extra={"evt": "subscriber_joined", "callback": message.callback.name})

    def _handle_leave(self, message: LeaveRequest) -> None:
        subscriber = self.subscribers.pop(message.subscriber_id, None)
        if subscriber is None:
            logger.debug(f"[sentry] {self.name} leave for unknown subscriber {message.subscriber_id}")
            return
        subscriber.channel.close()
        record_subscribers(self.sentry_id, len(self.subscribers))
        if self.journal is not None:
            self.journal.record_leave(self.key, message.subscriber_id)
        logger.info(f"[sentry] {self.name} removed {message.subscriber_id} ({len(self.subscribers)} subscribers)",
                    extra={"evt": "subscriber_left"})

    def _add(self, subscriber_id: str, callback: Callback) -> None:
        previous = self.subscribers.get(subscriber_id)
        if previous is not None:
            # Re-join replaces the callback; the old delivery task winds down on its own
            previous.channel.close()

        self._generation += 1
        subscriber = Subscriber(id=subscriber_id, callback=callback, generation=self._generation)
        self.subscribers[subscriber_id] = subscriber
        delivery = DeliveryTask(
            self.sentry_id,
            subscriber,
            self.invoker,
            default_timeout_s=self.config.CALLBACK_DEFAULT_TIMEOUT_S,
            on_timeout=self.evict,
        )
        subscriber.task = create_supervised_task(
            delivery.run(),
            name=f"delivery:{self.name}:{subscriber_id}:{subscriber.generation}",
        )
        record_subscribers(self.sentry_id, len(self.subscribers))

    def evict(self, subscriber: Subscriber) -> None:
        """Remove ``subscriber`` after a delivery timeout, unless it was already replaced."""
        if self.subscribers.get(subscriber.id) is not subscriber:
            return
        del self.subscribers[subscriber.id]
        subscriber.channel.close()
        self.evictions += 1
        record_eviction(self.sentry_id)
        record_subscribers(self.sentry_id, len(self.subscribers))
        if self.journal is not None:
            self.journal.record_evict(self.key, subscriber.id)
        logger.warning(f"[sentry] {self.name} evicted {subscriber.id} after delivery timeout",
                       extra={"evt": "subscriber_evicted"})

    def _fan_out(self, tick: Tick) -> None:
        accepted = skipped = 0
        for subscriber_id in sorted(self.subscribers):
            if self.subscribers[subscriber_id].channel.offer(tick):
                accepted += 1
            else:
                skipped += 1
        record_fanout(self.sentry_id, accepted, skipped)

    def _start_feed(self) -> None:
        try:
            stream = self.exchanges.stream_for(self.key.venue)
        except TicksServiceError as e:
            logger.error(f"[sentry] {self.name} cannot open feed: {e.message}")
            self.exit_reason = "feed_unavailable"
            self._release_all()
            return

        listener = FeedListener(stream, self.key.instrument, clock=self.clock)
        self.feed = FeedHandle(
            listener,
            self.signal_tick,
            name=f"feed:{self.name}",
            heartbeat_interval_s=self.config.heartbeat_interval_s,
            heartbeat_timeout_s=self.config.heartbeat_timeout_s,
            connect_timeout_s=self.config.FEED_CONNECT_TIMEOUT_S,
            cancel_timeout_s=self.config.FEED_CANCEL_TIMEOUT_S,
        )

    def _feed_stopped(self) -> None:
        error = self.feed.error() if self.feed is not None else None
        logger.error(f"[sentry] {self.name} feed stopped: {error or 'no error'}, releasing subscribers",
                     extra={"evt": "feed_stopped"})
        self.exit_reason = "feed_stopped"
        self._release_all()

    def _release_all(self) -> None:
        for subscriber in self.subscribers.values():
            subscriber.channel.close()
        self.subscribers.clear()
        record_subscribers(self.sentry_id, 0)

    async def _terminate(self) -> None:
        # No await before this point: once the set is seen empty, no message can be accepted
        self.state = SentryState.TERMINATED

        if self.exit_reason == "shutdown":
            # Queued joins and leaves are journaled by journal_queued_control
            for subscriber in self.subscribers.values():
                subscriber.channel.close()
        else:
            dropped = self.join_mailbox.qsize() + self.leave_mailbox.qsize()
            if dropped:
                logger.warning(f"[sentry] {self.name} dropping {dropped} control messages on exit")
            self._release_all()
            if self.journal is not None:
                self.journal.record_terminate(self.key)

        if self.feed is not None:
            await self.feed.cancel()

        record_sentry_lifecycle("terminated")
        logger.info(f"[sentry] {self.name} terminated ({self.exit_reason})", extra={"evt": "sentry_terminated"})

    def journal_queued_control(self) -> int:
        """
        Journal joins and leaves accepted but not yet applied, in drain order.

        Called once the instance is stopped for process shutdown, so that
        recovery restores every acknowledged subscription.
        """
        if self.journal is None or self.exit_reason not in (None, "shutdown"):
            return 0

        flushed = 0
        while not self.join_mailbox.empty():
            message = self.join_mailbox.get_nowait()
            self.journal.record_join(self.key, message.subscriber_id, message.callback)
            flushed += 1
        while not self.leave_mailbox.empty():
            self.journal.record_leave(self.key, self.leave_mailbox.get_nowait().subscriber_id)
            flushed += 1
        if flushed:
            logger.info(f"[sentry] {self.name} journaled {flushed} queued control messages",
                        extra={"evt": "control_journaled"})
        return flushed

    def status(self) -> SentryStatus:
        return SentryStatus(
            sentry_id=self.sentry_id,
            venue=self.key.venue,
            instrument=self.key.instrument,
            state=self.state.value,
            subscribers=sorted(self.subscribers),
            feed_running=self.feed is not None and self.feed.running,
            last_tick_price=str(self.last_tick.price) if self.last_tick is not None else None,
            last_tick_at=self.last_tick.observed_at.isoformat() if self.last_tick is not None else None,
            ticks_received=self.ticks_received,
        )
