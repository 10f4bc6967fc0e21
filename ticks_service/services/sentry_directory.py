"""
Sentry directory.
Keeps at most one live sentry per (venue, instrument) and routes control
messages to it, starting a new instance when none is running.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

from ticks_service.config import Settings, settings as default_settings
from ticks_service.errors import SentryUnreachableError
from ticks_service.protocols import CallbackInvoker
from ticks_service.schemas.api import SentryStatus
from ticks_service.services.exchanges import ExchangeRegistry
from ticks_service.services.journal import SubscriptionJournal
from ticks_service.services.sentry import Sentry, SentryMessage
from ticks_service.schemas.messages import Callback, SentryKey, TickReceived
from ticks_service.schemas.tick import Tick

logger = logging.getLogger("sentry_directory")


class SentryDirectory:
    """Live sentries by key."""

    def __init__(
        self,
        exchanges: ExchangeRegistry,
        invoker: CallbackInvoker,
        journal: Optional[SubscriptionJournal] = None,
        config: Settings = default_settings,
        clock: Callable[[], float] = time.time,
    ):
        self.exchanges = exchanges
        self.invoker = invoker
        self.journal = journal
        self.config = config
        self.clock = clock
        self._sentries: Dict[SentryKey, Sentry] = {}
        self._incarnations: Dict[SentryKey, int] = {}

    def get(self, key: SentryKey) -> Optional[Sentry]:
        """The instance currently accepting messages for ``key``, if any."""
        sentry = self._sentries.get(key)
        if sentry is not None and sentry.accepting:
            return sentry
        return None

    def signal(self, key: SentryKey, message: SentryMessage) -> Sentry:
        """Deliver to the live instance only."""
        sentry = self.get(key)
        if sentry is None:
            raise SentryUnreachableError(
                f"no running sentry for {key}",
                details={"sentry_id": key.sentry_id},
            )
        sentry.signal(message)
        return sentry

    def signal_with_start(self, key: SentryKey, message: SentryMessage) -> Sentry:
        """Deliver to the live instance, starting one first if there is none."""
        sentry = self.get(key)
        if sentry is None:
            sentry = self._start(key)
        sentry.signal(message)
        return sentry

    def emit_tick(self, key: SentryKey, tick: Tick) -> Sentry:
        """Hand a tick to the live instance for ``key``; raises SentryUnreachableError otherwise."""
        return self.signal(key, TickReceived(tick=tick))

    def _start(self, key: SentryKey, initial_subscribers: Optional[Dict[str, Callback]] = None) -> Sentry:
        previous = self._sentries.get(key)
        predecessor = None
        if previous is not None and previous.task is not None and not previous.task.done():
            # Terminating: the new instance opens its feed only after this one is gone
            predecessor = previous.task

        incarnation = self._incarnations.get(key, 0) + 1
        self._incarnations[key] = incarnation

        sentry = Sentry(
            key,
            exchanges=self.exchanges,
            invoker=self.invoker,
            journal=self.journal,
            config=self.config,
            clock=self.clock,
            incarnation=incarnation,
            predecessor=predecessor,
            initial_subscribers=initial_subscribers,
        )
        self._sentries[key] = sentry
        task = sentry.start()
        task.add_done_callback(lambda _t: self._forget(key, sentry))
        logger.info(f"[sentry_directory] Started {sentry.name}", extra={"evt": "sentry_spawned"})
        return sentry

    def _forget(self, key: SentryKey, sentry: Sentry) -> None:
        if self._sentries.get(key) is sentry:
            del self._sentries[key]

    def recover(self) -> List[SentryKey]:
        """Restart sentries whose journal still lists subscribers."""
        if self.journal is None:
            return []

        recovered = []
        for key, subscribers in self.journal.pending():
            if self.get(key) is not None:
                continue
            self._start(key, initial_subscribers=subscribers)
            recovered.append(key)
            logger.info(f"[sentry_directory] Recovered {key.sentry_id} with {len(subscribers)} subscribers")
        return recovered

    def sentries(self) -> List[Sentry]:
        return [s for s in self._sentries.values() if s.accepting]

    def snapshot(self) -> List[SentryStatus]:
        return [s.status() for s in sorted(self.sentries(), key=lambda s: s.sentry_id)]

    async def shutdown(self) -> None:
        """Cancel every sentry; journals are kept for recovery."""
        running = [s for s in self._sentries.values() if s.task is not None and not s.task.done()]
        if not running:
            return
        logger.info(f"[sentry_directory] Shutting down {len(running)} sentries")
        for sentry in running:
            sentry.task.cancel()
        await asyncio.gather(*(s.task for s in running), return_exceptions=True)

        # Acknowledged but not yet applied control messages must survive the restart
        for sentry in running:
            sentry.journal_queued_control()
