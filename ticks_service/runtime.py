"""
Service wiring.
Builds the venue registry, catalog, invoker, journal, sentry directory and
registration façade from settings, and owns their start/stop.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from ticks_service.config import Settings, settings as default_settings
from ticks_service.protocols import Catalog, CallbackInvoker
from ticks_service.schemas.messages import SentryKey
from ticks_service.services.callbacks import HttpCallbackInvoker
from ticks_service.services.catalog import catalog_from_settings
from ticks_service.services.exchanges import ExchangeRegistry, default_registry
from ticks_service.services.journal import SubscriptionJournal
from ticks_service.services.registration import RegistrationFacade
from ticks_service.services.sentry_directory import SentryDirectory

logger = logging.getLogger("runtime")


@dataclass
class TicksRuntime:
    exchanges: ExchangeRegistry
    catalog: Catalog
    invoker: CallbackInvoker
    journal: Optional[SubscriptionJournal]
    directory: SentryDirectory
    registration: RegistrationFacade

    async def start(self) -> List[SentryKey]:
        """Open shared clients and restart journaled sentries."""
        start = getattr(self.invoker, "start", None)
        if start is not None:
            await start()
        recovered = self.directory.recover()
        logger.info(f"[runtime] Started, recovered {len(recovered)} sentries")
        return recovered

    async def stop(self) -> None:
        await self.directory.shutdown()
        stop = getattr(self.invoker, "stop", None)
        if stop is not None:
            await stop()
        logger.info("[runtime] Stopped")


def build_runtime(
    config: Settings = default_settings,
    *,
    exchanges: Optional[ExchangeRegistry] = None,
    catalog: Optional[Catalog] = None,
    invoker: Optional[CallbackInvoker] = None,
    journal: Optional[SubscriptionJournal] = None,
) -> TicksRuntime:
    """Default collaborators from ``config``; any of them can be overridden."""
    exchanges = exchanges or default_registry()
    catalog = catalog or catalog_from_settings(config)
    invoker = invoker or HttpCallbackInvoker()
    if journal is None and config.JOURNAL_ENABLED:
        journal = SubscriptionJournal(config.JOURNAL_DIR)

    directory = SentryDirectory(exchanges, invoker, journal=journal, config=config)
    return TicksRuntime(
        exchanges=exchanges,
        catalog=catalog,
        invoker=invoker,
        journal=journal,
        directory=directory,
        registration=RegistrationFacade(directory, catalog),
    )
