"""
Registration façade.
Validates join/leave requests and turns them into messages for the sentry
owning the (venue, instrument) pair.
"""

import logging
from typing import Optional

from ticks_service.errors import CatalogError, SentryUnreachableError, TicksServiceError, ValidationError
from ticks_service.protocols import Catalog
from ticks_service.schemas.api import RegistrationResult
from ticks_service.schemas.messages import Callback, JoinRequest, LeaveRequest, SentryKey
from ticks_service.services.sentry_directory import SentryDirectory

logger = logging.getLogger("registration")


def _require(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} must be provided", details={"field": field})
    return str(value).strip()


def sentry_key(venue: str, instrument: str) -> SentryKey:
    """Normalized key: lowercase venue, uppercase pair."""
    return SentryKey(venue.lower(), instrument.upper())


class RegistrationFacade:
    """Entry point for subscribing to and unsubscribing from ticks."""

    def __init__(self, directory: SentryDirectory, catalog: Catalog):
        self.directory = directory
        self.catalog = catalog

    async def join(
        self,
        venue: str,
        instrument: str,
        subscriber_id: str,
        callback: Optional[Callback],
    ) -> RegistrationResult:
        venue = _require(venue, "venue")
        instrument = _require(instrument, "instrument")
        subscriber_id = _require(subscriber_id, "subscriber_id")
        if callback is None:
            raise ValidationError("callback must be provided", details={"field": "callback"})

        key = sentry_key(venue, instrument)
        await self._check_instrument(key)

        sentry = self.directory.signal_with_start(
            key, JoinRequest(subscriber_id=subscriber_id, callback=callback)
        )
        logger.info(f"[registration] {subscriber_id} joined {key}", extra={"evt": "join", "sentry": sentry.name})
        return RegistrationResult(sentry_id=key.sentry_id, subscriber_id=subscriber_id, status="joined")

    async def leave(self, subscriber_id: str, venue: str, instrument: str) -> RegistrationResult:
        subscriber_id = _require(subscriber_id, "subscriber_id")
        venue = _require(venue, "venue")
        instrument = _require(instrument, "instrument")

        key = sentry_key(venue, instrument)
        try:
            self.directory.signal(key, LeaveRequest(subscriber_id=subscriber_id))
        except SentryUnreachableError:
            # Nothing to leave: a missing sentry has no subscribers
            logger.debug(f"[registration] leave for {key} with no running sentry")

        logger.info(f"[registration] {subscriber_id} left {key}", extra={"evt": "leave"})
        return RegistrationResult(sentry_id=key.sentry_id, subscriber_id=subscriber_id, status="left")

    async def _check_instrument(self, key: SentryKey) -> None:
        if not self.directory.exchanges.has(key.venue):
            raise ValidationError(f"venue {key.venue!r} has no feed adapter", details={"venue": key.venue})

        try:
            info = await self.catalog.get_instrument(key.venue, key.instrument)
        except TicksServiceError:
            raise
        except Exception as e:
            logger.error(f"[registration] catalog lookup for {key} failed: {e}")
            raise CatalogError(f"catalog lookup failed: {e}", details={"venue": key.venue}) from e

        if not info.exists:
            raise ValidationError(f"exchange {key.venue!r} doesn't exist", details={"venue": key.venue})
        if key.instrument not in info.supported_pairs:
            raise ValidationError(
                f"pair {key.instrument!r} doesn't exist for exchange {key.venue!r}",
                details={"venue": key.venue, "instrument": key.instrument},
            )
