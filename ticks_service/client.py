"""
Ticks service HTTP client.
"""

import logging
import uuid
import httpx
from typing import Optional

from ticks_service.errors import CatalogError, SentryUnreachableError, TicksServiceError, ValidationError
from ticks_service.schemas.api import JoinParams, LeaveParams, RegistrationResult, ServiceInfo
from ticks_service.schemas.messages import Callback

logger = logging.getLogger("ticks_client")

_ERRORS_BY_CODE = {
    "VALIDATION_ERROR": ValidationError,
    "CATALOG_ERROR": CatalogError,
    "SENTRY_UNREACHABLE": SentryUnreachableError,
}


class TicksClient:
    """Async client for the ticks service control surface."""

    def __init__(self, base_url: str, timeout: float = 10.0, user_agent: Optional[str] = None,
                 client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent or f"python-client-{uuid.uuid4()}"
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={"User-Agent": self.user_agent},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "TicksClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def listen_to_ticks(self, venue: str, instrument: str, subscriber_id: str,
                              callback: Callback) -> RegistrationResult:
        """Register ``callback`` for ticks of (venue, instrument)."""
        params = JoinParams(venue=venue, instrument=instrument, subscriber_id=subscriber_id, callback=callback)
        r = await self._client.post("/ticks/listeners", json=params.model_dump(mode="json"))
        return RegistrationResult(**self._json(r))

    async def stop_listening_to_ticks(self, subscriber_id: str, venue: str, instrument: str) -> RegistrationResult:
        params = LeaveParams(venue=venue, instrument=instrument, subscriber_id=subscriber_id)
        r = await self._client.request("DELETE", "/ticks/listeners", json=params.model_dump(mode="json"))
        return RegistrationResult(**self._json(r))

    async def info(self) -> ServiceInfo:
        r = await self._client.get("/info")
        return ServiceInfo(**self._json(r))

    def _json(self, r: httpx.Response) -> dict:
        if r.is_success:
            return r.json()

        try:
            body = r.json()
        except ValueError:
            body = {}
        error_code = body.get("error", "HTTP_ERROR") if isinstance(body, dict) else "HTTP_ERROR"
        message = body.get("message", r.text) if isinstance(body, dict) else r.text
        logger.warning(f"[ticks_client] {r.request.method} {r.request.url.path} -> {r.status_code} {error_code}")
        details = {"status_code": r.status_code}
        error_cls = _ERRORS_BY_CODE.get(error_code)
        if error_cls is not None:
            raise error_cls(message, details=details)
        raise TicksServiceError(message, error_code, details)
