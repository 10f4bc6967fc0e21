"""
HTTP callback invoker.
Executes a subscriber's callback by POSTing the tick payload to its URL.
"""

import logging
import httpx
from typing import Optional

from ticks_service.errors import DeliveryError, DeliveryTimeoutError
from ticks_service.schemas.messages import Callback, CallbackParams

logger = logging.getLogger("callbacks")


class HttpCallbackInvoker:
    """
    POST ``params`` as JSON to ``callback.url``.

    Headers carry the callback name and the execution id so receivers can
    drop duplicate executions. Any non-2xx answer is a DeliveryError.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self.client = client
        self.invocations = 0

    async def start(self) -> None:
        if self.client is None:
            # Deadlines are enforced per delivery by the caller
            self.client = httpx.AsyncClient(timeout=None)
            logger.info("[callbacks] HTTP client started")

    async def stop(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None
            logger.info("[callbacks] HTTP client stopped")

    async def invoke(self, callback: Callback, params: CallbackParams, execution_id: str) -> None:
        if self.client is None:
            await self.start()

        self.invocations += 1
        headers = {
            "X-Callback-Name": callback.name,
            "X-Execution-Id": execution_id,
        }
        try:
            r = await self.client.post(callback.url, content=params.model_dump_json(), headers={
                **headers, "Content-Type": "application/json",
            })
        except httpx.TimeoutException as e:
            raise DeliveryTimeoutError(
                f"callback {callback.name} timed out",
                details={"execution_id": execution_id},
            ) from e
        except httpx.HTTPError as e:
            raise DeliveryError(
                f"callback {callback.name} request failed: {e}",
                details={"execution_id": execution_id},
            ) from e

        if r.status_code < 200 or r.status_code >= 300:
            raise DeliveryError(
                f"callback {callback.name} returned HTTP {r.status_code}",
                details={"execution_id": execution_id, "status_code": r.status_code},
            )
        logger.debug(f"[callbacks] {execution_id} -> {callback.url} ({r.status_code})")
