"""
Ticks listening endpoints.
Join and leave a sentry's subscribers over HTTP.
"""

import logging
from fastapi import APIRouter, Request

from ticks_service.schemas.api import JoinParams, LeaveParams, RegistrationResult, ServiceInfo
from ticks_service.service_info import full_version

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ticks"])


@router.post("/ticks/listeners", response_model=RegistrationResult)
async def listen_to_ticks(params: JoinParams, request: Request) -> RegistrationResult:
    """Register ``subscriber_id`` for ticks of (venue, instrument)."""
    registration = request.app.state.runtime.registration
    return await registration.join(params.venue, params.instrument, params.subscriber_id, params.callback)


@router.delete("/ticks/listeners", response_model=RegistrationResult)
async def stop_listening_to_ticks(params: LeaveParams, request: Request) -> RegistrationResult:
    """Unregister ``subscriber_id``; succeeds even if it was not registered."""
    registration = request.app.state.runtime.registration
    return await registration.leave(params.subscriber_id, params.venue, params.instrument)


@router.get("/info", response_model=ServiceInfo)
def info() -> ServiceInfo:
    return ServiceInfo(version=full_version())
