"""
Operations monitoring endpoints.
Process health and a live view of every running sentry.
"""

import logging
from typing import List
from fastapi import APIRouter, Request

from ticks_service.schemas.api import HealthStatus, SentryStatus
from ticks_service.service_info import full_version
from ticks_service.util.async_tools import get_supervised_tasks

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ops", tags=["ops"])


@router.get("/health", response_model=HealthStatus)
def health(request: Request) -> HealthStatus:
    """Lightweight liveness endpoint for health monitors."""
    sentries = request.app.state.runtime.directory.snapshot()
    tasks = get_supervised_tasks()
    return HealthStatus(
        status="ok",
        version=full_version(),
        sentries_active=len(sentries),
        subscribers_total=sum(len(s.subscribers) for s in sentries),
        supervised_tasks=len(tasks),
        details={
            "feeds_running": sum(1 for s in sentries if s.feed_running),
            "delivery_tasks": sum(1 for name in tasks if name.startswith("delivery:")),
        },
    )


@router.get("/sentries", response_model=List[SentryStatus])
def sentries(request: Request) -> List[SentryStatus]:
    return request.app.state.runtime.directory.snapshot()
