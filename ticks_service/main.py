"""
Ticks Service - FastAPI Backend

Distributes live exchange ticks to registered callbacks, one sentry per
(venue, instrument) pair.
"""

import logging
from typing import Optional
from fastapi import FastAPI

from ticks_service.config import settings
from ticks_service.middleware.error_handler import install_error_handlers
from ticks_service.observability.logs import setup_log_rotation, setup_logging
from ticks_service.observability.metrics import create_metrics_router
from ticks_service.routes_ops import router as ops_router
from ticks_service.routes_ticks import router as ticks_router
from ticks_service.runtime import TicksRuntime, build_runtime
from ticks_service.service_info import VERSION
from ticks_service.util.async_tools import shutdown_supervised_tasks

logger = logging.getLogger(__name__)


def create_app(runtime: Optional[TicksRuntime] = None) -> FastAPI:
    """App with every router; ``runtime`` is built from settings on startup if not given."""
    app = FastAPI(title="Ticks Service", version=VERSION)
    app.state.runtime = runtime

    app.include_router(ticks_router)
    app.include_router(ops_router)
    app.include_router(create_metrics_router())
    install_error_handlers(app)

    @app.on_event("startup")
    async def startup_event():
        """Initialize services on startup."""
        if settings.LOG_FILE:
            setup_log_rotation(settings.LOG_FILE)

        if app.state.runtime is None:
            app.state.runtime = build_runtime(settings)
        await app.state.runtime.start()
        logger.info("[startup] ticks service ready")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup services on shutdown."""
        try:
            if app.state.runtime is not None:
                await app.state.runtime.stop()

            # Shutdown all supervised tasks
            await shutdown_supervised_tasks()
            logger.info("All supervised tasks shut down")

        except Exception as e:
            logger.error(f"Error stopping services: {e}")

    return app


def run() -> None:
    import uvicorn

    setup_logging(settings.LOG_LEVEL)
    uvicorn.run(create_app(), host=settings.HTTP_HOST, port=settings.HTTP_PORT)


if __name__ == "__main__":
    run()
