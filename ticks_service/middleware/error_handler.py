"""
Error Handler Middleware
FastAPI exception handlers rendering structured error responses.
"""

import logging
from fastapi import FastAPI, Request, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from ticks_service.errors import (
    TicksServiceError, create_http_exception,
    sanitize_error_message
)

logger = logging.getLogger(__name__)


def _body(request: Request, error: str, message: str, details: dict) -> dict:
    return {
        "error": error,
        "message": message,
        "details": details,
        "path": str(request.url.path),
        "method": request.method
    }


async def ticks_service_exception_handler(request: Request, exc: TicksServiceError) -> JSONResponse:
    """Handle TicksServiceError exceptions with structured responses."""
    http_exc = create_http_exception(exc)

    log = logger.warning if http_exc.status_code < 500 else logger.error
    log(f"TicksServiceError: {exc.error_code} - {exc.message}", extra={
        "error_code": exc.error_code,
        "details": exc.details,
        "path": str(request.url),
        "method": request.method
    })

    return JSONResponse(
        status_code=http_exc.status_code,
        content=_body(request, exc.error_code, sanitize_error_message(exc.message), jsonable_encoder(exc.details))
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPException with structured responses."""
    logger.warning(f"HTTPException: {exc.status_code} - {exc.detail}", extra={
        "status_code": exc.status_code,
        "path": str(request.url),
        "method": request.method
    })

    return JSONResponse(
        status_code=exc.status_code,
        content=_body(request, "HTTP_ERROR", sanitize_error_message(str(exc.detail)), {})
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request body validation errors with structured responses."""
    errors = jsonable_encoder(exc.errors())
    logger.warning(f"ValidationError: {errors}", extra={
        "path": str(request.url),
        "method": request.method
    })

    return JSONResponse(
        status_code=422,
        content=_body(request, "VALIDATION_ERROR", "Request validation failed", {"validation_errors": errors})
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions with structured responses."""
    logger.error(f"Unexpected error: {exc}", exc_info=True, extra={
        "path": str(request.url),
        "method": request.method
    })

    return JSONResponse(
        status_code=500,
        content=_body(request, "INTERNAL_ERROR", "An unexpected error occurred", {})
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TicksServiceError, ticks_service_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
