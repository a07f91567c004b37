"""Global error handlers: every failure answers with the response envelope."""

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from falvia.errors import EntitlementError, ErrorCode

logger = structlog.get_logger()

# Seconds a client should wait before retrying a transient failure.
RETRY_AFTER_SECONDS = 1


def error_envelope(message: str, code: str, *, retryable: bool = False, details: object = None) -> dict:
    """Build the failure half of the ``{success, data, error, code}`` envelope."""
    content: dict[str, object] = {
        "success": False,
        "data": None,
        "error": message,
        "code": code,
        "retryable": retryable,
    }
    if details is not None:
        content["details"] = details
    return content


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(EntitlementError)
    async def entitlement_error_handler(request: Request, exc: EntitlementError) -> JSONResponse:
        """Engine errors carry their own code and status."""
        headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if exc.retryable else None
        if exc.retryable:
            logger.warning("transient_error", path=request.url.path, code=exc.code.value, error=exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(exc.message, exc.code.value, retryable=exc.retryable),
            headers=headers,
        )

    @app.exception_handler(OperationalError)
    @app.exception_handler(InterfaceError)
    async def storage_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
        """Driver errors that escaped a service (e.g. on a plain read)."""
        logger.warning("storage_unavailable", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=503,
            content=error_envelope(
                "Storage unavailable, retry the request",
                ErrorCode.TRANSIENT_IO_ERROR.value,
                retryable=True,
            ),
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Routing errors (404 on unknown paths, 405) in envelope form."""
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(str(exc.detail), ErrorCode.INVALID_REQUEST.value),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle validation errors with the same envelope."""
        return JSONResponse(
            status_code=422,
            content=error_envelope(
                "Validation error",
                ErrorCode.INVALID_REQUEST.value,
                details=jsonable_encoder(exc.errors()),
            ),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions: always return JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content=error_envelope("Internal server error", "INTERNAL_ERROR"),
        )
