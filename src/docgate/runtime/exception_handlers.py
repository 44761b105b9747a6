"""
Exception handlers for docgate applications.

Every failure is rendered as the standard envelope
``{"success": false, "message": ..., "errors": [...]}``:

- DocgateError subclasses use their own status code
- Request body/parameter validation by FastAPI becomes a 400
- Anything else is logged with its traceback and becomes a 500
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from docgate.runtime.errors import DocgateError
from docgate.runtime.logging import get_api_logger, log_with_context
from docgate.runtime.serialization import to_jsonable


def error_response(status_code: int, message: str, errors: list[dict[str, Any]] | None = None) -> JSONResponse:
    """Build the error envelope."""
    content: dict[str, Any] = {"success": False, "message": message}
    if errors:
        content["errors"] = to_jsonable(errors)
    return JSONResponse(status_code=status_code, content=content)


def _request_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    errors = []
    for err in exc.errors():
        # Drop the "body"/"query"/"path" location prefix.
        loc = [str(part) for part in err.get("loc", ())]
        if loc and loc[0] in ("body", "query", "path", "header"):
            loc = loc[1:]
        errors.append(
            {
                "field": ".".join(loc) or "body",
                "message": err.get("msg", "Invalid value"),
                "value": None if err.get("type") == "missing" else err.get("input"),
            }
        )
    return errors


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register the docgate exception handlers on a FastAPI application.

    Args:
        app: FastAPI application instance
    """
    logger = get_api_logger()

    @app.exception_handler(DocgateError)
    async def docgate_error_handler(request: Request, exc: DocgateError) -> JSONResponse:
        """Render core errors with their own status code."""
        if exc.status_code >= 500:
            log_with_context(
                logger,
                logging.ERROR,
                f"{request.method} {request.url.path} failed: {exc.message}",
                error_type=type(exc).__name__,
            )
        return error_response(exc.status_code, exc.message, exc.errors)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Render malformed requests as 400 with field details."""
        return error_response(400, "Validation failed", _request_errors(exc))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Render routing errors (404, 405) in the envelope."""
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return error_response(exc.status_code, message)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        """Log unexpected failures with traceback and return a generic 500."""
        logger.error(
            f"Unhandled error on {request.method} {request.url.path}",
            exc_info=exc,
        )
        return error_response(500, "Internal server error")
