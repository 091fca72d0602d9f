"""Mapping of domain and transport errors onto HTTP responses.

Every error leaves the service as ``{"status", "message", "timestamp"}``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..domain.errors import UserServiceError

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Ocorreu um erro interno no servidor."
INVALID_JSON_MESSAGE = "Requisição JSON inválida"


def error_body(status_code: int, message: str) -> dict[str, object]:
    return {
        "status": status_code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def handle_user_service_error(request: Request, exc: UserServiceError) -> JSONResponse:
    """Translate a domain error into its stable status code and message."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s", type(exc).__name__, request.method, request.url.path)
        message = GENERIC_ERROR_MESSAGE
    else:
        message = exc.message
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.status_code, message))


def _validation_message(exc: RequestValidationError) -> str:
    locations = [error.get("loc", ()) for error in exc.errors()]
    if any(loc and loc[0] == "body" for loc in locations):
        return INVALID_JSON_MESSAGE
    names = sorted({str(loc[-1]) for loc in locations if loc})
    return f"Parâmetro ausente ou inválido: {', '.join(names)}"


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and missing headers or query parameters are all bad requests."""
    code = status.HTTP_400_BAD_REQUEST
    return JSONResponse(status_code=code, content=error_body(code, _validation_message(exc)))


async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: log the failure, answer with a message that leaks nothing."""
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return JSONResponse(status_code=code, content=error_body(code, GENERIC_ERROR_MESSAGE))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(UserServiceError, handle_user_service_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
