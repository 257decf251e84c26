"""Translation of domain errors into HTTP responses with the JSON envelope."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from atelier.core.config import get_settings
from atelier.core.errors import (
    ConfigurationError,
    DomainError,
    Forbidden,
    NotFound,
    PaymentGatewayError,
)

logger = logging.getLogger(__name__)


def http_error(exc: DomainError) -> HTTPException:
    """Map a service-layer error to the status code clients expect."""

    if isinstance(exc, NotFound):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, Forbidden):
        code = status.HTTP_403_FORBIDDEN
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(exc))


def envelope(
    message: str, *, error: Any = None, status_code: int
) -> JSONResponse:
    body: dict[str, Any] = {"success": False, "message": message}
    if error is not None and not get_settings().is_production:
        body["error"] = error
    return JSONResponse(status_code=status_code, content=body)


async def _http_exception_handler(
    _: Request, exc: StarletteHTTPException
) -> JSONResponse:
    response = envelope(str(exc.detail), status_code=exc.status_code)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def _validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    message = str(first.get("msg") or "Invalid request")
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    if location:
        message = f"{location}: {message}"
    return envelope(
        message,
        error=[{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors],
        status_code=status.HTTP_400_BAD_REQUEST,
    )


async def _domain_handler(_: Request, exc: DomainError) -> JSONResponse:
    translated = http_error(exc)
    return envelope(str(translated.detail), status_code=translated.status_code)


async def _gateway_handler(_: Request, exc: PaymentGatewayError) -> JSONResponse:
    logger.error("%s gateway error: %s", exc.provider, exc)
    return envelope(
        str(exc),
        error={"provider": exc.provider},
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


async def _configuration_handler(_: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Configuration error: %s", exc)
    return envelope(
        "Server configuration error",
        error=str(exc),
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


async def _unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return envelope(
        "Internal server error",
        error=repr(exc),
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DomainError, _domain_handler)  # type: ignore[arg-type]
    app.add_exception_handler(PaymentGatewayError, _gateway_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ConfigurationError, _configuration_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_handler)
