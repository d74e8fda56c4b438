"""
Application error taxonomy and the handlers that render it as JSON.

Every error reaching the client has the shape
``{"success": false, "error": "<message>"}``.
"""
import logging
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from coinfolio.core.config import DEBUG, SESSION_COOKIE_NAME

logger = logging.getLogger(__name__)

GENERIC_AUTH_MESSAGE = "Invalid or expired session"


class CoinfolioError(Exception):
    """Base class for errors that map to an HTTP response."""
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInputError(CoinfolioError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class AuthRequiredError(CoinfolioError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class AuthInvalidError(CoinfolioError):
    """Rejected credential. The message never says why."""
    status_code = status.HTTP_403_FORBIDDEN
    default_message = GENERIC_AUTH_MESSAGE

    def __init__(self):
        super().__init__(GENERIC_AUTH_MESSAGE)


class NotFoundError(CoinfolioError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class CoinNotFoundError(NotFoundError):
    default_message = "Coin not found"

    def __init__(self, coin_id: Optional[str] = None):
        self.coin_id = coin_id
        super().__init__(f"Coin {coin_id} not found" if coin_id else None)


class ConflictError(CoinfolioError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Resource already exists"


class RateLimitedError(CoinfolioError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests, please try again later"


class UpstreamError(CoinfolioError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Market data provider unavailable"


class GatewayError(UpstreamError):
    """Outbound market-data call failed (transport, timeout, status or body)."""

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        self.upstream_status = upstream_status
        super().__init__(message)


class InternalError(CoinfolioError):
    pass


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


async def coinfolio_error_handler(request: Request, exc: CoinfolioError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    response = _error_response(exc.status_code, exc.message)
    if isinstance(exc, AuthInvalidError) and SESSION_COOKIE_NAME in request.cookies:
        response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return response


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request"
    return _error_response(status.HTTP_400_BAD_REQUEST, message)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(exc.status_code, str(exc.detail))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    message = "Internal server error"
    if DEBUG:
        message = f"{message}: {exc}"
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, message)


def register_exception_handlers(app: FastAPI) -> None:
    """Install the JSON error handlers on the application."""
    app.add_exception_handler(CoinfolioError, coinfolio_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
