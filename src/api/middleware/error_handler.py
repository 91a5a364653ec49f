"""Error types raised by checkout routes and the middleware that renders them.

Every non-2xx response body is an ``ErrorResponse``. Routes raise an
``APIError`` subclass; the middleware maps it to its status code and logs it
with the request id.
"""

import logging
import traceback
from typing import Any, Callable

from fastapi import HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)


class APIError(Exception):
    """An error with a client-facing status code and error category."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_type: str = "api_error",
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.error_type = error_type
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Checkout data failed validation, e.g. an incomplete address."""

    def __init__(self, message: str = "Validation error", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY, "validation_error", details)


class AuthenticationError(APIError):
    """Missing or rejected access token.

    When ``login_url`` is given it is appended to the details so the
    storefront can send the customer back to sign in.
    """

    def __init__(
        self,
        message: str = "Authentication required",
        details: list[dict[str, Any]] | None = None,
        login_url: str | None = None,
    ) -> None:
        if login_url:
            details = [*(details or []), {"loc": ["login_url"], "msg": login_url, "type": "login_required"}]
        super().__init__(message, status.HTTP_401_UNAUTHORIZED, "authentication_error", details)


class ConflictError(APIError):
    """Request conflicts with the current checkout state."""

    def __init__(self, message: str = "Conflict", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT, "conflict", details)


class UpstreamServiceError(APIError):
    """A downstream storefront service failed."""

    def __init__(self, message: str = "Upstream service unavailable", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message, status.HTTP_502_BAD_GATEWAY, "upstream_error", details)


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    details: list[dict[str, Any]] | None = None,
    request_id: str | None = None,
) -> JSONResponse:
    """Render an error as an ``ErrorResponse`` JSON body, omitting empty fields."""
    body = ErrorResponse.from_exception(error_type, message, details, request_id)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", exclude_none=True))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request body and parameter errors in the ErrorResponse format."""
    details = [
        {"loc": [str(part) for part in error["loc"]], "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]
    return create_error_response(
        "validation_error",
        "Invalid request",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        details,
        request.headers.get("X-Request-ID"),
    )


async def error_handler_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Convert exceptions escaping a route into ``ErrorResponse`` bodies.

    Expected checkout errors are logged at warning level. Anything else is
    logged with its traceback and hidden behind a generic 500.
    """
    request_id = request.headers.get("X-Request-ID")

    try:
        return await call_next(request)
    except APIError as e:
        logger.warning(
            "%s on %s %s: %s",
            e.error_type,
            request.method,
            request.url.path,
            e.message,
            extra={"request_id": request_id, "status_code": e.status_code},
        )
        return create_error_response(e.error_type, e.message, e.status_code, e.details, request_id)
    except HTTPException as e:
        logger.warning("HTTP %s on %s: %s", e.status_code, request.url.path, e.detail, extra={"request_id": request_id})
        return create_error_response("http_error", str(e.detail), e.status_code, request_id=request_id)
    except Exception as e:
        logger.error(
            "Unhandled error on %s %s: %s\n%s",
            request.method,
            request.url.path,
            e,
            traceback.format_exc(),
            extra={"request_id": request_id},
        )
        return create_error_response(
            "internal_error",
            "An unexpected error occurred",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
        )
