"""Shared httpx plumbing for the storefront's backend services."""

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """A remote service call failed or returned an unsuccessful envelope."""

    def __init__(self, message: str, status_code: int | None = None, service: str = "remote") -> None:
        """Initialize service error.

        Args:
            message: Human-readable error message (taken from the response when available).
            status_code: HTTP status code, or None for transport failures.
            service: Name of the service that failed.
        """
        self.message = message
        self.status_code = status_code
        self.service = service
        super().__init__(message)


class ServiceAuthError(ServiceError):
    """The remote service rejected the caller's credentials (401/403)."""


class ServiceClient:
    """Base class for JSON-over-HTTP service clients.

    Responses from the storefront services are wrapped in an envelope of the
    form ``{"success": bool, "data": ..., "message": str}``. Some endpoints
    (the order service) return the resource directly; both are accepted.
    """

    service_name = "remote"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create the underlying async client.

        Args:
            base_url: Service base URL.
            timeout: Request timeout in seconds.
            transport: Optional transport override (used by tests).
        """
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        access_token: str | None = None,
        default_error: str = "Request failed",
    ) -> Any:
        """Send a request and unwrap the response envelope.

        Args:
            method: HTTP method.
            path: Path relative to the base URL.
            json: Optional JSON body.
            params: Optional query parameters.
            access_token: Optional bearer token to forward.
            default_error: Message used when the service gives none.

        Returns:
            The envelope's ``data`` member, or the whole body for bare responses.

        Raises:
            ServiceAuthError: On 401/403 responses.
            ServiceError: On transport failures, other error statuses, or
                ``success: false`` envelopes.
        """
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else None

        try:
            response = await self._client.request(method, path, json=json, params=params, headers=headers)
        except httpx.HTTPError as e:
            logger.error("%s %s %s failed: %s", self.service_name, method, path, e)
            raise ServiceError(f"{default_error}: {e}", service=self.service_name) from e

        body = _safe_json(response)

        if response.status_code in (401, 403):
            message = _message_from(body) or "Authentication required"
            raise ServiceAuthError(message, status_code=response.status_code, service=self.service_name)

        if response.is_error:
            message = _message_from(body) or default_error
            logger.warning(
                "%s %s %s returned %d: %s",
                self.service_name,
                method,
                path,
                response.status_code,
                message,
            )
            raise ServiceError(message, status_code=response.status_code, service=self.service_name)

        if isinstance(body, dict) and "success" in body:
            if not body["success"]:
                raise ServiceError(
                    _message_from(body) or default_error,
                    status_code=response.status_code,
                    service=self.service_name,
                )
            return body.get("data")

        return body


def _safe_json(response: httpx.Response) -> Any:
    """Decode a JSON body, returning None for empty or non-JSON bodies."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def _message_from(body: Any) -> str | None:
    """Extract an error message from a decoded response body."""
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if isinstance(message, str) and message:
            return message
    return None
