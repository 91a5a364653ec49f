"""Health check and error response schemas shared by every route."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class HealthStatus(str, Enum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Liveness probe body."""

    status: HealthStatus = Field(description="Current health status")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Check timestamp")
    version: str = Field(default="0.1.0", description="API version")


class CheckResult(BaseModel):
    """Outcome of one dependency check."""

    name: str = Field(description="Dependency name, e.g. storage:supabase")
    healthy: bool
    latency_ms: float | None = Field(default=None, description="Check duration in milliseconds")
    error: str | None = Field(default=None, description="Failure reason when unhealthy")


class ReadinessResponse(BaseModel):
    """Readiness probe body."""

    status: HealthStatus = Field(description="Overall readiness status")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Check timestamp")
    checks: list[CheckResult] = Field(default_factory=list)


class ErrorDetail(BaseModel):
    """One entry of an error response.

    Field errors carry the field in ``loc``. Checkout errors also use it for
    hints such as ``["go_back_to_step"]`` or ``["login_url"]``.
    """

    loc: list[str] | None = Field(default=None, description="Field path or hint name")
    msg: str = Field(description="Human-readable message")
    type: str = Field(description="Error type identifier")


class ErrorResponse(BaseModel):
    """Body of every non-2xx response produced by the error handler."""

    error: str = Field(description="Error category, e.g. validation_error or upstream_error")
    message: str = Field(description="Human-readable error description")
    details: list[ErrorDetail] | None = None
    request_id: str | None = Field(default=None, description="X-Request-ID of the failed request")
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def from_exception(
        cls,
        error_type: str,
        message: str,
        details: list[dict[str, Any]] | None = None,
        request_id: str | None = None,
    ) -> "ErrorResponse":
        """Build the response body from an error's parts.

        Detail dicts missing ``msg`` or ``type`` get a stringified dict and
        ``"error"`` respectively.
        """
        error_details = None
        if details:
            error_details = [
                ErrorDetail(
                    loc=[str(part) for part in d["loc"]] if d.get("loc") is not None else None,
                    msg=d.get("msg", str(d)),
                    type=d.get("type", "error"),
                )
                for d in details
            ]

        return cls(
            error=error_type,
            message=message,
            details=error_details,
            request_id=request_id,
        )
