"""Liveness, readiness and auth probes for the checkout orchestrator."""

import time

from fastapi import APIRouter, Response, status

from src.api.deps import CurrentUser
from src.core.supabase import check_database_connection
from src.schemas.auth import AuthenticatedResponse
from src.schemas.common import CheckResult, HealthResponse, HealthStatus, ReadinessResponse

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness check",
    description="Always 200 while the process is serving requests. No dependencies are checked.",
)
async def health_check() -> HealthResponse:
    """Return basic health status."""
    return HealthResponse(status=HealthStatus.HEALTHY)


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    responses={
        200: {"description": "Checkout state storage reachable"},
        503: {"description": "Checkout state storage unreachable"},
    },
    summary="Readiness check",
    description="Checks the configured checkout state storage backend.",
)
async def readiness_check(response: Response) -> ReadinessResponse:
    """Check that checkout snapshots can be persisted.

    The memory and file backends are always ready; the supabase backend
    must answer a query on the storage table.

    Args:
        response: FastAPI response object for setting status code.

    Returns:
        ReadinessResponse: Storage check result, 503 when unhealthy.
    """
    start_time = time.perf_counter()
    result = await check_database_connection()
    latency_ms = (time.perf_counter() - start_time) * 1000

    check = CheckResult(
        name=f"storage:{result.get('backend', 'unknown')}",
        healthy=result["healthy"],
        latency_ms=round(latency_ms, 2),
        error=result.get("error"),
    )

    if not check.healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return ReadinessResponse(status=HealthStatus.UNHEALTHY, checks=[check])
    return ReadinessResponse(status=HealthStatus.HEALTHY, checks=[check])


@router.get(
    "/health/auth",
    response_model=AuthenticatedResponse,
    summary="Authenticated health check",
    description="Verifies that storefront access tokens are accepted.",
    responses={
        200: {"description": "Token accepted"},
        401: {"description": "Token missing, invalid or expired"},
    },
)
async def authenticated_check(user: CurrentUser) -> AuthenticatedResponse:
    """Echo the customer identified by the bearer token."""
    return AuthenticatedResponse(user_id=str(user.user_id), email=user.email, role=user.role)
