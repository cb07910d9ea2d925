"""
Health check endpoints.

- /healthz: Liveness probe (always 200 if service alive)
- /readyz: Readiness probe (200 only if the upstream forwarder is running)
"""

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Request, Response, status

from ..models.responses import LivenessResponse, ReadinessResponse

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/healthz",
    response_model=LivenessResponse,
    status_code=200,
    summary="Liveness probe",
    description="""
    Liveness probe endpoint.

    Always returns 200 OK if the service is running.
    """,
)
async def liveness_check() -> LivenessResponse:
    """
    Liveness probe - always returns 200 if service is alive.
    """
    return LivenessResponse(
        status="alive",
        timestamp=datetime.now(timezone.utc),
        service="gatelog",
        version="0.1.0",
    )


@router.get(
    "/readyz",
    response_model=ReadinessResponse,
    summary="Readiness probe",
    description="""
    Readiness probe endpoint.

    Returns 200 when the upstream forwarder session is open,
    503 Service Unavailable otherwise.
    """,
)
async def readiness_check(request: Request, response: Response) -> ReadinessResponse:
    forwarder = getattr(request.app.state, "forwarder", None)
    checks = {"forwarder_running": bool(forwarder is not None and forwarder.is_running)}

    if all(checks.values()):
        response.status_code = status.HTTP_200_OK
        return ReadinessResponse(status="ready", timestamp=datetime.now(timezone.utc), checks=checks)

    logger.warning("Readiness check failed", checks=checks)
    response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return ReadinessResponse(status="not_ready", timestamp=datetime.now(timezone.utc), checks=checks)
