"""
Catch-all proxy route.

Every path not served by the gateway itself is handed to the upstream
forwarder. Must be registered after all other routers.
"""

import structlog
from fastapi import APIRouter, Request
from starlette.responses import Response

from ..core.exceptions import ForwarderError, GateLogException, NoRouteError
from ..models.responses import ErrorResponse

logger = structlog.get_logger(__name__)

router = APIRouter()

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


@router.api_route(
    "/{path:path}",
    methods=PROXY_METHODS,
    include_in_schema=False,
    responses={
        404: {"model": ErrorResponse, "description": "Path not routed"},
        500: {"model": ErrorResponse, "description": "Unexpected proxy failure"},
        502: {"model": ErrorResponse, "description": "Upstream unreachable"},
    },
)
async def proxy(path: str, request: Request) -> Response:
    """Forward the request upstream when its path is routed."""
    forwarder = getattr(request.app.state, "forwarder", None)
    if forwarder is None:
        raise ForwarderError("Forwarder not initialized")

    if not forwarder.matches(request.url.path):
        logger.info("No route for path", path=request.url.path, method=request.method)
        raise NoRouteError(request.url.path)

    try:
        return await forwarder.forward(request)
    except GateLogException:
        raise
    except Exception as e:
        # Service errors are rendered inside the interceptor, bare exceptions are not
        logger.error(
            "Unexpected proxy failure",
            path=request.url.path,
            method=request.method,
            error_type=type(e).__name__,
            exc_info=True,
        )
        raise GateLogException(
            "An unexpected error occurred",
            status_code=500,
            error_code="internal_server_error",
        ) from e
