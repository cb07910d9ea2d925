"""
Gateway metrics for Prometheus scraping.
"""

import structlog
from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="""
    Exchange, redaction and upstream counters for the gateway.

    **Series:**
    - gatelog_exchanges_total{method,status_code} - Intercepted exchanges
    - gatelog_exchange_duration_seconds - Exchange latency histogram
    - gatelog_bodies_truncated_total{direction} - Bodies cut at the capture limit
    - gatelog_redaction_failures_total{stage} - Degraded log fields
    - gatelog_upstream_requests_total{outcome} - Upstream calls
    """,
)
async def get_metrics(request: Request) -> Response:
    """Refresh uptime and render the default registry."""
    metrics_collector = getattr(request.app.state, 'metrics', None)

    if not metrics_collector:
        logger.warning("Metrics collector not initialized")
        return Response(
            content="# Metrics collector not initialized\n",
            media_type=CONTENT_TYPE_LATEST,
        )

    metrics_collector.update_uptime()
    metrics_data = generate_latest()

    logger.debug("Metrics scraped successfully", size_bytes=len(metrics_data))

    return Response(
        content=metrics_data,
        media_type=CONTENT_TYPE_LATEST,
    )
