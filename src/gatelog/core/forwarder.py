"""
Upstream forwarder.

Sends each routed request to the configured upstream exactly once and
streams the upstream response back. No retries, no load balancing.
"""

import asyncio
from typing import AsyncIterator, Dict, List, Optional, Tuple

import aiohttp
import structlog
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import StreamingResponse

from ..config import UpstreamSettings
from .exceptions import ConfigurationError, ForwarderError
from .metrics import MetricsCollector

logger = structlog.get_logger(__name__)

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

CHUNK_SIZE = 65536


def _forwardable(headers: List[Tuple[str, str]], drop: frozenset) -> List[Tuple[str, str]]:
    return [(name, value) for name, value in headers if name.lower() not in drop]


class UpstreamForwarder:
    """
    Forwards requests to one upstream base URL with aiohttp.

    Handles:
    - Session lifecycle
    - Path routing
    - Header filtering
    - Streaming the upstream body back
    """

    def __init__(self, settings: UpstreamSettings, metrics: Optional[MetricsCollector] = None):
        if not settings.base_url.startswith(("http://", "https://")):
            raise ConfigurationError(
                "Upstream base URL must be http(s)",
                details={"base_url": settings.base_url},
            )
        self.settings = settings
        self.metrics = metrics
        self.session: Optional[aiohttp.ClientSession] = None

        logger.info("Upstream forwarder initialized", base_url=settings.base_url)

    @property
    def is_running(self) -> bool:
        return self.session is not None and not self.session.closed

    async def start(self) -> None:
        """Open the client session."""
        if self.is_running:
            return

        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.settings.timeout_seconds),
            auto_decompress=False,
        )
        logger.info("Upstream forwarder started")

    async def stop(self) -> None:
        """Close the client session."""
        if self.session:
            await self.session.close()
            self.session = None

        logger.info("Upstream forwarder stopped")

    def matches(self, path: str) -> bool:
        """True when ``path`` is routed upstream."""
        if not self.settings.route_paths:
            return True
        for prefix in self.settings.route_paths:
            prefix = prefix.rstrip("/")
            if not prefix or path == prefix or path.startswith(prefix + "/"):
                return True
        return False

    def upstream_url(self, request: Request) -> str:
        url = self.settings.base_url.rstrip("/") + request.url.path
        if request.url.query:
            url += "?" + request.url.query
        return url

    async def forward(self, request: Request) -> StreamingResponse:
        """
        Forward one request and stream the response back.

        Raises:
            ForwarderError: Upstream unreachable or timed out
        """
        if not self.is_running:
            raise ForwarderError("Forwarder not started")

        url = self.upstream_url(request)
        headers = _forwardable(request.headers.items(), HOP_BY_HOP_HEADERS | {"host", "content-length"})
        body = await request.body()

        logger.debug("Forwarding request", method=request.method, url=url, body_bytes=len(body))

        try:
            upstream = await self.session.request(
                request.method,
                url,
                headers=headers,
                data=body or None,
                allow_redirects=False,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(
                "Upstream request failed",
                method=request.method,
                url=url,
                error=str(e),
                error_type=type(e).__name__,
            )
            if self.metrics:
                self.metrics.record_upstream("error")
            raise ForwarderError(
                "Upstream request failed",
                details={"error_type": type(e).__name__},
            ) from e

        if self.metrics:
            self.metrics.record_upstream("ok")

        response_headers: Dict[str, str] = {}
        for name, value in _forwardable(list(upstream.headers.items()), HOP_BY_HOP_HEADERS):
            # Starlette takes a plain mapping, keep set-cookie values apart
            if name.lower() in response_headers and name.lower() != "set-cookie":
                response_headers[name.lower()] += ", " + value
            else:
                response_headers.setdefault(name.lower(), value)

        response = StreamingResponse(
            self._iter_body(upstream),
            status_code=upstream.status,
            headers=response_headers,
            background=BackgroundTask(upstream.release),
        )
        # Multiple Set-Cookie headers must stay separate
        cookies = upstream.headers.getall("set-cookie", [])
        if len(cookies) > 1:
            response.raw_headers = [
                (k, v) for k, v in response.raw_headers if k != b"set-cookie"
            ] + [(b"set-cookie", cookie.encode("latin-1")) for cookie in cookies]
        return response

    @staticmethod
    async def _iter_body(upstream: aiohttp.ClientResponse) -> AsyncIterator[bytes]:
        async for chunk in upstream.content.iter_chunked(CHUNK_SIZE):
            yield chunk
