"""
GateLog application entry point.

Builds the gateway: the exchange interceptor wraps every route, the
service's own probes and metrics come first, and the catch-all proxy route
sends everything else upstream.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.gatelog.api import healthz_router, metrics_router, proxy_router
from src.gatelog.config import get_settings
from src.gatelog.core.exceptions import GateLogException
from src.gatelog.core.forwarder import UpstreamForwarder
from src.gatelog.core.interceptor import ExchangeInterceptor
from src.gatelog.core.metrics import MetricsCollector
from src.gatelog.models.responses import ErrorResponse

# Loggers whose output overlaps with the gateway's own
_QUIET_LOGGERS = ("uvicorn.access", "aiohttp.access", "watchfiles")


def configure_logging(log_level: str = "INFO") -> None:
    """Route stdlib and structlog output through one console renderer."""
    level = getattr(logging, log_level.upper())
    logging.basicConfig(format="%(message)s", level=level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def create_lifespan_handler() -> Any:
    """Lifespan that owns the metrics collector and the upstream session."""
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger = structlog.get_logger(__name__)

        # Read here, not at import, so reloaded settings take effect
        upstream = get_settings().upstream

        app.state.metrics = MetricsCollector()
        app.state.forwarder = UpstreamForwarder(upstream, app.state.metrics)
        await app.state.forwarder.start()
        logger.info("GateLog started", version=app.version, upstream=upstream.base_url)

        try:
            yield
        finally:
            await app.state.forwarder.stop()
            logger.info("GateLog stopped")

    return lifespan


def register_exception_handlers(app: FastAPI) -> None:
    """Render service errors as ``ErrorResponse`` bodies."""
    logger = structlog.get_logger(__name__)

    @app.exception_handler(GateLogException)
    async def gatelog_exception_handler(request: Request, exc: GateLogException) -> JSONResponse:
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "Request failed",
            error_code=exc.error_code,
            status_code=exc.status_code,
            path=request.url.path,
            method=request.method,
        )
        body = ErrorResponse(error=exc.error_code, message=str(exc), details=exc.details)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump())

    @app.exception_handler(Exception)
    async def unexpected_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error_type=type(exc).__name__,
            path=request.url.path,
            method=request.method,
            exc_info=True,
        )
        body = ErrorResponse(error="internal_server_error", message="An unexpected error occurred")
        return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))


def create_app() -> FastAPI:
    """
    Build the gateway application from the current settings.

    Used both by ``uvicorn src.gatelog.main:app`` and by tests.
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="GateLog",
        description="Reverse proxy access logging with redaction",
        version="0.1.0",
        lifespan=create_lifespan_handler(),
    )
    app.add_middleware(ExchangeInterceptor, settings=settings.redaction)
    register_exception_handlers(app)

    app.include_router(healthz_router, tags=["health"])
    app.include_router(metrics_router, tags=["metrics"])
    # Catch-all, must come last
    app.include_router(proxy_router, tags=["proxy"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.gatelog.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=settings.debug,
    )
