"""
Gateway errors.

Each carries the HTTP status and error code the exception handlers render.
Access logging never raises these; only routing and forwarding do.
"""

from typing import Any, Dict, Optional


class GateLogException(Exception):
    """Base exception for GateLog service."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ForwarderError(GateLogException):
    """Raised when the upstream call cannot be completed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=502,
            error_code="upstream_error",
            details=details,
        )


class NoRouteError(GateLogException):
    """Raised when a path is not routed to the upstream."""

    def __init__(self, path: str) -> None:
        super().__init__(
            message="No route found",
            status_code=404,
            error_code="no_route",
            details={"path": path},
        )


class ConfigurationError(GateLogException):
    """Raised when the service is started with unusable settings."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="configuration_error",
            details=details,
        )
