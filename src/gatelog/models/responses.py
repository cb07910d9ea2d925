"""
Response models for the service's own endpoints.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Standard error response model.
    """

    error: str = Field(description="Error code")
    message: str = Field(description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Additional error details"
    )


class LivenessResponse(BaseModel):
    """Liveness probe payload."""

    status: str = Field(description="Always 'alive'")
    timestamp: datetime = Field(description="Check time (UTC)")
    service: str = Field(description="Service name")
    version: str = Field(description="Service version")


class ReadinessResponse(BaseModel):
    """Readiness probe payload."""

    status: str = Field(description="'ready' or 'not_ready'")
    timestamp: datetime = Field(description="Check time (UTC)")
    checks: Dict[str, bool] = Field(default_factory=dict, description="Individual check results")
