"""
Pydantic data models package.

Contains the response models for the gateway's own endpoints.
"""

from .responses import ErrorResponse, LivenessResponse, ReadinessResponse

__all__ = [
    "ErrorResponse",
    "LivenessResponse",
    "ReadinessResponse",
]
