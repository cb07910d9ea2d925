"""
GateLog - Access logging and redaction for a reverse proxy.

A FastAPI-based gateway that forwards requests to an upstream service and
writes one-line audit records for every exchange, with sensitive headers
and body fields masked.
"""

__version__ = "0.1.0"

from .main import app

__all__ = ["app"]
