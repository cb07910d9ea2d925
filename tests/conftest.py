"""
Pytest configuration and shared fixtures.

Contains common test fixtures and setup for all test modules.
"""

import base64
import json
import os
from typing import Any, Dict, Generator, List
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from src.gatelog.main import app
from src.gatelog.config import RedactionSettings, reload_settings


@pytest.fixture
def test_config() -> Dict[str, Any]:
    """Test configuration data."""
    return {
        "server": {
            "host": "0.0.0.0",
            "port": 8080,
            "debug": True,
            "log_level": "DEBUG"
        },
        "redaction": {
            "enabled": True,
            "log_headers": True,
            "log_request_body": True,
            "log_response_body": True,
            "max_body_size": 1048576,
        },
        "upstream": {
            # Nothing listens on the discard port, connections are refused
            "base_url": "http://127.0.0.1:9",
            "timeout_seconds": 2,
            "route_paths": ["/login", "/otp", "/change_pass", "/rireq"],
        },
    }


@pytest.fixture
def test_client(test_config: Dict[str, Any]) -> Generator[TestClient, None, None]:
    """FastAPI test client with test configuration."""
    # Clear Prometheus registry to avoid duplicates
    from prometheus_client import REGISTRY
    REGISTRY._collector_to_names.clear()
    REGISTRY._names_to_collectors.clear()

    # Config file values land in os.environ, keep them scoped to the test
    with patch.dict(os.environ, {}), patch('src.gatelog.config.load_config_file') as mock_load:
        mock_load.return_value = test_config

        # Reload settings to pick up test config
        reload_settings()

        with TestClient(app) as client:
            yield client

    reload_settings()


@pytest.fixture
def redaction_settings() -> RedactionSettings:
    """Default redaction policy."""
    return RedactionSettings()


@pytest.fixture
def log_lines() -> List[str]:
    """Sink collecting rendered access log lines."""
    return []


def make_jwt(claims: Dict[str, Any]) -> str:
    """Unsigned-looking JWT with the given claims; signature is never checked."""
    def segment(data: Dict[str, Any]) -> str:
        raw = json.dumps(data).encode("utf-8")
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    return f"{segment({'alg': 'HS256', 'typ': 'JWT'})}.{segment(claims)}.c2lnbmF0dXJl"


def make_basic(user: str, password: str) -> str:
    token = base64.b64encode(f"{user}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


@pytest.fixture
def jwt_factory():
    return make_jwt


@pytest.fixture
def basic_factory():
    return make_basic
