"""
Configuration management.

Uses Pydantic Settings for environment variable handling and validation,
with an optional YAML file supplying defaults.
"""

import json
import os
from functools import lru_cache
from typing import Any, Dict, Optional, Tuple

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        # Look for config.yaml in common locations
        possible_paths = [
            "config.yaml",  # Current directory
            "../../config.yaml",  # Project root from src/gatelog
        ]

        for path in possible_paths:
            if os.path.exists(path):
                config_path = path
                break
        else:
            return {}

    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
            return config_data
    return {}


class RedactionSettings(BaseSettings):
    """
    Access logging and redaction policy.

    Loaded once at startup and never mutated afterwards; every component
    receives the same instance.
    """

    enabled: bool = Field(default=True, description="Master on/off switch for the interceptor")
    log_headers: bool = Field(default=True, description="Include header summaries in log lines")
    log_request_body: bool = Field(default=True, description="Include request body summaries")
    log_response_body: bool = Field(default=True, description="Include response body summaries")
    max_body_size: int = Field(
        default=1048576,
        ge=0,
        description="Maximum bytes buffered per body (1MB)",
    )
    masked_headers: Tuple[str, ...] = Field(
        default=("authorization", "cookie", "set-cookie"),
        description="Header names whose values are masked in logs",
    )
    masked_fields: Tuple[str, ...] = Field(
        default=("pass", "old_pass", "new_pass", "otp", "password", "token"),
        description="Field names masked in JSON, form and multipart bodies",
    )
    content_type_includes: Tuple[str, ...] = Field(
        default=(
            "application/json",
            "text/plain",
            "application/x-www-form-urlencoded",
            "multipart/form-data",
        ),
        description="Content-Type substrings that allow body logging",
    )
    username_claim_keys: Tuple[str, ...] = Field(
        default=("username", "sub", "user_name"),
        description="Ordered JWT claim names to read the username from",
    )

    @field_validator("masked_headers", "masked_fields", "content_type_includes")
    def lowercase_names(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        """Matching is case-insensitive, so store everything lower-cased."""
        return tuple(item.strip().lower() for item in v if item.strip())

    model_config = SettingsConfigDict(env_prefix="GATELOG_REDACTION_", frozen=True)


class UpstreamSettings(BaseSettings):
    """Upstream service the gateway forwards to."""

    base_url: str = Field(default="http://localhost:9000", description="Upstream base URL")
    timeout_seconds: int = Field(default=30, description="Upstream request timeout")
    route_paths: Tuple[str, ...] = Field(
        default=(),
        description="Path prefixes forwarded upstream (empty forwards everything)",
    )

    model_config = SettingsConfigDict(env_prefix="GATELOG_UPSTREAM_", frozen=True)


class Settings(BaseSettings):
    """Main application settings."""

    # Server configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")

    # Component settings
    redaction: RedactionSettings = Field(default_factory=RedactionSettings)
    upstream: UpstreamSettings = Field(default_factory=UpstreamSettings)

    model_config = SettingsConfigDict(env_prefix="GATELOG_", case_sensitive=False)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance with config file and env support."""

    # Load config file data
    config_data = load_config_file()

    # Config file provides defaults, env vars override
    if config_data:
        _set_env_from_config(config_data)

    return Settings()


_ENV_MAPPINGS = {
    ("server", "host"): "GATELOG_HOST",
    ("server", "port"): "GATELOG_PORT",
    ("server", "debug"): "GATELOG_DEBUG",
    ("server", "log_level"): "GATELOG_LOG_LEVEL",
    ("redaction", "enabled"): "GATELOG_REDACTION_ENABLED",
    ("redaction", "log_headers"): "GATELOG_REDACTION_LOG_HEADERS",
    ("redaction", "log_request_body"): "GATELOG_REDACTION_LOG_REQUEST_BODY",
    ("redaction", "log_response_body"): "GATELOG_REDACTION_LOG_RESPONSE_BODY",
    ("redaction", "max_body_size"): "GATELOG_REDACTION_MAX_BODY_SIZE",
    ("redaction", "masked_headers"): "GATELOG_REDACTION_MASKED_HEADERS",
    ("redaction", "masked_fields"): "GATELOG_REDACTION_MASKED_FIELDS",
    ("redaction", "content_type_includes"): "GATELOG_REDACTION_CONTENT_TYPE_INCLUDES",
    ("redaction", "username_claim_keys"): "GATELOG_REDACTION_USERNAME_CLAIM_KEYS",
    ("upstream", "base_url"): "GATELOG_UPSTREAM_BASE_URL",
    ("upstream", "timeout_seconds"): "GATELOG_UPSTREAM_TIMEOUT_SECONDS",
    ("upstream", "route_paths"): "GATELOG_UPSTREAM_ROUTE_PATHS",
}


def _set_env_from_config(config_data: Dict[str, Any]) -> None:
    """Set environment variables from config file if not already set."""
    for (section, key), env_var in _ENV_MAPPINGS.items():
        if env_var in os.environ:
            continue
        value = (config_data.get(section) or {}).get(key)
        if value is None:
            continue
        if isinstance(value, (list, tuple, dict)):
            # pydantic-settings decodes complex values from JSON
            os.environ[env_var] = json.dumps(list(value) if isinstance(value, tuple) else value)
        elif isinstance(value, bool):
            os.environ[env_var] = "true" if value else "false"
        else:
            os.environ[env_var] = str(value)


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
