"""
Correlation id and caller identity resolution.

Identity here is advisory: it tags access log lines for audit correlation
and is never used to accept or reject a request. Nothing is verified, and
every extraction step degrades to "no match" instead of raising.
"""

import base64
import binascii
import uuid
from typing import Any, Iterable, Mapping, Optional, Sequence

import structlog
from jose import jwt
from jose.exceptions import JOSEError
from starlette.datastructures import Headers

logger = structlog.get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-Id"

# Checked in order, first non-blank value wins
IDENTITY_HEADERS = ("X-Username", "X-User", "X-Auth-User", "Username", "User")

# Always tried after the configured claim keys
FALLBACK_CLAIM_KEYS = ("preferred_username", "name")


def _as_headers(headers: Any) -> Headers:
    if isinstance(headers, Headers):
        return headers
    if isinstance(headers, Mapping):
        return Headers(headers=headers)
    return Headers(raw=[(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in headers])


def get_or_create_correlation_id(headers: Any) -> str:
    """Return the inbound correlation id, or a fresh UUID when absent or blank."""
    value = _as_headers(headers).get(CORRELATION_HEADER)
    if value is None or not value.strip():
        return str(uuid.uuid4())
    return value


def resolve_username(path: str, headers: Any, claim_keys: Sequence[str]) -> str:
    """
    Best-effort username for an exchange.

    Precedence, first match wins:
    1. Basic credentials on a ``/login`` path
    2. Explicit identity headers
    3. Unverified bearer token claims
    Returns an empty string when nothing matches.
    """
    headers = _as_headers(headers)
    authorization = headers.get("authorization", "")

    if "/login" in path.lower():
        username = basic_username(authorization)
        if username:
            return username

    username = header_username(headers)
    if username:
        return username

    username = bearer_username(authorization, claim_keys)
    if username:
        return username

    return ""


def basic_username(authorization: str) -> Optional[str]:
    """User part of an HTTP Basic credential, or None."""
    scheme, _, credentials = authorization.strip().partition(" ")
    if scheme.lower() != "basic" or not credentials.strip():
        return None

    try:
        decoded = base64.b64decode(credentials.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        logger.debug("Undecodable basic credentials")
        return None

    user, sep, _ = decoded.partition(":")
    if not sep or not user:
        return None
    return user


def header_username(headers: Headers) -> Optional[str]:
    """First non-blank explicit identity header."""
    for name in IDENTITY_HEADERS:
        value = headers.get(name)
        if value and value.strip():
            return value.strip()
    return None


def bearer_username(authorization: str, claim_keys: Iterable[str]) -> Optional[str]:
    """Username claim from an unverified JWT bearer token, or None."""
    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or token.count(".") != 2:
        return None

    claims = unverified_claims(token)
    if not claims:
        return None

    for key in (*claim_keys, *FALLBACK_CLAIM_KEYS):
        value = _claim_text(claims.get(key))
        if value:
            return value
    return None


def unverified_claims(token: str) -> Optional[Mapping[str, Any]]:
    """Decode the claims segment without checking the signature."""
    try:
        claims = jwt.get_unverified_claims(token)
    except (JOSEError, ValueError, TypeError):
        logger.debug("Undecodable bearer token claims")
        return None
    if not isinstance(claims, Mapping):
        return None
    return claims


def _claim_text(value: Any) -> Optional[str]:
    # bool is an int subclass, keep it out
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)):
        return str(value)
    return None
