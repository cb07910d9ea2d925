"""
Redaction engine for access log headers and bodies.

Masking is best-effort and structural: JSON and form bodies are matched
textually, multipart bodies are split on their boundary. Nothing is fully
parsed, and anything that is not recognised is returned as it came in.
Only the copy that goes to the log is masked; proxied bytes are untouched.
"""

import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from ..config import RedactionSettings

logger = structlog.get_logger(__name__)

MASK = "****"
MASK_BYTES = MASK.encode("ascii")

HeaderPairs = List[Tuple[str, str]]


def parse_content_type(content_type: Optional[str]) -> Tuple[str, Dict[str, str]]:
    """
    Split a Content-Type value into its lower-cased media type and parameters.

    Parameter names are lower-cased, values keep their case with quotes removed.
    """
    if not content_type:
        return "", {}

    media_type, *raw_params = content_type.split(";")
    params: Dict[str, str] = {}
    for raw in raw_params:
        key, sep, value = raw.partition("=")
        if not sep:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1]
        params[key.strip().lower()] = value
    return media_type.strip().lower(), params


def is_json_content_type(content_type: Optional[str]) -> bool:
    media_type, _ = parse_content_type(content_type)
    if media_type == "application/json":
        return True
    return media_type.startswith("application/") and media_type.endswith("+json")


def is_form_content_type(content_type: Optional[str]) -> bool:
    media_type, _ = parse_content_type(content_type)
    return media_type == "application/x-www-form-urlencoded"


def multipart_boundary(content_type: Optional[str]) -> Optional[str]:
    """Boundary of a multipart/form-data content type, or None."""
    media_type, params = parse_content_type(content_type)
    if media_type != "multipart/form-data":
        return None
    return params.get("boundary") or None


def is_loggable_content_type(content_type: Optional[str], allow_list: Iterable[str]) -> bool:
    """A missing content type is loggable; otherwise any allow-list substring must match."""
    if not content_type:
        return True
    lowered = content_type.lower()
    return any(item.lower() in lowered for item in allow_list)


def render_headers(headers: Sequence[Tuple[str, str]]) -> str:
    """Render header pairs as ``{Name=[v1, v2], Other=[v]}`` in first-seen order."""
    grouped: Dict[str, List[str]] = {}
    for name, value in headers:
        grouped.setdefault(name, []).append(value)
    rendered = ", ".join(f"{name}=[{', '.join(values)}]" for name, values in grouped.items())
    return "{" + rendered + "}"


class RedactionEngine:
    """
    Masks sensitive headers and body fields.

    Features:
    - Case-insensitive header masking, order and multi-values preserved
    - JSON string field masking
    - Form-urlencoded field masking
    - Multipart form-data part masking
    """

    _HEADER_BODY_SEPARATORS = (b"\r\n\r\n", b"\n\n")
    _DISPOSITION_NAME = re.compile(rb'(?:^|[;\s])name=(?:"([^"]*)"|([^;\s]+))', re.IGNORECASE)

    def __init__(self, settings: RedactionSettings) -> None:
        self.settings = settings
        self._masked_headers = frozenset(settings.masked_headers)
        self._masked_fields = frozenset(settings.masked_fields)
        self._json_patterns = [self._json_pattern(field) for field in settings.masked_fields]
        self._form_patterns = [self._form_pattern(field) for field in settings.masked_fields]

    @staticmethod
    def _json_pattern(field: str) -> "re.Pattern[bytes]":
        # "field" : "value", escaped quotes inside the value are skipped
        return re.compile(
            rb'("' + re.escape(field.encode("utf-8")) + rb'"\s*:\s*)"(?:[^"\\]|\\.)*"',
            re.IGNORECASE | re.DOTALL,
        )

    @staticmethod
    def _form_pattern(field: str) -> "re.Pattern[bytes]":
        return re.compile(
            rb"(^|&)(" + re.escape(field.encode("utf-8")) + rb")=([^&]*)",
            re.IGNORECASE,
        )

    def mask_headers(self, headers: Iterable[Tuple[str, str]]) -> HeaderPairs:
        """Replace every value of a masked header with the mask token."""
        return [
            (name, MASK if name.lower() in self._masked_headers else value)
            for name, value in headers
        ]

    def mask_body(self, content_type: Optional[str], raw: bytes) -> bytes:
        """Mask a body according to its declared content type."""
        if not raw or not self._masked_fields:
            return raw
        if is_json_content_type(content_type):
            return self.mask_json(raw)
        if is_form_content_type(content_type):
            return self.mask_form(raw)
        if parse_content_type(content_type)[0] == "multipart/form-data":
            return self.mask_multipart(content_type, raw)
        return raw

    def mask_json(self, raw: bytes) -> bytes:
        masked = raw
        for pattern in self._json_patterns:
            masked = pattern.sub(rb'\1"' + MASK_BYTES + rb'"', masked)
        return masked

    def mask_form(self, raw: bytes) -> bytes:
        masked = raw
        for pattern in self._form_patterns:
            masked = pattern.sub(rb"\1\2=" + MASK_BYTES, masked)
        return masked

    def mask_multipart(self, content_type: Optional[str], raw: bytes) -> bytes:
        """
        Mask named parts of a multipart/form-data body.

        Without a boundary the body is returned unchanged. The body is split
        on ``--boundary`` and re-joined on the same delimiter, so preamble,
        epilogue and closing delimiter come back byte-for-byte.
        """
        boundary = multipart_boundary(content_type)
        if boundary is None:
            logger.debug("Multipart body without boundary, not masking")
            return raw

        delimiter = b"--" + boundary.encode("latin-1")
        parts = raw.split(delimiter)
        if len(parts) < 2:
            return raw

        # parts[0] is the preamble
        masked = [parts[0]] + [self._mask_part(part) for part in parts[1:]]
        return delimiter.join(masked)

    def _mask_part(self, part: bytes) -> bytes:
        # Closing delimiter "--" and whatever epilogue follows it
        if part.startswith(b"--"):
            return part

        split = self._split_part(part)
        if split is None:
            return part
        header_end, body_start = split

        name = self._part_name(part[:header_end])
        if name is None or name.lower() not in self._masked_fields:
            return part

        content = part[body_start:]
        if content.endswith(b"\r\n"):
            line_break = b"\r\n"
        elif content.endswith(b"\n"):
            line_break = b"\n"
        else:
            line_break = b""
        return part[:body_start] + MASK_BYTES + line_break

    def _split_part(self, part: bytes) -> Optional[Tuple[int, int]]:
        """Offsets of the header block end and the content start, or None."""
        best: Optional[Tuple[int, int]] = None
        for separator in self._HEADER_BODY_SEPARATORS:
            index = part.find(separator)
            if index >= 0 and (best is None or index < best[0]):
                best = (index, index + len(separator))
        return best

    def _part_name(self, header_block: bytes) -> Optional[str]:
        for line in header_block.splitlines():
            if not line.lower().startswith(b"content-disposition:"):
                continue
            match = self._DISPOSITION_NAME.search(line.split(b":", 1)[1])
            if match:
                value = match.group(1) if match.group(1) is not None else match.group(2)
                return value.decode("utf-8", errors="replace")
        return None
