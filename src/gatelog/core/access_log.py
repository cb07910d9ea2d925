"""
Access log line formatting and emission.

Every record is rendered as exactly one physical line tagged with the
exchange's correlation id and username, then handed to a sink. Where the
sink writes is not this module's concern.
"""

import re
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from .context import ExchangeContext

Sink = Callable[[str], object]

# C0 and C1 controls plus U+2028/U+2029, all of which can break a line
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f\u2028\u2029]")
_SPACE_RUNS = re.compile(r" +")


def normalize_to_single_line(text: Optional[str]) -> str:
    """Replace control characters with spaces, collapse runs of spaces and trim."""
    if not text:
        return ""
    normalized = _CONTROL_CHARS.sub(" ", text)
    normalized = _SPACE_RUNS.sub(" ", normalized)
    return normalized.strip()


def decode_body(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class LogRecord:
    """One access log line before rendering."""

    correlation_id: str
    username: str
    direction: str
    summary: str
    headers: Optional[str] = None
    body: Optional[str] = None

    def render(self) -> str:
        line = f"[{self.correlation_id}][user={self.username}] {self.direction}"
        if self.summary:
            line += f" {self.summary}"
        if self.headers is not None:
            line += f" Headers: {normalize_to_single_line(self.headers)}"
        if self.body is not None:
            line += f" BODY: {normalize_to_single_line(self.body)}"
        return normalize_to_single_line(line)


class AccessLogEmitter:
    """Formats request and response records and writes them to a sink."""

    REQUEST = "->"
    RESPONSE = "<-"

    def __init__(self, sink: Optional[Sink] = None) -> None:
        if sink is None:
            sink = structlog.get_logger("gatelog.access").info
        self.sink = sink

    def emit(self, record: LogRecord) -> str:
        line = record.render()
        self.sink(line)
        return line

    def log_request(
        self,
        context: ExchangeContext,
        headers: Optional[str] = None,
        body: Optional[bytes] = None,
    ) -> None:
        """
        Log the request line, then the request body on its own line.

        Both lines go out before the request is forwarded.
        """
        self.emit(
            LogRecord(
                correlation_id=context.correlation_id,
                username=context.display_username,
                direction=self.REQUEST,
                summary=f"{context.method} {context.target}",
                headers=headers,
            )
        )
        if body is not None:
            self.emit(
                LogRecord(
                    correlation_id=context.correlation_id,
                    username=context.display_username,
                    direction=self.REQUEST,
                    summary="",
                    body=decode_body(body),
                )
            )

    def log_response(
        self,
        context: ExchangeContext,
        status_code: int,
        latency_ms: int,
        headers: Optional[str] = None,
        body: Optional[bytes] = None,
    ) -> None:
        self.emit(
            LogRecord(
                correlation_id=context.correlation_id,
                username=context.display_username,
                direction=self.RESPONSE,
                summary=f"{status_code} {latency_ms} ms",
                headers=headers,
                body=decode_body(body) if body is not None else None,
            )
        )
