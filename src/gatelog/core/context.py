"""
Per-exchange state carried through the interceptor.
"""

import time
from dataclasses import dataclass, field
from enum import Enum


class ExchangeState(str, Enum):
    """Lifecycle of one request/response exchange."""

    DISABLED = "disabled"
    ENTERED = "entered"
    REQUEST_CAPTURED = "request_captured"
    FORWARDED = "forwarded"
    RESPONSE_CAPTURED = "response_captured"
    COMPLETED = "completed"


@dataclass
class ExchangeContext:
    """
    One in-flight request/response pair.

    The correlation id and username are fixed when the context is built;
    only ``state`` moves as the exchange progresses.
    """

    correlation_id: str
    username: str
    method: str
    path: str
    query: str = ""
    start_time: float = field(default_factory=time.monotonic)
    state: ExchangeState = ExchangeState.ENTERED

    def __post_init__(self) -> None:
        self._frozen = True

    def __setattr__(self, name: str, value: object) -> None:
        if getattr(self, "_frozen", False) and name not in ("state",):
            raise AttributeError(f"ExchangeContext.{name} is immutable")
        super().__setattr__(name, value)

    @property
    def display_username(self) -> str:
        """Username as rendered in log lines."""
        return self.username or "-"

    @property
    def target(self) -> str:
        """Path plus query string, as it appears on the request line."""
        return f"{self.path}?{self.query}" if self.query else self.path

    def elapsed_ms(self) -> int:
        """Whole milliseconds since the exchange entered the interceptor."""
        return int((time.monotonic() - self.start_time) * 1000)
