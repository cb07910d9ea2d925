"""
Bounded body capture and replay.

A request body is drained into memory once, truncated to ``max_bytes``, and
then replayed downstream from the retained bytes. Response chunks pass
through unchanged; only their log copy goes through ``BodyCaptureBuffer``.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, MutableMapping, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)

Message = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[Message]]


@dataclass(frozen=True)
class CapturedBody:
    """Retained bytes of a request or response body."""

    data: bytes
    content_type: Optional[str]
    original_length: int

    @property
    def truncated(self) -> bool:
        return self.original_length > len(self.data)

    def __len__(self) -> int:
        return len(self.data)

    def replay_receive(self, receive: Receive) -> Receive:
        """
        ASGI receive callable yielding the retained bytes as one message.

        Later calls are delegated to ``receive`` so disconnects still reach
        the downstream application.
        """
        sent = False

        async def replay() -> Message:
            nonlocal sent
            if not sent:
                sent = True
                return {"type": "http.request", "body": self.data, "more_body": False}
            return await receive()

        return replay


class BodyCaptureBuffer:
    """
    Accumulates body chunks up to a byte limit.

    Bytes past the limit are counted and discarded; truncation is silent.
    """

    def __init__(self, max_bytes: int, content_type: Optional[str] = None) -> None:
        self.max_bytes = max_bytes
        self.content_type = content_type
        self._chunks: List[bytes] = []
        self._retained = 0
        self._seen = 0

    def feed(self, chunk: bytes) -> None:
        """Add a chunk, keeping at most ``max_bytes`` in total."""
        if not chunk:
            return
        self._seen += len(chunk)
        room = self.max_bytes - self._retained
        if room <= 0:
            return
        kept = chunk[:room]
        self._chunks.append(kept)
        self._retained += len(kept)

    def finish(self) -> CapturedBody:
        captured = CapturedBody(
            data=b"".join(self._chunks),
            content_type=self.content_type,
            original_length=self._seen,
        )
        if captured.truncated:
            logger.debug(
                "Body truncated",
                retained_bytes=len(captured),
                original_bytes=captured.original_length,
            )
        return captured


async def capture_request_body(
    receive: Receive,
    max_bytes: int,
    content_type: Optional[str] = None,
) -> Tuple[CapturedBody, Receive]:
    """
    Drain an ASGI request body and return it with a replaying receive.

    A disconnect received mid-body ends the capture; the replay hands the
    disconnect on after the retained bytes.
    """
    buffer = BodyCaptureBuffer(max_bytes, content_type)
    pending: List[Message] = []

    while True:
        message = await receive()
        if message["type"] != "http.request":
            pending.append(message)
            break
        buffer.feed(message.get("body", b""))
        if not message.get("more_body", False):
            break

    captured = buffer.finish()

    async def upstream_receive() -> Message:
        if pending:
            return pending.pop(0)
        return await receive()

    return captured, captured.replay_receive(upstream_receive)
