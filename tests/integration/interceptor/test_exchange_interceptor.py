"""
Integration tests for the exchange interceptor.

Wraps a small Starlette echo application in the interceptor and drives it
with TestClient, checking both the log lines and the bytes that reach the
downstream application and the caller.
"""

import re
import uuid
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response, StreamingResponse
from starlette.routing import Route

from src.gatelog.config import RedactionSettings
from src.gatelog.core.interceptor import ExchangeInterceptor

LINE_ID = re.compile(r"^\[([^\]]+)\]\[user=([^\]]*)\] (->|<-)")

LARGE_PAYLOAD = b'{"token":"abc","data":"' + b"x" * 1_999_986 + b'"}'


def build_downstream(lines: List[str], seen: Dict[str, Any]) -> Starlette:
    """Echo application recording what it received."""

    async def echo(request: Request) -> Response:
        body = await request.body()
        seen["body"] = body
        seen["headers"] = dict(request.headers)
        seen["lines_at_dispatch"] = list(lines)
        return Response(
            body,
            media_type=request.headers.get("content-type") or "text/plain",
        )

    async def stream(request: Request) -> StreamingResponse:
        async def chunks():
            for part in (b'{"token":"', b"abc", b'","ok":true}'):
                yield part
        return StreamingResponse(chunks(), media_type="application/json")

    async def large(request: Request) -> Response:
        return Response(LARGE_PAYLOAD, media_type="application/json")

    async def binary(request: Request) -> Response:
        return Response(b"\x89PNG\r\n\x1a\n", media_type="image/png")

    async def boom(request: Request) -> Response:
        raise RuntimeError("downstream failure")

    async def head_ok(request: Request) -> Response:
        return PlainTextResponse("hello")

    return Starlette(routes=[
        Route("/echo", echo, methods=["GET", "POST", "PUT"]),
        Route("/login", echo, methods=["POST"]),
        Route("/stream", stream),
        Route("/large", large),
        Route("/binary", binary),
        Route("/boom", boom),
        Route("/head", head_ok, methods=["GET", "HEAD"]),
    ])


@pytest.fixture
def seen() -> Dict[str, Any]:
    return {}


@pytest.fixture
def make_client(log_lines: List[str], seen: Dict[str, Any]):
    def factory(settings: Optional[RedactionSettings] = None, **overrides: Any):
        settings = settings or RedactionSettings(**overrides)
        interceptor = ExchangeInterceptor(
            build_downstream(log_lines, seen),
            settings=settings,
            sink=log_lines.append,
        )
        return TestClient(interceptor), interceptor
    return factory


def line_ids(lines: List[str]) -> List[str]:
    return [LINE_ID.match(line).group(1) for line in lines]


class TestCorrelation:
    """Test correlation id assignment and propagation."""

    def test_generated_id_injected_and_logged(self, make_client, log_lines, seen) -> None:
        client, _ = make_client()
        response = client.get("/echo")

        assert response.status_code == 200
        correlation_id = seen["headers"]["x-correlation-id"]
        assert uuid.UUID(correlation_id)
        assert set(line_ids(log_lines)) == {correlation_id}
        assert any(" -> GET /echo" in line for line in log_lines)
        assert any(" <- 200 " in line for line in log_lines)

    def test_inbound_id_echoed(self, make_client, log_lines, seen) -> None:
        client, _ = make_client()
        client.get("/echo", headers={"X-Correlation-Id": "inbound-42"})

        assert seen["headers"]["x-correlation-id"] == "inbound-42"
        assert set(line_ids(log_lines)) == {"inbound-42"}

    def test_concurrent_exchanges_get_distinct_ids(self, make_client, log_lines) -> None:
        client, _ = make_client()
        client.get("/echo")
        client.get("/echo")
        assert len(set(line_ids(log_lines))) == 2


class TestRequestLogging:
    """Test request capture, masking and replay."""

    def test_json_body_masked_in_log_but_forwarded_intact(self, make_client, log_lines, seen) -> None:
        client, _ = make_client()
        payload = b'{"user":"bob","password":"hunter2"}'
        client.post("/echo", content=payload, headers={"Content-Type": "application/json"})

        assert seen["body"] == payload
        body_lines = [line for line in log_lines if " -> BODY: " in line]
        assert len(body_lines) == 1
        assert body_lines[0].endswith('BODY: {"user":"bob","password":"****"}')
        assert all("hunter2" not in line for line in log_lines)

    def test_form_body_masked(self, make_client, log_lines, seen) -> None:
        client, _ = make_client()
        client.post("/echo", data={"user": "bob", "pass": "hunter2"})

        assert seen["body"] == b"user=bob&pass=hunter2"
        assert any(line.endswith("-> BODY: user=bob&pass=****") for line in log_lines)

    def test_multipart_body_masked(self, make_client, log_lines, seen) -> None:
        client, _ = make_client()
        client.post(
            "/echo",
            data={"password": "hunter2", "note": "visible"},
            files={"doc": ("doc.txt", b"file text", "text/plain")},
        )

        assert b"hunter2" in seen["body"]
        body_line = next(line for line in log_lines if " -> BODY: " in line)
        assert "hunter2" not in body_line
        assert "****" in body_line
        assert "visible" in body_line

    def test_request_logged_before_dispatch(self, make_client, log_lines, seen) -> None:
        client, _ = make_client()
        client.post("/echo", content=b"hi", headers={"Content-Type": "text/plain"})

        dispatched = seen["lines_at_dispatch"]
        assert len(dispatched) == 2
        assert " -> POST /echo" in dispatched[0]
        assert dispatched[1].endswith("-> BODY: hi")

    def test_query_string_on_request_line(self, make_client, log_lines) -> None:
        client, _ = make_client()
        client.get("/echo?a=1&b=2")
        assert " -> GET /echo?a=1&b=2 " in log_lines[0] + " "

    def test_headers_masked_in_log_only(self, make_client, log_lines, seen) -> None:
        client, _ = make_client()
        client.get("/echo", headers={"Authorization": "Bearer secret-token", "Cookie": "sid=1"})

        assert seen["headers"]["authorization"] == "Bearer secret-token"
        assert "authorization=[****]" in log_lines[0]
        assert "cookie=[****]" in log_lines[0]
        assert "secret-token" not in log_lines[0]

    def test_header_summary_disabled(self, make_client, log_lines) -> None:
        client, _ = make_client(log_headers=False)
        client.get("/echo")
        assert all("Headers:" not in line for line in log_lines)

    def test_request_body_logging_disabled(self, make_client, log_lines, seen) -> None:
        client, _ = make_client(log_request_body=False)
        client.post("/echo", content=b"data", headers={"Content-Type": "text/plain"})

        assert seen["body"] == b"data"
        assert all(" -> BODY:" not in line for line in log_lines)
        assert any(" -> POST /echo" in line for line in log_lines)

    def test_non_loggable_request_body_not_captured(self, make_client, log_lines, seen) -> None:
        client, _ = make_client()
        client.post("/echo", content=b"\x00\x01binary", headers={"Content-Type": "application/octet-stream"})

        assert seen["body"] == b"\x00\x01binary"
        assert all(" -> BODY:" not in line for line in log_lines)

    def test_oversized_body_truncated_for_log_and_downstream(self, make_client, log_lines, seen) -> None:
        client, _ = make_client(max_body_size=10, log_response_body=False)
        client.post("/echo", content=b"0123456789ABCDEFGHIJKLMNO", headers={"Content-Type": "text/plain"})

        assert seen["body"] == b"0123456789"
        assert seen["headers"]["content-length"] == "10"
        assert any(line.endswith("-> BODY: 0123456789") for line in log_lines)


class TestResponseLogging:
    """Test response capture and the response line."""

    def test_response_body_masked_and_delivered(self, make_client, log_lines) -> None:
        client, _ = make_client()
        payload = b'{"token":"abc","x":"y"}'
        response = client.post("/echo", content=payload, headers={"Content-Type": "application/json"})

        assert response.content == payload
        response_line = log_lines[-1]
        assert re.search(r"<- 200 \d+ ms Headers: \{.*\} BODY: \{\"token\":\"\*\*\*\*\",\"x\":\"y\"\}$", response_line)

    def test_streamed_response_logged_once(self, make_client, log_lines) -> None:
        client, _ = make_client()
        response = client.get("/stream")

        assert response.content == b'{"token":"abc","ok":true}'
        response_lines = [line for line in log_lines if " <- " in line]
        assert len(response_lines) == 1
        assert response_lines[0].endswith('BODY: {"token":"****","ok":true}')

    def test_non_loggable_response_logged_without_body(self, make_client, log_lines) -> None:
        client, _ = make_client()
        response = client.get("/binary")

        assert response.content == b"\x89PNG\r\n\x1a\n"
        assert " <- 200 " in log_lines[-1]
        assert "BODY:" not in log_lines[-1]

    def test_response_body_logging_disabled(self, make_client, log_lines) -> None:
        client, _ = make_client(log_response_body=False)
        response = client.post("/echo", content=b"abc", headers={"Content-Type": "text/plain"})

        assert response.content == b"abc"
        assert "BODY:" not in log_lines[-1]

    def test_response_truncated_in_log_only(self, make_client, log_lines) -> None:
        client, _ = make_client(max_body_size=5, log_request_body=False)
        response = client.post("/echo", content=b"abcdefghij", headers={"Content-Type": "text/plain"})

        assert response.content == b"abcdefghij"
        assert response.headers["content-length"] == "10"
        assert log_lines[-1].endswith("BODY: abcde")

    def test_large_response_delivered_whole(self, make_client, log_lines) -> None:
        client, _ = make_client(max_body_size=1_048_576)
        response = client.get("/large")

        assert len(LARGE_PAYLOAD) == 2_000_011
        assert response.content == LARGE_PAYLOAD
        assert response.headers["content-length"] == str(len(LARGE_PAYLOAD))
        logged_body = log_lines[-1].split(" BODY: ", 1)[1]
        assert logged_body.startswith('{"token":"****","data":"xxx')
        # The masked token is one byte longer than the original
        assert len(logged_body) == 1_048_576 + 1

    def test_head_response_not_captured(self, make_client, log_lines) -> None:
        client, _ = make_client()
        response = client.head("/head")

        assert response.status_code == 200
        assert " <- 200 " in log_lines[-1]
        assert "BODY:" not in log_lines[-1]

    def test_downstream_failure_logs_error_response(self, make_client, log_lines) -> None:
        client, _ = make_client()
        with pytest.raises(RuntimeError):
            client.get("/boom")

        assert any(" -> GET /boom" in line for line in log_lines)
        assert " <- 500 " in log_lines[-1]
        assert log_lines[-1].endswith("BODY: Internal Server Error")


class TestIdentityInLogs:
    """Test the resolved username on log lines."""

    def test_identity_header(self, make_client, log_lines) -> None:
        client, _ = make_client()
        client.get("/echo", headers={"X-User": "carol"})
        assert {LINE_ID.match(line).group(2) for line in log_lines} == {"carol"}

    def test_basic_login(self, make_client, log_lines, basic_factory) -> None:
        client, _ = make_client()
        client.post("/login", data={"user": "bob"}, headers={"Authorization": basic_factory("bob", "pw")})
        assert {LINE_ID.match(line).group(2) for line in log_lines} == {"bob"}

    def test_unknown_user(self, make_client, log_lines) -> None:
        client, _ = make_client()
        client.get("/echo")
        assert {LINE_ID.match(line).group(2) for line in log_lines} == {"-"}


class TestDegradation:
    """Test that logging failures never fail the exchange."""

    def test_disabled_interceptor_is_transparent(self, make_client, log_lines, seen) -> None:
        client, _ = make_client(enabled=False)
        response = client.post("/echo", content=b'{"password":"x"}', headers={"Content-Type": "application/json"})

        assert response.content == b'{"password":"x"}'
        assert log_lines == []
        assert "x-correlation-id" not in seen["headers"]

    def test_masking_failure_logs_raw_body(self, make_client, log_lines, seen) -> None:
        client, interceptor = make_client()
        interceptor.engine.mask_body = Mock(side_effect=RuntimeError("mask failed"))
        response = client.post("/echo", content=b"plain text", headers={"Content-Type": "text/plain"})

        assert response.status_code == 200
        assert seen["body"] == b"plain text"
        assert any(line.endswith("-> BODY: plain text") for line in log_lines)

    def test_header_masking_failure_drops_summary(self, make_client, log_lines) -> None:
        client, interceptor = make_client()
        interceptor.engine.mask_headers = Mock(side_effect=ValueError("bad header"))
        response = client.get("/echo")

        assert response.status_code == 200
        assert all("Headers:" not in line for line in log_lines)

    def test_failing_sink_does_not_fail_exchange(self, make_client, seen) -> None:
        client, interceptor = make_client()
        interceptor.emitter.sink = Mock(side_effect=OSError("disk full"))
        response = client.post("/echo", content=b"abc", headers={"Content-Type": "text/plain"})

        assert response.status_code == 200
        assert response.content == b"abc"
        assert seen["body"] == b"abc"
