"""
Exchange interceptor: access logging and redaction around a proxied call.

Implemented as plain ASGI middleware so it composes over any Starlette or
FastAPI application. For each HTTP exchange it:
1. Assigns or propagates the correlation id and resolves the username
2. Captures, masks and logs the request body, then replays it downstream
3. Captures, masks and logs the response body on its way to the caller

Logging is instrumentation only. Failures in masking or emitting degrade the
affected log field and are never raised into the exchange.
"""

from typing import Any, Awaitable, Callable, List, MutableMapping, Optional, Tuple, TypeVar

import structlog
from starlette.datastructures import Headers

from ..config import RedactionSettings, get_settings
from .access_log import AccessLogEmitter, Sink
from .capture import BodyCaptureBuffer, CapturedBody, capture_request_body
from .context import ExchangeContext, ExchangeState
from .identity import CORRELATION_HEADER, get_or_create_correlation_id, resolve_username
from .metrics import MetricsCollector
from .redaction import RedactionEngine, is_loggable_content_type, render_headers

logger = structlog.get_logger(__name__)

Scope = MutableMapping[str, Any]
Message = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[Message]]
Send = Callable[[Message], Awaitable[None]]
ASGIApp = Callable[[Scope, Receive, Send], Awaitable[None]]
RawHeaders = List[Tuple[bytes, bytes]]

T = TypeVar("T")

_FRAMING_HEADERS = (b"content-length", b"transfer-encoding")


def reframe_headers(raw_headers: RawHeaders, length: int) -> RawHeaders:
    """
    Point framing headers at a body of ``length`` bytes.

    Headers without any framing are left alone so the server keeps
    choosing the framing itself.
    """
    if not any(name.lower() in _FRAMING_HEADERS for name, _ in raw_headers):
        return list(raw_headers)
    kept = [(name, value) for name, value in raw_headers if name.lower() not in _FRAMING_HEADERS]
    kept.append((b"content-length", str(length).encode("latin-1")))
    return kept


class ExchangeInterceptor:
    """
    ASGI middleware that access-logs every HTTP exchange with redaction.

    Args:
        app: Next ASGI application (the forwarding stage)
        settings: Redaction policy; defaults to the process settings
        sink: Callable receiving each rendered log line
    """

    def __init__(
        self,
        app: ASGIApp,
        settings: Optional[RedactionSettings] = None,
        sink: Optional[Sink] = None,
    ) -> None:
        self.app = app
        self.settings = settings if settings is not None else get_settings().redaction
        self.engine = RedactionEngine(self.settings)
        self.emitter = AccessLogEmitter(sink)

        if not self.settings.enabled:
            logger.info("Access logging disabled, exchanges pass through", state=ExchangeState.DISABLED.value)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.settings.enabled:
            await self.app(scope, receive, send)
            return

        metrics = self._metrics(scope)
        context = self._enter(scope, metrics)
        scope = self._with_correlation_header(scope, context.correlation_id)

        scope, receive = await self._capture_request(context, scope, receive, metrics)

        self._advance(context, ExchangeState.FORWARDED)
        await self.app(scope, receive, self._response_sender(context, send, metrics))
        self._advance(context, ExchangeState.COMPLETED)

    # ENTERED

    def _enter(self, scope: Scope, metrics: Optional[MetricsCollector]) -> ExchangeContext:
        headers = Headers(scope=scope)
        path = scope.get("path", "")
        username = self._safely(
            "identity",
            metrics,
            lambda: resolve_username(path, headers, self.settings.username_claim_keys),
            "",
        )
        context = ExchangeContext(
            correlation_id=get_or_create_correlation_id(headers),
            username=username,
            method=scope.get("method", "UNKNOWN"),
            path=path,
            query=scope.get("query_string", b"").decode("latin-1"),
        )
        logger.debug(
            "Exchange entered",
            correlation_id=context.correlation_id,
            method=context.method,
            path=context.path,
        )
        return context

    @staticmethod
    def _with_correlation_header(scope: Scope, correlation_id: str) -> Scope:
        name = CORRELATION_HEADER.lower().encode("latin-1")
        raw_headers = [(k, v) for k, v in scope.get("headers", []) if k.lower() != name]
        raw_headers.append((name, correlation_id.encode("latin-1")))
        return {**scope, "headers": raw_headers}

    # REQUEST_CAPTURED

    async def _capture_request(
        self,
        context: ExchangeContext,
        scope: Scope,
        receive: Receive,
        metrics: Optional[MetricsCollector],
    ) -> Tuple[Scope, Receive]:
        headers = Headers(scope=scope)
        content_type = headers.get("content-type")
        header_summary = self._header_summary(headers.items(), metrics)

        if not (self.settings.log_request_body
                and is_loggable_content_type(content_type, self.settings.content_type_includes)):
            self._safely("emit", metrics, lambda: self.emitter.log_request(context, header_summary), None)
            return scope, receive

        captured, replay = await capture_request_body(receive, self.settings.max_body_size, content_type)
        if captured.truncated and metrics is not None:
            metrics.record_truncation("request")

        scope = {**scope, "headers": reframe_headers(scope.get("headers", []), len(captured))}
        masked = self._masked_body(captured, metrics)
        self._safely(
            "emit",
            metrics,
            lambda: self.emitter.log_request(context, header_summary, masked),
            None,
        )
        self._advance(context, ExchangeState.REQUEST_CAPTURED)
        return scope, replay

    # RESPONSE_CAPTURED

    def _response_sender(
        self,
        context: ExchangeContext,
        send: Send,
        metrics: Optional[MetricsCollector],
    ) -> Send:
        # HEAD responses declare a length they never send
        capture_allowed = self.settings.log_response_body and context.method != "HEAD"
        start_message: Optional[Message] = None
        buffer: Optional[BodyCaptureBuffer] = None

        async def send_wrapper(message: Message) -> None:
            nonlocal start_message, buffer

            if message["type"] == "http.response.start":
                content_type = Headers(raw=message.get("headers", [])).get("content-type")
                if capture_allowed and is_loggable_content_type(
                    content_type, self.settings.content_type_includes
                ):
                    start_message = message
                    buffer = BodyCaptureBuffer(self.settings.max_body_size, content_type)
                else:
                    self._log_response(context, message, None, metrics)
                await send(message)
                return

            if message["type"] == "http.response.body" and buffer is not None:
                # The caller gets every chunk as-is, only the log copy is bounded
                buffer.feed(message.get("body", b""))
                if not message.get("more_body", False):
                    captured = buffer.finish()
                    buffer = None
                    if captured.truncated and metrics is not None:
                        metrics.record_truncation("response")
                    self._log_response(context, start_message, captured, metrics)

            await send(message)

        return send_wrapper

    def _log_response(
        self,
        context: ExchangeContext,
        start: Message,
        captured: Optional[CapturedBody],
        metrics: Optional[MetricsCollector],
    ) -> None:
        status_code = start.get("status", 0)
        latency_ms = context.elapsed_ms()
        header_summary = self._header_summary(Headers(raw=start.get("headers", [])).items(), metrics)
        masked = self._masked_body(captured, metrics) if captured is not None else None

        self._safely(
            "emit",
            metrics,
            lambda: self.emitter.log_response(context, status_code, latency_ms, header_summary, masked),
            None,
        )
        if captured is not None:
            self._advance(context, ExchangeState.RESPONSE_CAPTURED)
        if metrics is not None:
            metrics.record_exchange(context.method, status_code, latency_ms / 1000)

    # Helpers

    def _header_summary(
        self,
        headers: List[Tuple[str, str]],
        metrics: Optional[MetricsCollector],
    ) -> Optional[str]:
        if not self.settings.log_headers:
            return None
        return self._safely(
            "headers",
            metrics,
            lambda: render_headers(self.engine.mask_headers(headers)),
            None,
        )

    def _masked_body(self, captured: CapturedBody, metrics: Optional[MetricsCollector]) -> bytes:
        return self._safely(
            "body",
            metrics,
            lambda: self.engine.mask_body(captured.content_type, captured.data),
            captured.data,
        )

    @staticmethod
    def _safely(
        stage: str,
        metrics: Optional[MetricsCollector],
        func: Callable[[], T],
        default: T,
    ) -> T:
        try:
            return func()
        except Exception as e:
            logger.warning(
                "Access logging step failed, continuing",
                stage=stage,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            if metrics is not None:
                metrics.record_redaction_failure(stage)
            return default

    @staticmethod
    def _advance(context: ExchangeContext, state: ExchangeState) -> None:
        context.state = state
        logger.debug("Exchange state", correlation_id=context.correlation_id, state=state.value)

    @staticmethod
    def _metrics(scope: Scope) -> Optional[MetricsCollector]:
        app = scope.get("app")
        state = getattr(app, "state", None)
        return getattr(state, "metrics", None)
