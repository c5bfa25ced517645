"""Request tracing: spans, a collecting tracer and a WSGI ingress middleware."""

from __future__ import annotations

import os
import random
import threading
import time
from dataclasses import dataclass, field
from typing import NamedTuple

TRACE_HEADER = "uber-trace-id"
SPAN_ENVIRON_KEY = "flywheel.span"
ERROR_DETAIL = "error.detail"


class _SpanContext(NamedTuple):
    trace_id: int
    span_id: int
    sampled: bool


def _new_id() -> int:
    return random.getrandbits(63) or 1


@dataclass(eq=False)
class Span:
    tracer: "Tracer"
    operation_name: str
    trace_id: int
    span_id: int
    parent_id: int = 0
    sampled: bool = True
    start_time: float = field(default_factory=time.time)
    finish_time: float | None = None
    tags: dict = field(default_factory=dict)

    def set_tag(self, key: str, value) -> "Span":
        self.tags[key] = value
        return self

    def finish(self) -> None:
        """Record the end of the span once."""
        if self.finish_time is None:
            self.finish_time = time.time()
            with self.tracer._lock:
                self.tracer._finished.append(self)


class Tracer:
    """Creates spans and keeps those that have finished."""

    def __init__(self) -> None:
        self._finished: list[Span] = []
        self._lock = threading.Lock()

    def start_span(self, operation_name: str, child_of=None) -> Span:
        if child_of is None:
            return Span(self, operation_name, _new_id(), _new_id())
        return Span(self, operation_name, child_of.trace_id, _new_id(),
                    parent_id=child_of.span_id, sampled=child_of.sampled)

    def inject(self, span: Span, headers: dict) -> None:
        headers[TRACE_HEADER] = f"{span.trace_id:x}:{span.span_id:x}:{span.parent_id:x}:{int(span.sampled)}"

    def extract(self, headers) -> _SpanContext | None:
        """Read a span context from ``headers``; None if absent or malformed."""
        value = next((v for k, v in headers.items() if k.lower() == TRACE_HEADER), "")
        try:
            trace_id, span_id, _parent, flags = (int(part, 16) for part in value.split(":"))
        except ValueError:
            return None
        if not (trace_id and span_id):
            return None
        return _SpanContext(trace_id, span_id, bool(flags & 1))

    def finished_spans(self) -> list[Span]:
        with self._lock:
            return list(self._finished)

    def reset(self) -> None:
        with self._lock:
            self._finished.clear()


def tracer_settings(environ=None) -> dict:
    """The tracer configuration: sample every trace and log every span."""
    environ = os.environ if environ is None else environ
    return {
        "service_name": "flywheel",
        "sampler": {"type": "const", "param": 1},
        "reporter": {"log_spans": True, "collector_endpoint": environ.get("JAEGER_ENDPOINT", "")},
    }


class TracingMiddleware:
    """Wraps a WSGI application in a server span per request."""

    def __init__(self, app, tracer: Tracer, route_of=None):
        self.app = app
        self.tracer = tracer
        self.route_of = route_of or (lambda environ: environ.get("PATH_INFO", ""))

    def __call__(self, environ, start_response):
        method = environ.get("REQUEST_METHOD", "GET")
        headers = {k[5:].replace("_", "-").lower(): v for k, v in environ.items() if k.startswith("HTTP_")}
        span = self.tracer.start_span(f"{method} {self.route_of(environ)}",
                                      child_of=self.tracer.extract(headers))
        span.set_tag("span.kind", "server").set_tag("http.method", method)
        environ[SPAN_ENVIRON_KEY] = span
        status = [500]

        def traced_start_response(status_line, response_headers, exc_info=None):
            status[0] = int(status_line.split()[0])
            return start_response(status_line, response_headers, *([exc_info] if exc_info else []))

        def respond():
            try:
                result = self.app(environ, traced_start_response)
                try:
                    yield from result
                finally:
                    if hasattr(result, "close"):
                        result.close()
            finally:
                uri = environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "")
                query = environ.get("QUERY_STRING", "")
                span.set_tag("http.status_code", status[0])
                span.set_tag("error", status[0] >= 400)
                span.set_tag("http.url", f"{uri}?{query}" if query else uri)
                span.finish()

        return respond()