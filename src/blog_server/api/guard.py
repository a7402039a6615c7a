from __future__ import annotations

import time
from collections.abc import Callable

from fastapi import Request, Response
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware

MAX_PATH_LENGTH = 1024

TELEMETRY_PREFIX = "/telemetry/"

CONTENT_SECURITY_POLICY = (
    "default-src 'self'; script-src 'self'; script-src-elem 'self'; "
    "style-src 'self'; img-src 'self'; connect-src 'self'"
)


def check_request(request: Request) -> tuple[str, int, str] | None:
    """Return (block reason, status code, message) for a request that must be refused."""
    path = request.url.path
    if len(path) > MAX_PATH_LENGTH:
        return "URI_LENGTH", 400, "URI too long"
    if request.method != "GET":
        return "BAD_METHOD", 405, "method not allowed"
    # U+FFFD marks bytes that were not valid UTF-8
    if "\ufffd" in path:
        return "INVALID_CHAR_URL", 400, "Invalid URL characters"
    raw_path = request.scope.get("raw_path") or b""
    if "\x00" in path or b"%00" in raw_path:
        return "INVALID_CHAR_URL", 400, "Invalid URL characters"
    return None


class RequestGuard(BaseHTTPMiddleware):
    """Blocks malformed requests, traces each request and records its duration.

    Telemetry endpoints are passed through untouched.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        instrumentation = getattr(request.app.state, "instrumentation", None)
        if instrumentation is None or path.startswith(TELEMETRY_PREFIX):
            return await call_next(request)

        start = time.perf_counter()
        with instrumentation.tracer.start_as_current_span(f"Serve {path}") as span:
            span.set_attribute("http.method", request.method)
            blocked = check_request(request)
            if blocked:
                reason, status_code, message = blocked
                instrumentation.record_blocked(reason)
                span.set_attribute("blocked", reason)
                response: Response = PlainTextResponse(message, status_code=status_code)
            else:
                response = await call_next(request)
                response.headers["Content-Security-Policy"] = CONTENT_SECURITY_POLICY
            span.set_attribute("http.status_code", response.status_code)
        instrumentation.record_duration(time.perf_counter() - start)
        return response
