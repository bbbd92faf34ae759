"""
Request logging middleware with request ID tracking and context propagation.
"""
import json
import logging
import re
import time
import uuid
from contextvars import ContextVar

from app.core.logging_config import _sanitize_data, log_api_request

logger = logging.getLogger(__name__)

# Context variable for request ID propagation
request_id_ctx: ContextVar[str] = ContextVar('request_id', default='unknown')

# Default status code when response is not captured
DEFAULT_STATUS_CODE = 500
SLOW_REQUEST_MS = 10000
MAX_LOGGED_BODY_BYTES = 1000

# Incoming request ids are echoed back only when they look like an opaque id
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def _sanitize_response_body(response_body: str) -> str:
    """
    Sanitize response body to mask sensitive fields.

    For JSON responses, parses, sanitizes, and re-stringifies.
    For plain text, applies string sanitization.
    """
    if not response_body:
        return response_body

    try:
        parsed = json.loads(response_body)
        sanitized = _sanitize_data(parsed)
        return json.dumps(sanitized)
    except (json.JSONDecodeError, TypeError):
        sanitized = _sanitize_data(response_body)
        return str(sanitized) if sanitized is not None else ""


def _resolve_request_id(scope) -> str:
    for name, value in scope.get("headers") or []:
        if name == b"x-request-id":
            candidate = value.decode("latin-1").strip()
            if _REQUEST_ID_PATTERN.match(candidate):
                return candidate
    return str(uuid.uuid4())


class RequestLoggingMiddleware:
    """
    ASGI middleware that tags every HTTP request with a request id.

    - Reuses a well-formed incoming x-request-id header, otherwise generates one
    - Propagates it through request_id_ctx and the x-request-id response header
    - Logs completion with timing; 4xx bodies are logged sanitized
    - OAuth callback query strings are never logged
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            # Non-HTTP scope (e.g., WebSocket, lifespan)
            await self.app(scope, receive, send)
            return

        request_id = _resolve_request_id(scope)
        token = request_id_ctx.set(request_id)
        start_time = time.time()

        method = scope.get("method", "UNKNOWN")
        path = scope.get("path", "/")
        client_host = scope["client"][0] if scope.get("client") else "unknown"

        response_captured = None
        response_body = None

        async def send_wrapper(message):
            nonlocal response_captured, response_body
            if message["type"] == "http.response.start":
                response_captured = {"status_code": message.get("status", DEFAULT_STATUS_CODE)}

                headers = list(message.get("headers", []))
                headers.append([b"x-request-id", request_id.encode()])
                message["headers"] = headers
            elif message["type"] == "http.response.body":
                body = message.get("body", b"")
                if body and response_captured and 400 <= response_captured["status_code"] < 500:
                    response_body = body[:MAX_LOGGED_BODY_BYTES].decode("utf-8", errors="replace")

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as e:
            logger.error(
                "Request failed with exception",
                extra={
                    "request_id": request_id,
                    "method": method,
                    "path": path,
                    "client_ip": client_host,
                    "error": str(e),
                    "event": "request_exception",
                },
                exc_info=True,
            )
            raise
        finally:
            duration_ms = round((time.time() - start_time) * 1000, 2)
            status_code = response_captured["status_code"] if response_captured else DEFAULT_STATUS_CODE

            if duration_ms >= SLOW_REQUEST_MS:
                logger.warning(
                    "Slow request",
                    extra={"request_id": request_id, "path": path, "duration_ms": duration_ms, "event": "request_slow"},
                )

            log_api_request(method, path, status_code, duration_ms, request_id=request_id)

            if status_code >= 500:
                logger.error("Request completed with server error", extra={"request_id": request_id, "path": path})
            elif status_code >= 400 and response_body:
                logger.warning(
                    "Request completed with client error",
                    extra={
                        "request_id": request_id,
                        "path": path,
                        "status_code": status_code,
                        "response_body": _sanitize_response_body(response_body),
                    },
                )
            request_id_ctx.reset(token)


class RequestContextFilter(logging.Filter):
    """
    Logging filter that adds the current request ID to every log record.

    Usage in logging configuration:
        handler.addFilter(RequestContextFilter())
    """

    def filter(self, record):
        record.request_id = request_id_ctx.get()
        return True
