"""Request context middleware: request id, timing, request log and per-client rate limiting."""

import logging
import threading
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..core.logging_config import request_id_var
from ..core.rate_limit import check_rate_limit

logger = logging.getLogger(__name__)

# Health probes and API docs are never throttled.
_EXEMPT_PATHS = frozenset({"/", "/health", "/docs", "/redoc", "/openapi.json"})

_bucket_lock = threading.Lock()


def client_ip(request: Request) -> str:
    """First ``X-Forwarded-For`` hop behind a proxy, otherwise the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


class RequestContextMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        rid = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        token = request_id_var.set(rid)
        try:
            container = request.app.state.container
            if request.url.path not in _EXEMPT_PATHS:
                key = f"ip:{client_ip(request)}"
                with _bucket_lock:
                    allowed, retry_after = check_rate_limit(
                        container.http_buckets, key, container.settings.rate_limit_per_minute,
                    )
                if not allowed:
                    logger.warning(
                        "Rate limit exceeded",
                        extra={"client": key, "path": request.url.path, "retry_after": round(retry_after, 1)},
                    )
                    return JSONResponse(
                        status_code=429,
                        content={
                            "error": "RATE_LIMITED",
                            "message": "Too many requests",
                            "details": {"retry_after": round(retry_after, 1)},
                        },
                        headers={"Retry-After": str(int(retry_after) + 1), "X-Request-ID": rid},
                    )

            start = time.monotonic()
            response = await call_next(request)
            duration_ms = round((time.monotonic() - start) * 1000, 1)

            response.headers["X-Request-ID"] = rid
            response.headers["X-Response-Time"] = f"{duration_ms}ms"
            logger.info(
                f"{request.method} {request.url.path} {response.status_code}",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
            return response
        finally:
            request_id_var.reset(token)
