from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from leadops.metrics import observe_http_request, resolve_http_path_label
from leadops.otel import resolve_surface


logger = logging.getLogger("leadops.request")


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Emits one ``http.request`` record and the HTTP metrics per request, labelled by route template."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        method = request.method
        surface = resolve_surface(request.url.path)
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception:
            logger.exception("http.error", extra={"method": method, "path": resolve_http_path_label(request), "surface": surface})
            raise
        finally:
            duration = time.perf_counter() - started
            path = resolve_http_path_label(request)
            observe_http_request(method=method, path=path, status=status_code, duration=duration)
            logger.log(
                _level_for(status_code),
                "http.request",
                extra={
                    "method": method,
                    "path": path,
                    "surface": surface,
                    "status_code": status_code,
                    "duration_ms": round(duration * 1000, 2),
                },
            )
        return response
