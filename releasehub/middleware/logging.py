"""
Logging middleware for request/response logging.

Logs all HTTP requests with timing and context, and records the request
metrics.
"""
import time
import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from releasehub.metrics import track_request

logger = structlog.get_logger()


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all HTTP requests with timing and context.

    Adds: tenant_id, user_id, route, duration_ms, status to every log.
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        structlog.contextvars.clear_contextvars()

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self._logger(request).error(
                "request_failed",
                path=request.url.path,
                status_code=500,
                duration_ms=round(duration_ms, 2),
                error=str(e)
            )
            track_request(request.method, self._route(request), 500, duration_ms / 1000)
            raise

        duration_ms = (time.time() - start_time) * 1000

        self._logger(request).info(
            "request_completed",
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2)
        )
        track_request(request.method, self._route(request), response.status_code, duration_ms / 1000)

        return response

    @staticmethod
    def _route(request: Request) -> str:
        # Route template keeps the metric label set bounded
        route = request.scope.get("route")
        return getattr(route, "path", request.url.path)

    def _logger(self, request: Request):
        # Set by the auth dependency once the token is verified
        tenant_id = getattr(request.state, 'tenant_id', None)
        user_id = getattr(request.state, 'user_id', None)

        return logger.bind(
            tenant_id=str(tenant_id) if tenant_id else None,
            user_id=str(user_id) if user_id else None,
            route=self._route(request),
            method=request.method,
        )
