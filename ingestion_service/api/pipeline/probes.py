"""
Liveness probe and access logging stages.
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.types import ASGIApp, Receive, Scope, Send

from ...core.logging import LogContext
from ..metrics.registry import track_request

logger = structlog.get_logger("ingestion.access")

LIVENESS_PATH = "/alive"
LIVENESS_BODY = "OK"


class LivenessProbeMiddleware:
    """
    Answers ``GET /alive`` directly so load balancers can check the instance.

    Nothing after this stage sees the probe: it works without storage and
    without any mounted routes.
    """

    def __init__(self, app: ASGIApp, path: str = LIVENESS_PATH):
        self.app = app
        self.path = path

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if (
            scope["type"] == "http"
            and scope["path"] == self.path
            and scope["method"] in ("GET", "HEAD")
        ):
            response = PlainTextResponse(LIVENESS_BODY, status_code=200)
            await response(scope, receive, send)
            return
        await self.app(scope, receive, send)


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Logs one line per request. Bodies are never read or modified."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start_time = time.perf_counter()
        client = request.client.host if request.client else None

        with LogContext(method=request.method, path=request.url.path, client=client):
            try:
                response = await call_next(request)
            except Exception as e:
                duration = time.perf_counter() - start_time
                logger.error("request_failed", error=str(e), duration_ms=round(duration * 1000, 2))
                raise

            duration = time.perf_counter() - start_time
            track_request(request.method, response.status_code, duration)
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
                content_length=response.headers.get("content-length"),
                user_agent=request.headers.get("user-agent"),
            )
            return response
