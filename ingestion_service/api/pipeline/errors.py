"""
Terminal error reporter and catch-all.

Every failure that reaches the end of the pipeline is converted here, once,
into the uniform error body ``{"error_code", "message", "details"}``.
Unexpected exceptions are logged with their trace and answered with a
generic 500 so nothing about the failure leaks to the caller.
"""

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware import Middleware
from starlette.types import ASGIApp, Message, Receive, Scope, Send
import structlog

from ...core.exceptions import ClientError, ServiceException

logger = structlog.get_logger("ingestion.errors")

NOT_FOUND_BODY = "404 - Not Found"
CATCH_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def error_response(exc: ServiceException, headers=None) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def not_found(request: Request) -> PlainTextResponse:
    return PlainTextResponse(NOT_FOUND_BODY, status_code=404)


def install_catch_all(app: FastAPI) -> None:
    """Answer every unmatched path and method with a fixed 404."""
    app.add_api_route(
        "/{unmatched_path:path}",
        not_found,
        methods=CATCH_ALL_METHODS,
        include_in_schema=False,
        name="catch_all",
    )


async def handle_service_exception(request: Request, exc: ServiceException) -> JSONResponse:
    if isinstance(exc, ClientError):
        logger.info(
            "client_error",
            path=request.url.path,
            error_code=exc.error_code,
            status=exc.status_code,
        )
    else:
        logger.error(
            "route_error",
            path=request.url.path,
            error_code=exc.error_code,
            error=exc.message,
            exc_info=exc,
        )
    return error_response(exc)


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("http_error", path=request.url.path, status=exc.status_code, detail=exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": f"HTTP_{exc.status_code}",
            "message": str(exc.detail),
            "details": {},
        },
        headers=getattr(exc, "headers", None),
    )


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = ClientError(
        "Request validation failed",
        error_code="VALIDATION_ERROR",
        details={"errors": exc.errors()},
    )
    return JSONResponse(status_code=error.status_code, content=jsonable_encoder(error.to_dict()))


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_route_exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error_code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
            "details": {},
        },
    )


class UnexpectedErrorMiddleware:
    """
    Innermost middleware: answers unhandled exceptions with the uniform 500.

    It sits directly around the route table, so the 500 travels back out
    through every earlier stage and nothing is re-raised to the server.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_tracking(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_tracking)
        except Exception as exc:
            if response_started:
                # Headers are already out; only the server can drop the connection
                logger.error(
                    "exception_after_response_started",
                    path=scope.get("path"),
                    error_type=type(exc).__name__,
                )
                raise
            response = await handle_unexpected(Request(scope, receive), exc)
            await response(scope, receive, send)


def install_error_reporter(app: FastAPI) -> None:
    """
    Register the terminal handlers. Must be the last stage installed.

    Service and HTTP errors are answered by FastAPI's exception middleware;
    everything else is caught by UnexpectedErrorMiddleware, appended as the
    innermost user middleware.
    """
    app.add_exception_handler(ServiceException, handle_service_exception)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.user_middleware.append(Middleware(UnexpectedErrorMiddleware))
