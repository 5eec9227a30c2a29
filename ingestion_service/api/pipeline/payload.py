"""
Payload stages: compression, body parsing and cache-control suppression.

All three are plain ASGI middleware so response streaming is untouched.
"""

import json
from typing import Any, Optional
from urllib.parse import parse_qsl

import structlog
from starlette.datastructures import Headers, MutableHeaders
from starlette.middleware.gzip import GZipMiddleware
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ...core.exceptions import ClientError, MalformedBody, PayloadTooLarge
from .errors import error_response

logger = structlog.get_logger("ingestion.payload")

NO_COMPRESSION_HEADER = "x-no-compression"
JSON_TYPES = ("application/json",)
FORM_TYPES = ("application/x-www-form-urlencoded",)


class OptOutGZipMiddleware(GZipMiddleware):
    """
    Gzip responses unless the caller opts out.

    A request carrying ``x-no-compression`` skips compression entirely; the
    opt-out is checked before the usual Accept-Encoding and size predicates.
    """

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and Headers(scope=scope).get(NO_COMPRESSION_HEADER):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


def _body_kind(content_type: str) -> Optional[str]:
    media_type = content_type.split(";")[0].strip().lower()
    if media_type in JSON_TYPES or media_type.endswith("+json"):
        return "json"
    if media_type in FORM_TYPES:
        return "form"
    return None


def _decode(kind: str, body: bytes) -> Any:
    if not body:
        return None
    if kind == "json":
        try:
            return json.loads(body)
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedBody(str(e)) from e
    try:
        return dict(parse_qsl(body.decode("utf-8"), keep_blank_values=True))
    except UnicodeDecodeError as e:
        raise MalformedBody(str(e)) from e


class BodyParserMiddleware:
    """
    Reads JSON and URL-encoded bodies up to ``max_bytes``.

    Oversized bodies get 413 and malformed ones 400 before any route
    handler runs. The decoded value is available as ``request.state.body``
    and the raw bytes are replayed to the next stage.
    """

    def __init__(self, app: ASGIApp, max_bytes: int = 100 * 1024 * 1024):
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        kind = _body_kind(headers.get("content-type", ""))
        if kind is None:
            await self.app(scope, receive, send)
            return

        try:
            declared = headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > self.max_bytes:
                raise PayloadTooLarge(self.max_bytes)

            body = bytearray()
            more_body = True
            while more_body:
                message = await receive()
                if message["type"] == "http.disconnect":
                    return
                body.extend(message.get("body", b""))
                if len(body) > self.max_bytes:
                    raise PayloadTooLarge(self.max_bytes)
                more_body = message.get("more_body", False)

            parsed = _decode(kind, bytes(body))
        except ClientError as e:
            logger.info(
                "request_body_rejected",
                path=scope.get("path"),
                error_code=e.error_code,
                status=e.status_code,
            )
            await error_response(e)(scope, receive, send)
            return

        scope.setdefault("state", {})["body"] = parsed

        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": bytes(body), "more_body": False}
            return await receive()

        await self.app(scope, replay, send)


class NoETagMiddleware:
    """
    Disables entity tags so nothing is ever answered with 304.

    Conditional request headers are dropped on the way in and ETag response
    headers on the way out.
    """

    CONDITIONAL_HEADERS = (b"if-none-match", b"if-modified-since")

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        scope = dict(scope)
        scope["headers"] = [
            (name, value) for name, value in scope["headers"]
            if name.lower() not in self.CONDITIONAL_HEADERS
        ]

        async def send_without_etag(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                if "etag" in headers:
                    del headers["etag"]
            await send(message)

        await self.app(scope, receive, send_without_etag)
