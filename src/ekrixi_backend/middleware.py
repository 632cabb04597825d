"""HTTP middleware for the Ekrixi backend.

- SecurityHeadersMiddleware: hardened response headers on every response
- BodySizeLimitMiddleware: rejects request bodies over the configured size,
  whether declared by Content-Length or streamed
"""

import logging

from fastapi import Request
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ekrixi_backend.config import DEFAULT_MAX_BODY_BYTES

logger = logging.getLogger(__name__)

PAYLOAD_TOO_LARGE = "Payload too large"

# Same set a default helmet() install sends
SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self';base-uri 'self';font-src 'self' https: data:;"
        "form-action 'self';frame-ancestors 'self';img-src 'self' data:;"
        "object-src 'none';script-src 'self';script-src-attr 'none';"
        "style-src 'self' https: 'unsafe-inline';upgrade-insecure-requests"
    ),
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add the hardened header set without overriding handler-set headers."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response


def payload_too_large_response(limit: int) -> JSONResponse:
    return JSONResponse(
        status_code=413,
        content={
            "error": PAYLOAD_TOO_LARGE,
            "message": f"Request body exceeds the {limit} byte limit",
        },
    )


class BodySizeLimitMiddleware:
    """Reject request bodies larger than ``max_body_bytes``.

    A declared Content-Length over the limit is refused without reading the
    body. Otherwise the body is read and counted here, up to the limit, and
    the buffered messages are replayed to the app. The app never sees a body
    over the limit.
    """

    def __init__(
        self, app: ASGIApp, max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    ) -> None:
        self.app = app
        self.max_body_bytes = max_body_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        content_length = Headers(scope=scope).get("content-length")
        if content_length is not None and content_length.isdigit():
            if int(content_length) > self.max_body_bytes:
                logger.info(
                    f"Rejected {scope.get('path')}: "
                    f"Content-Length {content_length} > {self.max_body_bytes}"
                )
                await self._reject(scope, receive, send)
                return

        buffered: list[Message] = []
        received = 0
        while True:
            message = await receive()
            buffered.append(message)
            if message["type"] != "http.request":
                # Client went away; let the app see the disconnect
                break
            received += len(message.get("body", b""))
            if received > self.max_body_bytes:
                logger.info(
                    f"Rejected {scope.get('path')}: "
                    f"streamed body passed {self.max_body_bytes} bytes"
                )
                await self._reject(scope, receive, send)
                return
            if not message.get("more_body", False):
                break

        async def replay_receive() -> Message:
            if buffered:
                return buffered.pop(0)
            return await receive()

        await self.app(scope, replay_receive, send)

    async def _reject(self, scope: Scope, receive: Receive, send: Send) -> None:
        response = payload_too_large_response(self.max_body_bytes)
        await response(scope, receive, send)
