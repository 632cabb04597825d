"""Per-IP rate limiting for the /api routes.

Built on slowapi. Every app gets its own Limiter (and so its own counter
storage). The limit is scoped by path prefix, not by route: every request
under /api/ draws from one counter per client, including paths that match no
route. Nothing outside the prefix is counted.
"""

import logging
from typing import Callable

from limits import RateLimitItem, parse as parse_rate_limit_string
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from ekrixi_backend.config import Settings

logger = logging.getLogger(__name__)

API_PREFIX = "/api/"
API_SCOPE = "api"
RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."


def make_key_func(trust_proxy: bool) -> Callable[[Request], str]:
    """Build the limiter key function.

    With ``trust_proxy`` the first X-Forwarded-For hop identifies the client,
    which is what a load balancer in front of the service reports.
    """

    def client_key(request: Request) -> str:
        if trust_proxy:
            forwarded = request.headers.get("X-Forwarded-For", "")
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop
        return get_remote_address(request)

    return client_key


def build_limiter(settings: Settings) -> Limiter:
    """Create a fixed-window limiter for one app instance."""
    return Limiter(
        key_func=make_key_func(settings.trust_proxy),
        storage_uri=settings.rate_limit_storage_uri,
        strategy="fixed-window",
    )


def rate_limit_exceeded_response(request: Request) -> PlainTextResponse:
    client = request.client.host if request.client else "unknown"
    logger.info(f"Rate limit exceeded: client={client}, path={request.url.path}")
    return PlainTextResponse(RATE_LIMIT_MESSAGE, status_code=429)


class ApiRateLimitMiddleware:
    """Count every request under ``prefix`` against one shared limit.

    The counter is hit before the app runs, so requests later rejected for
    validation still count.
    """

    def __init__(
        self,
        app: ASGIApp,
        limiter: Limiter,
        rate_limit: str,
        key_func: Callable[[Request], str],
        prefix: str = API_PREFIX,
    ) -> None:
        self.app = app
        self.limiter = limiter
        self.limit: RateLimitItem = parse_rate_limit_string(rate_limit)
        self.key_func = key_func
        self.prefix = prefix

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if (
            scope["type"] != "http"
            or not self.limiter.enabled
            or not scope["path"].startswith(self.prefix)
        ):
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        key = self.key_func(request)
        if not self.limiter.limiter.hit(self.limit, API_SCOPE, key):
            response = rate_limit_exceeded_response(request)
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)
