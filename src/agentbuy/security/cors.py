"""
# CORS Origin Validation

Browser clients are only served from origins listed in `CLIENT_URL` (or `FRONTEND_URL`),
comma separated for several deployments:

```
CLIENT_URL="https://agentbuy.mn,https://www.agentbuy.mn/"
```

Rules, in order:

1. No `Origin` header (curl, server-to-server, mobile) is always allowed.
2. The origin matches an allowed origin after stripping trailing slashes on both sides.
3. In development, any `localhost` origin (any port) is allowed.
4. Only with `CORS_ALLOW_ORIGIN_PREFIX=true`: an origin that starts with an allowed origin.
   Off by default, because `https://agentbuy.mn.evil.com` would otherwise pass.

Everything else is denied, logged with the allow-list, and answered with 403
`Not allowed by CORS. Origin: <origin>`.
"""

from typing import List, Optional, Sequence
from urllib.parse import urlparse

from starlette.datastructures import Headers
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from agentbuy.config import DEFAULT_CLIENT_URL, settings
from agentbuy.managers.logging_manager import get_logger

logger = get_logger(prefix="[CORS]")

ALLOWED_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
ALLOWED_HEADERS = ["Content-Type", "Authorization"]
LOCAL_HOSTNAMES = ("localhost", "127.0.0.1")


def normalize_origin(origin: str) -> str:
    return origin.strip().rstrip("/")


def get_allowed_origins(client_url: Optional[str] = None, frontend_url: Optional[str] = None) -> List[str]:
    """
    Build the allow-list from the configured client URLs.

    With no arguments the current settings are used. `client_url` wins over `frontend_url`;
    with neither set the local web client is allowed.
    """
    if client_url is None and frontend_url is None:
        client_url, frontend_url = settings.CLIENT_URL, settings.FRONTEND_URL
    raw = client_url or frontend_url or DEFAULT_CLIENT_URL
    return [normalize_origin(o) for o in raw.split(",") if o.strip()]


def is_origin_allowed(
    origin: Optional[str],
    allowed_origins: Sequence[str],
    development: bool = False,
    allow_prefix: bool = False,
) -> bool:
    if not origin:
        return True

    normalized = normalize_origin(origin)
    for allowed in allowed_origins:
        if normalized == allowed:
            return True
        if allow_prefix and normalized.startswith(allowed):
            return True

    if development and urlparse(normalized).hostname in LOCAL_HOSTNAMES:
        return True
    return False


class OriginCheckingCORSMiddleware(CORSMiddleware):
    """
    Starlette `CORSMiddleware` driven by `is_origin_allowed`.

    Unlike the stock middleware, which silently omits CORS headers for unknown origins, a
    denied cross-origin request is answered with a 403 JSON error and logged.
    """

    def __init__(
        self,
        app: ASGIApp,
        allowed_origins: Sequence[str],
        development: bool = False,
        allow_prefix: bool = False,
    ):
        super().__init__(
            app,
            allow_origins=list(allowed_origins),
            allow_methods=ALLOWED_METHODS,
            allow_headers=ALLOWED_HEADERS,
            allow_credentials=True,
        )
        self.allowed_origins = list(allowed_origins)
        self.development = development
        self.allow_prefix = allow_prefix

    def is_allowed_origin(self, origin: str) -> bool:
        return is_origin_allowed(origin, self.allowed_origins, self.development, self.allow_prefix)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        origin = Headers(scope=scope).get("origin")
        if origin and not self.is_allowed_origin(origin):
            logger.warning("CORS blocked origin: %s", origin)
            logger.warning("Allowed origins: %s", self.allowed_origins)
            response = JSONResponse(status_code=403, content={"detail": f"Not allowed by CORS. Origin: {origin}"})
            await response(scope, receive, send)
            return

        await super().__call__(scope, receive, send)
