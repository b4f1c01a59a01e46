"""
# Route Guard

Decides which paths are reachable without a session and where a signed-in user lands.

Public paths are matched against anchored patterns in the same matcher syntax the web client
uses (`/sign-in(.*)` covers `/sign-in` and every nested step of the sign-in flow). Every
other path requires a bearer session before a handler runs: `SessionGateMiddleware` rejects
requests without one, and the `get_current_user` dependency then verifies the token itself.
"""

import re
from typing import Callable, Iterable, List, Optional, Pattern

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from agentbuy.managers.logging_manager import get_logger

logger = get_logger(prefix="[RouteGuard]")

PUBLIC_PAGE_PATTERNS: List[str] = [
    "/",
    "/about",
    "/faq",
    "/help",
    "/privacy",
    "/terms",
    "/tutorial",
    "/login",
    "/sign-in(.*)",
    "/sign-up(.*)",
]

PUBLIC_API_PATTERNS: List[str] = [
    "/health",
    "/metrics",
    "/docs(.*)",
    "/redoc",
    "/openapi.json",
    "/api/auth/register",
    "/api/agents/public",
    "/api/agents/top",
    "/api/agents/specialties",
    "/api/agents/[^/]+/reviews",
    "/api/banners/active",
    "/api/showcases/active",
]

ROLE_DASHBOARDS = {
    "agent": "/agent/dashboard",
    "admin": "/admin/dashboard",
}
DEFAULT_DASHBOARD = "/user/dashboard"


def compile_route_matcher(patterns: Iterable[str]) -> List[Pattern]:
    return [re.compile(rf"^{pattern}$") for pattern in patterns]


_public_matchers = compile_route_matcher(PUBLIC_PAGE_PATTERNS + PUBLIC_API_PATTERNS)


def is_public_path(path: str, matchers: Optional[List[Pattern]] = None) -> bool:
    """Return True when `path` matches one of the public route patterns."""
    if not path:
        path = "/"
    if len(path) > 1:
        path = path.rstrip("/")
    return any(m.match(path) for m in (matchers or _public_matchers))


def dashboard_for_role(role: Optional[str]) -> str:
    """Dashboard a user is sent to after sign-in, derived purely from role."""
    return ROLE_DASHBOARDS.get((role or "").lower(), DEFAULT_DASHBOARD)


class SessionGateMiddleware(BaseHTTPMiddleware):
    """
    Reject requests to protected paths that carry no bearer token.

    Preflight `OPTIONS` requests always pass so CORS can answer them. The development
    bypass (`bypass=True`) disables the gate entirely.
    """

    def __init__(self, app, bypass: bool = False, matchers: Optional[List[Pattern]] = None):
        super().__init__(app)
        self.bypass = bypass
        self.matchers = matchers

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if self.bypass or request.method == "OPTIONS" or is_public_path(request.url.path, self.matchers):
            return await call_next(request)

        authorization = request.headers.get("Authorization", "")
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            logger.info("Blocked unauthenticated %s %s", request.method, request.url.path)
            return JSONResponse(status_code=401, content={"detail": "Unauthenticated"})

        return await call_next(request)
