"""
# AgentBuy API Entry Point

Builds the FastAPI application for the AgentBuy.mn marketplace backend.

## Application Factory

`create_app(db=None)` wires everything around one explicitly constructed `DatabaseManager`:

1. **Lifespan**: connect to MongoDB, ensure indexes, serve, disconnect.
2. **Middleware** (outermost first):
   - `OriginCheckingCORSMiddleware`: allow-list from `CLIENT_URL`/`FRONTEND_URL`, 403 for others
   - `RequestLoggingMiddleware`: one log line per request
   - `SessionGateMiddleware`: rejects protected paths without a bearer session
3. **Exception handlers**: `AgentBuyError` subclasses become `{"detail": ...}` with their
   status code; invalid sessions become 401.
4. **Routers**: auth, profile, cards, admin, agents, content, health.
5. **Metrics**: Prometheus at `/metrics`.

Tests pass their own (mocked) manager: `create_app(db=mock_db, enable_metrics=False)`.

## Running

```bash
uvicorn agentbuy.main:app --reload --host 0.0.0.0 --port 5000
```
"""

from contextlib import asynccontextmanager
import time
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from pymongo.errors import PyMongoError
import uvicorn

from agentbuy import __version__
from agentbuy.config import settings
from agentbuy.database import DatabaseManager
from agentbuy.errors import AgentBuyError
from agentbuy.managers.logging_manager import get_logger
from agentbuy.routes import admin, agents, auth, cards, content, health, profile
from agentbuy.routes.dependencies import auth_bypass_enabled
from agentbuy.security.cors import OriginCheckingCORSMiddleware, get_allowed_origins
from agentbuy.security.identity import InvalidSessionError
from agentbuy.security.route_guard import SessionGateMiddleware
from agentbuy.utils.logging_utils import (
    RequestLoggingMiddleware,
    log_application_lifecycle,
    log_error_with_context,
    log_performance,
)

logger = get_logger()

OPENAPI_TAGS = [
    {"name": "Auth", "description": "Registration and the signed-in user's account"},
    {"name": "Orders", "description": "Single-item purchase orders"},
    {"name": "Bundle Orders", "description": "Multi-item purchase orders"},
    {"name": "Profile", "description": "Buyer and agent profiles"},
    {"name": "Admin", "description": "Agent approval, ranking, review moderation and vocabularies"},
    {"name": "Agents", "description": "Public agent directory and reviews"},
    {"name": "Notifications", "description": "Chat e-mail notifications"},
    {"name": "Cards", "description": "Research card balance, history and gifts"},
    {"name": "Content", "description": "Banners, product showcases and cargo categories"},
    {"name": "System", "description": "Health and monitoring"},
]


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AgentBuyError)
    async def agentbuy_error_handler(request: Request, exc: AgentBuyError):
        if exc.status_code >= 500:
            log_error_with_context(exc, {"path": request.url.path, "method": request.method})
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.exception_handler(InvalidSessionError)
    async def invalid_session_handler(request: Request, exc: InvalidSessionError):
        return JSONResponse(
            status_code=401, content={"detail": str(exc)}, headers={"WWW-Authenticate": "Bearer"}
        )

    @app.exception_handler(PyMongoError)
    async def database_error_handler(request: Request, exc: PyMongoError):
        log_error_with_context(exc, {"path": request.url.path, "method": request.method})
        return JSONResponse(status_code=500, content={"detail": "Database error"})


def _install_openapi(app: FastAPI) -> None:
    @log_performance("openapi_schema_generation")
    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema

        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
            tags=app.openapi_tags,
        )
        security_schemes = openapi_schema.setdefault("components", {}).setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
            "description": "Session token issued by the identity provider",
        }
        openapi_schema["security"] = [{"BearerAuth": []}]
        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi


def create_app(db: Optional[DatabaseManager] = None, enable_metrics: bool = True) -> FastAPI:
    """
    Build the application around `db` (a fresh `DatabaseManager` when omitted).
    """
    db = db or DatabaseManager()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        startup_start = time.time()
        log_application_lifecycle(
            "startup_initiated", {"environment": settings.ENVIRONMENT, "version": __version__}
        )
        try:
            await db.connect()
            await db.create_indexes()
        except Exception as e:
            log_error_with_context(e, {"operation": "application_startup"})
            raise
        log_application_lifecycle("startup_completed", {"duration": f"{time.time() - startup_start:.3f}s"})

        yield

        log_application_lifecycle("shutdown_initiated")
        await db.disconnect()
        log_application_lifecycle("shutdown_completed")

    app = FastAPI(
        title="AgentBuy API",
        description="Backend for the AgentBuy.mn marketplace: buyers, agents, research cards and content.",
        version=__version__,
        lifespan=lifespan,
        openapi_tags=OPENAPI_TAGS,
    )
    app.state.db = db
    _install_openapi(app)
    _register_exception_handlers(app)

    allowed_origins = get_allowed_origins()
    bypass = auth_bypass_enabled()
    if bypass:
        logger.warning("Authentication is DISABLED (development bypass as %s)", settings.DEV_USER_EMAIL)

    app.add_middleware(SessionGateMiddleware, bypass=bypass)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        OriginCheckingCORSMiddleware,
        allowed_origins=allowed_origins,
        development=settings.is_development,
        allow_prefix=settings.CORS_ALLOW_ORIGIN_PREFIX,
    )
    log_application_lifecycle(
        "middleware_configured",
        {
            "middleware": ["OriginCheckingCORSMiddleware", "RequestLoggingMiddleware", "SessionGateMiddleware"],
            "cors_origins": allowed_origins,
        },
    )

    routers_config = [
        ("auth", auth.router, "Registration and current user"),
        ("profile", profile.router, "Profile of the signed-in user"),
        ("cards", cards.router, "Research card balance, history and gifts"),
        ("admin", admin.router, "Agent, review, card and vocabulary administration"),
        ("agents", agents.router, "Public agent directory and reviews"),
        ("banners", content.banners_router, "Banner display and management"),
        ("showcases", content.showcases_router, "Product showcase display and management"),
        ("cargos", content.cargos_router, "Cargo categories"),
        ("health", health.router, "Health check"),
    ]
    for router_name, router, description in routers_config:
        app.include_router(router)
        logger.debug("Included %s router: %s", router_name, description)
    log_application_lifecycle("routers_configured", {"routers": [name for name, _, _ in routers_config]})

    if enable_metrics:
        Instrumentator(
            should_group_status_codes=True,
            should_ignore_untemplated=True,
            should_respect_env_var=False,
            should_instrument_requests_inprogress=True,
        ).add().instrument(app).expose(app, include_in_schema=False, endpoint="/metrics")
        log_application_lifecycle("prometheus_configured", {"metrics_endpoint": "/metrics"})

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("agentbuy.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG, log_level="info")
