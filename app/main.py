"""
Application assembly: middleware, exception handlers and feature routers.
"""
from fastapi import FastAPI
from slowapi import Limiter
from starlette.middleware.cors import CORSMiddleware
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import init_db
from app.core.errors import register_exception_handlers
from app.features.admin_users.routes import router as admin_user_router
from app.features.csv_import.routes import router as csv_import_router
from app.features.roles.routes import router as role_router
from app.features.users.dependencies import get_authorization_header
from app.utils import get_logger


log = get_logger(__name__)

API_VERSION = "0.1.0"


class LogTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        route = metric_name.removeprefix("main.app.features.")
        log.debug(dict(route=route, timing=timing, tags=tags))


def _add_middleware(app: FastAPI) -> None:
    app.add_middleware(TimingMiddleware, client=LogTimings(), metric_namer=StarletteScopeToName("main", app))

    if config.ALLOW_ORIGIN:
        log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[config.ALLOW_ORIGIN],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )


def _include_routers(app: FastAPI) -> None:
    # /import/* is registered before /admin/users/{user_id}
    app.include_router(csv_import_router, prefix="/admin/users/import", tags=["csv-import"])
    app.include_router(admin_user_router, prefix="/admin/users", tags=["admin-users"])
    app.include_router(role_router, prefix="/admin/roles", tags=["roles"])


def create_app() -> FastAPI:
    log.info("Initializing server")
    if config.ENABLE_DOCS:
        log.warning("Docs enabled")

    app = FastAPI(
        title="Feedback Admin Backend",
        description="User, role and organization-scoped admin management for the feedback platform",
        version=API_VERSION,
        docs_url="/docs" if config.ENABLE_DOCS else None,
        redoc_url="/redoc" if config.ENABLE_DOCS else None,
        openapi_url="/openapi.json" if config.ENABLE_DOCS else None,
    )
    app.state.limiter = Limiter(key_func=get_authorization_header)

    _add_middleware(app)
    register_exception_handlers(app)
    _include_routers(app)
    return app


app = create_app()


@app.on_event("startup")
async def startup():
    """Create missing tables."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")


@app.get("/")
async def root():
    """Service description."""
    return {
        "message": "Feedback Admin Backend API",
        "version": API_VERSION,
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": "Bearer JWT; caller must hold super_admin or an organization-scoped admin role",
        "endpoints": ["/admin/users", "/admin/users/import", "/admin/roles"],
    }


@app.get("/health")
async def health():
    return {"status": "healthy"}
