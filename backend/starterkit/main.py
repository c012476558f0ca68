"""FastAPI application entry point."""

import asyncio
import logging
import platform
from collections.abc import Mapping

import fastapi
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.sessions import SessionMiddleware

from starterkit.api.routes import setup
from starterkit.config import Settings, settings as default_settings
from starterkit.core.credential_store import CredentialStore
from starterkit.core.dependency_probe import EnvironmentChecker, all_passing
from starterkit.core.env_source import EnvFileSource
from starterkit.db.database import create_engine_for
from starterkit.db.models import has_entity_mappings
from starterkit.middleware.environment_gate import EnvironmentGateMiddleware

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Configure logging format based on dev_mode."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    if not settings.dev_mode:
        logging.basicConfig(
            level=level,
            format='{"time":"%(asctime)s","level":"%(levelname)s","name":"%(name)s","message":"%(message)s"}',
        )
    else:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        )


# ---------------------------------------------------------------------------
# Security headers middleware
# ---------------------------------------------------------------------------

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, dev_mode: bool = True) -> None:
        super().__init__(app)
        self.dev_mode = dev_mode

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "same-origin"
        if not self.dev_mode:
            response.headers["Strict-Transport-Security"] = (
                "max-age=63072000; includeSubDomains"
            )
        return response


def create_app(
    settings: Settings | None = None,
    environ: Mapping[str, str] | None = None,
) -> FastAPI:
    """Build the application.

    ``environ`` replaces the process environment as the fallback source of
    ``DATABASE_URL`` / ``REDIS_*`` (tests pass a fixture mapping).
    """
    settings = settings or default_settings
    configure_logging(settings)

    source = EnvFileSource(settings.env_file_path, environ)
    credentials = CredentialStore(settings.env_file_path, settings.env_template_path, source)

    database_required = settings.database_required
    if database_required is None:
        database_required = has_entity_mappings()
    assets_required = settings.assets_required
    if assets_required is None:
        assets_required = (settings.project_root / "package.json").is_file()

    checker = EnvironmentChecker(
        credentials,
        source,
        database_required=database_required,
        assets_required=assets_required,
        hot_file=settings.vite_hot_file,
        manifest_path=settings.vite_manifest_path,
        database_timeout=settings.database_connect_timeout,
        redis_timeout=settings.redis_default_timeout,
        dev_server_timeout=settings.vite_dev_server_timeout,
    )
    logger.debug(
        "Environment gate: database_required=%s assets_required=%s",
        database_required,
        assets_required,
    )

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        docs_url="/docs" if settings.dev_mode else None,
        redoc_url=None,
    )
    app.state.settings = settings
    app.state.credentials = credentials
    app.state.environment_checker = checker

    # -----------------------------------------------------------------------
    # Middleware (last added runs first: the gate must sit inside sessions)
    # -----------------------------------------------------------------------

    app.add_middleware(
        EnvironmentGateMiddleware,
        checker=checker,
        credentials=credentials,
        max_attempts=settings.setup_rate_limit_attempts,
        window_seconds=settings.setup_rate_limit_window,
    )
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret_key,
        session_cookie=settings.session_cookie,
        max_age=settings.session_max_age,
        same_site="lax",
        https_only=not settings.dev_mode,
    )
    app.add_middleware(SecurityHeadersMiddleware, dev_mode=settings.dev_mode)

    app.include_router(setup.router, prefix="/setup", tags=["setup"])

    # -----------------------------------------------------------------------
    # System endpoints
    # -----------------------------------------------------------------------

    @app.get("/health")
    async def health_check() -> dict:
        """Runtime versions and database status."""
        return {
            "status": "healthy",
            "checks": {
                "python": platform.python_version(),
                "fastapi": fastapi.__version__,
                "database": await _database_status(credentials, settings.database_connect_timeout),
            },
        }

    @app.get("/health/ready")
    async def readiness_check() -> JSONResponse:
        """Readiness check: runs every dependency probe."""
        checks = await checker.run_checks()
        all_ok = all_passing(checks)
        return JSONResponse(
            status_code=200 if all_ok else 503,
            content={
                "status": "ready" if all_ok else "degraded",
                "services": {
                    check.name: "ok" if check.status else "unavailable" for check in checks
                },
            },
        )

    @app.get("/")
    async def root() -> dict:
        """Root endpoint."""
        return {"message": settings.app_name, "health": "/health"}

    return app


async def _database_status(credentials: CredentialStore, timeout: float) -> str:
    engine = None
    try:
        engine = create_engine_for(credentials)

        async def _ping() -> None:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))

        await asyncio.wait_for(_ping(), timeout=timeout)
    except Exception:
        logger.debug("Health check database connection failed", exc_info=True)
        return "not configured"
    finally:
        if engine is not None:
            await engine.dispose()
    return "connected"
