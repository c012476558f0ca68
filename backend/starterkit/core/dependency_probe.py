"""Runtime dependency probes.

Each probe tests one external dependency and returns a
``DependencyCheckResult``. Probes never raise: connection errors and timeouts
become failing results, and every network call carries an explicit timeout so
an outage cannot hang the request pipeline.
"""

import asyncio
import logging
from pathlib import Path

import httpx
from pydantic import BaseModel, model_validator
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from starterkit.core.credential_store import ConnectionConfig, CredentialStore
from starterkit.core.env_source import ConfigProvider

logger = logging.getLogger(__name__)

DEFAULT_REDIS_PORT = 6379
MAX_REDIS_TIMEOUT = 2.0


class DependencyCheckResult(BaseModel):
    """Outcome of a single probe. Built fresh on every request."""

    name: str
    label: str
    description: str = ""
    required: bool = True
    status: bool = False
    error: str | None = None
    note: str | None = None
    show_form: bool = False

    @model_validator(mode="after")
    def _optional_checks_pass(self) -> "DependencyCheckResult":
        if not self.status and not self.required:
            raise ValueError(f"Check '{self.name}' cannot fail when it is not required")
        return self


class ConnectionResult(BaseModel):
    success: bool
    error: str | None = None


def _driver_message(exc: BaseException) -> str:
    """Prefer the DBAPI driver's own message over SQLAlchemy's wrapper text."""
    orig = getattr(exc, "orig", None)
    return str(orig or exc) or type(exc).__name__


async def try_database_connection(config: ConnectionConfig, timeout: float = 3.0) -> ConnectionResult:
    """Open a connection with ``config`` and run a trivial query."""
    engine = None
    try:
        engine = create_async_engine(config.sqlalchemy_url(), poolclass=NullPool)

        async def _ping() -> None:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))

        await asyncio.wait_for(_ping(), timeout=timeout)
    except asyncio.TimeoutError:
        return ConnectionResult(success=False, error=f"Connection timed out after {timeout:g}s")
    except Exception as exc:
        logger.debug("Database connection failed", exc_info=True)
        return ConnectionResult(success=False, error=_driver_message(exc))
    finally:
        if engine is not None:
            await engine.dispose()
    return ConnectionResult(success=True)


async def probe_database(
    config: ConnectionConfig | None = None,
    *,
    required: bool,
    credentials: CredentialStore,
    timeout: float = 3.0,
) -> DependencyCheckResult:
    """Check the database, but only when the application maps ORM entities."""
    if not required:
        return DependencyCheckResult(
            name="database",
            label="Database",
            description="No ORM models defined; database connection not required",
            required=False,
            status=True,
        )

    config = config or credentials.read()
    result = await try_database_connection(config, timeout=timeout)
    return DependencyCheckResult(
        name="database",
        label="Database",
        description=f"Database connection ({config.describe()})",
        required=True,
        status=result.success,
        error=result.error,
        show_form=not result.success,
    )


async def probe_cache(
    host: str,
    port: int = DEFAULT_REDIS_PORT,
    timeout: float = MAX_REDIS_TIMEOUT,
) -> DependencyCheckResult:
    """Check the Redis server named by ``REDIS_HOST``."""
    note = "Remove REDIS_HOST from your environment if you do not want Redis caching."
    try:
        import redis.asyncio as redis_asyncio
    except ImportError:
        return DependencyCheckResult(
            name="redis",
            label="Redis",
            description="Redis cache service",
            error="Redis client library is not installed (pip install redis)",
            note=note,
        )

    timeout = min(timeout, MAX_REDIS_TIMEOUT)
    client = redis_asyncio.Redis(
        host=host,
        port=port,
        socket_connect_timeout=timeout,
        socket_timeout=timeout,
    )
    try:
        info = await asyncio.wait_for(client.info("server"), timeout=timeout)
    except asyncio.TimeoutError:
        error = f"Timed out connecting to Redis at {host}:{port}"
    except Exception as exc:
        error = f"Failed to connect to Redis at {host}:{port}: {exc}"
    else:
        version = info.get("redis_version", "unknown")
        return DependencyCheckResult(
            name="redis",
            label="Redis",
            description=f"Redis {version} at {host}:{port}",
            status=True,
        )
    finally:
        try:
            await client.aclose()
        except Exception:
            logger.debug("Error closing Redis probe client", exc_info=True)

    logger.info("Redis probe failed: %s", error)
    return DependencyCheckResult(
        name="redis",
        label="Redis",
        description="Redis cache service",
        error=error,
        note=note,
    )


async def _dev_server_running(hot_file: Path, timeout: float) -> str | None:
    """Return the dev server URL when the hot file points at a live server."""
    if not hot_file.is_file():
        return None
    try:
        url = hot_file.read_text().strip()
    except (OSError, UnicodeDecodeError):
        return None
    if not url:
        return None

    # Dev servers use self-signed certificates; verification is off for this ping only.
    try:
        async with httpx.AsyncClient(verify=False, timeout=timeout) as client:
            response = await client.head(url)
    except (httpx.HTTPError, httpx.InvalidURL):
        logger.debug("Vite dev server at %s is not answering", url)
        return None
    return url if response.is_success else None


async def probe_assets(
    hot_file: Path,
    manifest_path: Path,
    *,
    required: bool = True,
    timeout: float = 1.0,
) -> DependencyCheckResult:
    """Check that frontend assets are served (dev server) or built (manifest)."""
    if not required:
        return DependencyCheckResult(
            name="assets",
            label="Frontend assets",
            description="No frontend build configured",
            required=False,
            status=True,
        )

    url = await _dev_server_running(hot_file, timeout)
    if url:
        return DependencyCheckResult(
            name="assets",
            label="Frontend assets",
            description=f"Vite dev server running at {url}",
            status=True,
        )

    if manifest_path.is_file():
        return DependencyCheckResult(
            name="assets",
            label="Frontend assets",
            description="Production build manifest found",
            status=True,
        )

    return DependencyCheckResult(
        name="assets",
        label="Frontend assets",
        description="Vite build manifest",
        error=f"Build manifest not found at {manifest_path}. Run: npm run build",
        note="For development, start the dev server with: npm run dev",
    )


class EnvironmentChecker:
    """Runs the probe set for one request."""

    def __init__(
        self,
        credentials: CredentialStore,
        source: ConfigProvider,
        *,
        database_required: bool,
        assets_required: bool,
        hot_file: Path,
        manifest_path: Path,
        database_timeout: float = 3.0,
        redis_timeout: float = MAX_REDIS_TIMEOUT,
        dev_server_timeout: float = 1.0,
    ) -> None:
        self.credentials = credentials
        self.source = source
        self.database_required = database_required
        self.assets_required = assets_required
        self.hot_file = hot_file
        self.manifest_path = manifest_path
        self.database_timeout = database_timeout
        self.redis_timeout = redis_timeout
        self.dev_server_timeout = dev_server_timeout

    async def check_database(self, config: ConnectionConfig | None = None) -> DependencyCheckResult:
        return await probe_database(
            config,
            required=self.database_required,
            credentials=self.credentials,
            timeout=self.database_timeout,
        )

    async def run_checks(self) -> list[DependencyCheckResult]:
        checks = [await self.check_database()]

        redis_host = self.source.get("REDIS_HOST")
        if redis_host:
            checks.append(await probe_cache(redis_host, *self._redis_options()))

        checks.append(await probe_assets(
            self.hot_file,
            self.manifest_path,
            required=self.assets_required,
            timeout=self.dev_server_timeout,
        ))
        return checks

    def _redis_options(self) -> tuple[int, float]:
        try:
            port = int(self.source.get("REDIS_PORT") or DEFAULT_REDIS_PORT)
        except ValueError:
            port = DEFAULT_REDIS_PORT
        try:
            timeout = float(self.source.get("REDIS_TIMEOUT") or self.redis_timeout)
        except ValueError:
            timeout = self.redis_timeout
        return port, timeout


def all_passing(checks: list[DependencyCheckResult]) -> bool:
    return all(check.status for check in checks)
