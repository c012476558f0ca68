"""Environment gate middleware.

Runs the dependency probes on every request. While a required dependency is
missing, normal pages are replaced by the setup wizard (HTTP 503) and the
wizard's form submission is handled here. Once the database check passes,
the setup routes redirect home so credentials cannot be overwritten.

Must be installed inside Starlette's ``SessionMiddleware``.
"""

import logging
import re

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import HTMLResponse, RedirectResponse, Response
from starlette.types import ASGIApp

from starterkit.core.credential_store import ConnectionConfig, CredentialStore
from starterkit.core.dependency_probe import (
    DependencyCheckResult,
    EnvironmentChecker,
    all_passing,
    try_database_connection,
)
from starterkit.core.exceptions import SetupError
from starterkit.core.setup_session import CSRF_TOKEN_NAME, MappingSessionStore, SetupSession
from starterkit.core.wizard import SETUP_DATABASE_PATH, render_wizard

logger = logging.getLogger(__name__)

SETUP_PREFIX = "/setup"

_STATIC_ASSET_RE = re.compile(
    r"\.(css|js|ico|png|jpg|jpeg|gif|svg|woff|woff2|ttf|eot)$", re.IGNORECASE
)

_NO_CACHE = {"Cache-Control": "no-cache, no-store, must-revalidate"}


def is_setup_path(path: str) -> bool:
    return path == SETUP_PREFIX or path.startswith(SETUP_PREFIX + "/")


def redirect_to_home() -> RedirectResponse:
    return RedirectResponse("/", status_code=302, headers=_NO_CACHE)


def database_configured(checks: list[DependencyCheckResult]) -> bool:
    """True when the database check passes (connected, or not required)."""
    return any(check.name == "database" and check.status for check in checks)


def setup_session_for(request: Request, max_attempts: int, window_seconds: int) -> SetupSession:
    return SetupSession(
        MappingSessionStore(request.session),
        max_attempts=max_attempts,
        window_seconds=window_seconds,
    )


def render_wizard_response(
    checks: list[DependencyCheckResult],
    session: SetupSession,
    config: ConnectionConfig,
) -> HTMLResponse:
    html = render_wizard(checks, session.get_or_create_csrf_token(), config)
    return HTMLResponse(html, status_code=503, headers=_NO_CACHE)


class EnvironmentGateMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        checker: EnvironmentChecker,
        credentials: CredentialStore,
        max_attempts: int = 5,
        window_seconds: int = 900,
    ) -> None:
        super().__init__(app)
        self.checker = checker
        self.credentials = credentials
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path

        # Static assets never need the environment checks
        if _STATIC_ASSET_RE.search(path):
            return await call_next(request)

        checks = await self.checker.run_checks()
        request.state.environment_checks = checks
        configured = all_passing(checks)

        if is_setup_path(path):
            # SECURITY: a working database connection can never be replaced from
            # here, even while another check (Redis, assets) is still failing
            if database_configured(checks):
                return redirect_to_home()
            if path == SETUP_DATABASE_PATH and request.method == "POST":
                return await self._handle_database_setup(request, checks)
            return await call_next(request)

        if not configured:
            failing = [check.name for check in checks if not check.status]
            logger.info("Blocking %s %s: failing checks %s", request.method, path, failing)
            return render_wizard_response(checks, self._session(request), self.credentials.read())

        return await call_next(request)

    def _session(self, request: Request) -> SetupSession:
        return setup_session_for(request, self.max_attempts, self.window_seconds)

    async def _handle_database_setup(
        self, request: Request, checks: list[DependencyCheckResult]
    ) -> Response:
        session = self._session(request)

        # SECURITY: rate limit first, before any other work
        if not session.check_rate_limit():
            return self._render_error(
                checks, session, "Too many attempts. Please wait 15 minutes before trying again."
            )

        form = await request.form()

        if not session.validate_csrf(_form_value(form, CSRF_TOKEN_NAME)):
            session.record_failed_attempt()
            logger.warning("Rejected setup submission with invalid CSRF token")
            return self._render_error(
                checks,
                session,
                "Invalid security token. Please refresh the page and try again. "
                f"({session.remaining_attempts()} attempts remaining)",
            )

        try:
            config = ConnectionConfig.from_form({
                name: _form_value(form, name)
                for name in ("driver", "host", "port", "database", "username", "password")
            })
        except SetupError as exc:
            session.record_failed_attempt()
            return self._render_error(
                checks,
                session,
                f"Connection failed: {exc} ({session.remaining_attempts()} attempts remaining)",
            )

        result = await try_database_connection(config, timeout=self.checker.database_timeout)
        if not result.success:
            session.record_failed_attempt()
            return self._render_error(
                checks,
                session,
                f"Connection failed: {result.error} ({session.remaining_attempts()} attempts remaining)",
                config,
            )

        if not self.credentials.write(config):
            session.record_failed_attempt()
            return self._render_error(
                checks,
                session,
                "Failed to update the environment file. Please check file permissions. "
                f"({session.remaining_attempts()} attempts remaining)",
                config,
            )

        session.clear_rate_limit()
        session.regenerate_csrf_token()
        logger.info("Database setup completed (%s)", config.describe())
        return redirect_to_home()

    def _render_error(
        self,
        checks: list[DependencyCheckResult],
        session: SetupSession,
        error: str,
        submitted: ConnectionConfig | None = None,
    ) -> HTMLResponse:
        database_check = DependencyCheckResult(
            name="database",
            label="Database",
            description="Database connection",
            required=True,
            status=False,
            error=error,
            show_form=True,
        )
        merged = [database_check] + [check for check in checks if check.name != "database"]
        return render_wizard_response(merged, session, submitted or self.credentials.read())


def _form_value(form, name: str) -> str | None:
    value = form.get(name)
    return value if isinstance(value, str) else None
