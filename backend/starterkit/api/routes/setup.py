"""Setup wizard pages.

Only reachable while the database check is failing; the environment gate
redirects the whole ``/setup`` namespace home once it passes, and handles
``POST /setup/database`` itself.
"""

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from starterkit.middleware.environment_gate import render_wizard_response, setup_session_for

router = APIRouter()


@router.get("/database", response_class=HTMLResponse)
async def database_setup(request: Request) -> HTMLResponse:
    """Show the database configuration form."""
    checks = getattr(request.state, "environment_checks", None)
    if checks is None:
        checks = await request.app.state.environment_checker.run_checks()

    settings = request.app.state.settings
    session = setup_session_for(
        request,
        settings.setup_rate_limit_attempts,
        settings.setup_rate_limit_window,
    )
    return render_wizard_response(checks, session, request.app.state.credentials.read())
