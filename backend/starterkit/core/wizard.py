"""Setup wizard view-model and renderer.

Pure: callers supply the checks, the CSRF token and the config to show.
Rendering goes through Jinja2 with autoescaping, so every value from user
input or external state is HTML-escaped. The password is never pre-filled.
"""

from jinja2 import Environment, PackageLoader, select_autoescape
from pydantic import BaseModel

from starterkit.core.credential_store import ConnectionConfig, DatabaseDriver
from starterkit.core.dependency_probe import DependencyCheckResult
from starterkit.core.setup_session import CSRF_TOKEN_NAME

SETUP_DATABASE_PATH = "/setup/database"

_env = Environment(
    loader=PackageLoader("starterkit", "templates"),
    autoescape=select_autoescape(["html"]),
)


class DriverOption(BaseModel):
    value: str
    label: str
    default_port: str
    selected: bool


class WizardView(BaseModel):
    title: str
    checks: list[DependencyCheckResult]
    failing: list[DependencyCheckResult]
    show_form: bool
    form_action: str = SETUP_DATABASE_PATH
    csrf_field: str = CSRF_TOKEN_NAME
    csrf_token: str
    config: ConnectionConfig
    drivers: list[DriverOption]


def build_wizard_view(
    checks: list[DependencyCheckResult],
    csrf_token: str,
    config: ConnectionConfig,
) -> WizardView:
    failing = [check for check in checks if check.required and not check.status]
    show_form = any(check.show_form for check in failing)
    return WizardView(
        title="Database Configuration" if show_form else "Environment Check",
        checks=checks,
        failing=failing,
        show_form=show_form,
        csrf_token=csrf_token,
        config=config.model_copy(update={"password": ""}),
        drivers=[
            DriverOption(
                value=driver.value,
                label=driver.label,
                default_port="" if driver is DatabaseDriver.SQLITE else driver.default_port,
                selected=driver is config.driver,
            )
            for driver in DatabaseDriver
        ],
    )


def render_wizard(
    checks: list[DependencyCheckResult],
    csrf_token: str,
    config: ConnectionConfig,
) -> str:
    view = build_wizard_view(checks, csrf_token, config)
    return _env.get_template("setup/wizard.html").render(view=view)
