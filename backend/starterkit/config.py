"""Application configuration."""

from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings

_INSECURE_SESSION_DEFAULTS = {"change-me-in-production", "change-me", "secret", ""}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Development mode: when False, enforces strict security
    dev_mode: bool = True
    app_name: str = "Starter Kit"

    # Sessions (signed cookie, holds setup CSRF token + rate-limit window)
    session_secret_key: str = "change-me-in-production"
    session_cookie: str = "starterkit_session"
    session_max_age: int = 60 * 60 * 24 * 14  # 2 weeks

    # Managed credential file and the template used to seed it
    env_file_path: Path = Path("config/.env")
    env_template_path: Path = Path("config/.env.example")

    # Explicit dependency requirements. None means "derive at startup":
    # database from the ORM registry, assets from the presence of package.json.
    database_required: bool | None = None
    assets_required: bool | None = None
    project_root: Path = Path(".")

    # Probe timeouts (seconds)
    database_connect_timeout: float = 3.0
    redis_default_timeout: float = 2.0
    vite_dev_server_timeout: float = 1.0

    # Frontend assets
    vite_hot_file: Path = Path("webroot/hot")
    vite_manifest_path: Path = Path("webroot/build/.vite/manifest.json")

    # Setup wizard rate limiting
    setup_rate_limit_attempts: int = 5
    setup_rate_limit_window: int = 900  # 15 minutes

    # Logging
    log_level: str = "info"

    @model_validator(mode="after")
    def _validate_production(self) -> "Settings":
        if not self.dev_mode:
            if self.session_secret_key in _INSECURE_SESSION_DEFAULTS:
                raise ValueError(
                    "SESSION_SECRET_KEY must be set to a secure value when DEV_MODE=false"
                )
            if len(self.session_secret_key) < 32:
                raise ValueError(
                    "SESSION_SECRET_KEY must be at least 32 characters when DEV_MODE=false"
                )
        return self

    class Config:
        env_file = "config/.env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
