"""Shared test fixtures for Starter Kit backend tests."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from starterkit.config import Settings
from starterkit.core.credential_store import CredentialStore
from starterkit.core.env_source import EnvFileSource
from starterkit.main import create_app

from gate_helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def env_paths(tmp_path) -> tuple[Path, Path]:
    """(env file, template) under tmp_path; only the template exists."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    template = config_dir / ".env.example"
    template.write_text('export APP_NAME="Starter Kit"\n# export DATABASE_URL=""\n')
    return config_dir / ".env", template


@pytest.fixture
def credentials(env_paths) -> CredentialStore:
    env_file, template = env_paths
    return CredentialStore(env_file, template, EnvFileSource(env_file, environ={}))


@pytest.fixture
def missing_database_url(tmp_path) -> str:
    """A SQLite URL that cannot be opened (parent directory does not exist)."""
    return f"sqlite:///{tmp_path / 'missing' / 'app.db'}"


@pytest.fixture
def make_settings(tmp_path, env_paths):
    """Factory for Settings isolated from the developer's config/.env."""
    env_file, template = env_paths

    def _factory(**overrides) -> Settings:
        values = {
            "env_file_path": env_file,
            "env_template_path": template,
            "database_required": True,
            "assets_required": False,
            "project_root": tmp_path,
            "vite_hot_file": tmp_path / "webroot" / "hot",
            "vite_manifest_path": tmp_path / "webroot" / "build" / "manifest.json",
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _factory


@pytest.fixture
def make_client(make_settings):
    """Factory for a TestClient that does not follow redirects."""

    def _factory(environ: dict[str, str] | None = None, **overrides) -> TestClient:
        app = create_app(make_settings(**overrides), environ=environ or {})
        return TestClient(app, follow_redirects=False)

    return _factory
