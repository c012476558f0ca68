"""Database credential persistence.

Reads the active connection settings from ``DATABASE_URL`` and rewrites the
managed env file when the setup wizard saves new credentials.

SECURITY NOTES:
- The env file stores credentials in plaintext
- After every write the file is restricted to 0600 (owner read/write only)
- Keep the env file out of version control
"""

import logging
import os
import re
import shutil
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote, urlsplit

from pydantic import BaseModel
from sqlalchemy.engine import URL

from starterkit.core.env_source import ConfigProvider
from starterkit.core.exceptions import (
    EnvFileWriteError,
    EnvTemplateMissingError,
    InvalidConnectionFieldError,
    SetupError,
    UnsupportedDriverError,
)

logger = logging.getLogger(__name__)

DATABASE_URL_KEY = "DATABASE_URL"

# Matches both "DATABASE_URL=" and "export DATABASE_URL=" assignments
_ASSIGNMENT_RE = re.compile(r"^(export\s+)?DATABASE_URL\s*=.*$", re.MULTILINE)

# Host and port are stored unencoded inside a double-quoted assignment
_INVALID_HOST_RE = re.compile(r"[\s\"'\\/@?#]")


class DatabaseDriver(str, Enum):
    MYSQL = "mysql"
    PGSQL = "pgsql"
    SQLITE = "sqlite"

    @property
    def label(self) -> str:
        return _DRIVER_LABELS[self]

    @property
    def default_port(self) -> str:
        return "5432" if self is DatabaseDriver.PGSQL else "3306"


_DRIVER_LABELS = {
    DatabaseDriver.MYSQL: "MySQL / MariaDB",
    DatabaseDriver.PGSQL: "PostgreSQL",
    DatabaseDriver.SQLITE: "SQLite",
}

# Async SQLAlchemy dialects used to test a connection
_SQLALCHEMY_DRIVERS = {
    DatabaseDriver.MYSQL: "mysql+aiomysql",
    DatabaseDriver.PGSQL: "postgresql+asyncpg",
    DatabaseDriver.SQLITE: "sqlite+aiosqlite",
}


class ConnectionConfig(BaseModel):
    """Connection settings collected by the setup wizard."""

    driver: DatabaseDriver = DatabaseDriver.MYSQL
    host: str = "localhost"
    port: str = "3306"
    database: str = ""
    username: str = ""
    password: str = ""

    @classmethod
    def defaults(cls) -> "ConnectionConfig":
        return cls()

    @classmethod
    def from_form(cls, data: Mapping[str, Any]) -> "ConnectionConfig":
        """Build a config from submitted form fields, defaulting missing ones."""
        raw_driver = str(data.get("driver") or DatabaseDriver.MYSQL.value)
        try:
            driver = DatabaseDriver(raw_driver)
        except ValueError:
            raise UnsupportedDriverError(raw_driver) from None

        def field(name: str, default: str) -> str:
            value = data.get(name)
            return default if value is None else str(value)

        host = field("host", "localhost")
        if _INVALID_HOST_RE.search(host):
            raise InvalidConnectionFieldError("host")
        port = field("port", "3306").strip()
        if port and not (port.isascii() and port.isdigit()):
            raise InvalidConnectionFieldError("port")

        return cls(
            driver=driver,
            host=host,
            port=port,
            database=field("database", ""),
            username=field("username", ""),
            password=field("password", ""),
        )

    def to_url(self) -> str:
        """Compose the URL persisted as ``DATABASE_URL``."""
        return "{driver}://{user}:{password}@{host}:{port}/{database}".format(
            driver=self.driver.value,
            user=quote(self.username, safe=""),
            password=quote(self.password, safe=""),
            host=self.host,
            port=self.port,
            database=quote(self.database, safe="/"),
        )

    def sqlalchemy_url(self) -> URL:
        """URL for an async SQLAlchemy engine."""
        drivername = _SQLALCHEMY_DRIVERS[self.driver]
        if self.driver is DatabaseDriver.SQLITE:
            return URL.create(drivername, database=self.database)
        return URL.create(
            drivername,
            username=self.username or None,
            password=self.password or None,
            host=self.host or None,
            port=int(self.port) if self.port.isdigit() else None,
            database=self.database or None,
        )

    def describe(self) -> str:
        """Credential-free summary for status pages."""
        if self.driver is DatabaseDriver.SQLITE:
            return f"{self.driver.label} at {self.database or '(no file)'}"
        return f"{self.driver.label} at {self.host}:{self.port}/{self.database}"


def _driver_for_scheme(scheme: str) -> DatabaseDriver:
    if "postgres" in scheme or scheme == "pgsql":
        return DatabaseDriver.PGSQL
    if "sqlite" in scheme:
        return DatabaseDriver.SQLITE
    return DatabaseDriver.MYSQL


def parse_database_url(url: str) -> ConnectionConfig | None:
    """Parse a connection URL. Returns None when it cannot be parsed."""
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError:
        return None
    if not parts.scheme:
        return None

    driver = _driver_for_scheme(parts.scheme.lower())
    path = parts.path[1:] if parts.path.startswith("/") else parts.path
    defaults = ConnectionConfig.defaults()

    return ConnectionConfig(
        driver=driver,
        host=parts.hostname or defaults.host,
        port=str(port) if port is not None else driver.default_port,
        database=unquote(path) or defaults.database,
        username=unquote(parts.username) if parts.username else defaults.username,
        password=unquote(parts.password) if parts.password else defaults.password,
    )


def atomic_write(target: Path, content: str, mode: int = 0o600) -> None:
    """Write content to a file atomically via a temp file + rename.

    The temp file is created with ``mode`` so its contents are never readable
    by other users, and it is removed if the rename does not happen.
    """
    tmp_path = target.with_suffix(target.suffix + ".tmp")
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    try:
        with os.fdopen(fd, "w") as fh:
            fh.write(content)
        # O_CREAT ignores mode for a leftover temp file
        os.chmod(tmp_path, mode)
        tmp_path.replace(target)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


class CredentialStore:
    """Reads and persists the database connection stored in the env file."""

    def __init__(self, env_file: Path, template_file: Path, source: ConfigProvider) -> None:
        self.env_file = env_file
        self.template_file = template_file
        self.source = source

    def read(self) -> ConnectionConfig:
        """Return the configured connection, or defaults when none is usable."""
        url = self.source.get(DATABASE_URL_KEY)
        if url:
            config = parse_database_url(url)
            if config is not None:
                return config
            logger.warning("Ignoring unparseable %s", DATABASE_URL_KEY)
        return ConnectionConfig.defaults()

    def write(self, config: ConnectionConfig) -> bool:
        """Persist ``config``. Returns False instead of raising on failure."""
        try:
            self.update(config)
        except SetupError as exc:
            logger.error("Failed to update %s: %s", self.env_file, exc)
            return False
        return True

    def update(self, config: ConnectionConfig) -> None:
        """Persist ``config``, replacing any existing assignment in place.

        Raises EnvTemplateMissingError when the env file does not exist and
        cannot be seeded, EnvFileWriteError on I/O failure.
        """
        self._ensure_env_file()

        try:
            content = self.env_file.read_text()
        except OSError as exc:
            raise EnvFileWriteError(f"Cannot read {self.env_file}: {exc}") from exc

        assignment = f'DATABASE_URL="{config.to_url()}"'
        if _ASSIGNMENT_RE.search(content):
            content = _ASSIGNMENT_RE.sub(lambda m: (m.group(1) or "") + assignment, content)
        else:
            if content and not content.endswith("\n"):
                content += "\n"
            content += f"export {assignment}\n"

        try:
            atomic_write(self.env_file, content)
        except OSError as exc:
            raise EnvFileWriteError(f"Cannot write {self.env_file}: {exc}") from exc

        try:
            self.env_file.chmod(0o600)
        except OSError:
            logger.warning("Could not restrict permissions on %s", self.env_file, exc_info=True)

        logger.info("Saved %s connection to %s", config.driver.label, self.env_file)

    def _ensure_env_file(self) -> None:
        if self.env_file.exists():
            return
        if not self.template_file.is_file():
            raise EnvTemplateMissingError(
                f"{self.env_file} does not exist and no template found at {self.template_file}"
            )
        try:
            self.env_file.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(self.template_file, self.env_file)
        except OSError as exc:
            raise EnvFileWriteError(f"Cannot create {self.env_file}: {exc}") from exc
        logger.info("Created %s from %s", self.env_file, self.template_file)
