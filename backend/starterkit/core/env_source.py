"""Runtime configuration lookups backed by the managed env file.

Values written by the setup wizard must be visible to the very next request,
so the env file is re-read on every lookup instead of being loaded once into
``os.environ`` at startup. The process environment is the fallback.
"""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

from dotenv import dotenv_values


class ConfigProvider(Protocol):
    def get(self, key: str, default: str | None = None) -> str | None: ...


class EnvFileSource:
    """Layered lookup: managed env file first, then the process environment."""

    def __init__(self, env_file: Path, environ: Mapping[str, str] | None = None) -> None:
        self.env_file = env_file
        self.environ = os.environ if environ is None else environ

    def _file_values(self) -> dict[str, str | None]:
        if not self.env_file.is_file():
            return {}
        return dotenv_values(self.env_file)

    def get(self, key: str, default: str | None = None) -> str | None:
        value = self._file_values().get(key)
        if value:
            return value
        value = self.environ.get(key)
        if value:
            return value
        return default
