"""Shared fixtures for launcher / prerequisite checker tests."""

import sys
from pathlib import Path

import pytest

# Ensure project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from run import PrerequisiteChecker, WRITABLE_DIRECTORIES


@pytest.fixture
def project_root(tmp_path):
    """A project tree with every runtime directory and the env template."""
    for rel_path in WRITABLE_DIRECTORIES:
        (tmp_path / rel_path).mkdir(parents=True, exist_ok=True)
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / ".env.example").write_text('export APP_NAME="Test"\n')
    return tmp_path


@pytest.fixture
def checker_factory(project_root):
    """Factory that creates PrerequisiteChecker with configurable options.

    Usage:
        checker = checker_factory(create_dirs=True)
    """
    def _factory(create_dirs: bool = False, port: int = 8765, root: Path | None = None):
        config = {
            "host": "127.0.0.1",
            "port": port,
            "create_dirs": create_dirs,
        }
        return PrerequisiteChecker(config=config, color_enabled=False, root=root or project_root)
    return _factory
