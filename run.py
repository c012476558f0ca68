#!/usr/bin/env python3
"""
Starter Kit - Prerequisite Check & Launcher

Validates the environment before the application is imported, then starts
the web server. Runs on the standard library only, so it can report missing
packages before anything third-party is loaded.

Usage:
    python run.py                    # Check prerequisites, then start the server
    python run.py --check-only       # Run checks without starting the server
    python run.py --create-dirs      # Create missing runtime directories
    python run.py --host 0.0.0.0     # Network accessible
    python run.py --reload           # Auto-reload on code changes

Checks:
    - Python 3.11+
    - Required Python packages installed (pip install -e .)
    - Writable runtime directories: logs, tmp, tmp/cache, tmp/sessions, tmp/tests
    - node_modules present when package.json exists (npm install)
    - redis client installed when REDIS_HOST is set
    - config/.env present, or a template the setup wizard can seed it from
    - Server port available

Database connectivity is not checked here: the application serves a setup
wizard for it once it is running.
"""

import argparse
import importlib.util
import os
import socket
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


# ============================================================================
# Constants
# ============================================================================

PYTHON_MIN_VERSION = (3, 11)

DEFAULT_HOST = '127.0.0.1'
DEFAULT_PORT = 8765

PROJECT_ROOT = Path(__file__).resolve().parent
BACKEND_DIR = PROJECT_ROOT / 'backend'
ENV_FILE = Path('config') / '.env'
ENV_TEMPLATE = Path('config') / '.env.example'

# Importable module name -> (description, distribution to install)
REQUIRED_MODULES: Dict[str, Tuple[str, str]] = {
    'fastapi': ('Web framework', 'fastapi'),
    'uvicorn': ('ASGI server', 'uvicorn'),
    'sqlalchemy': ('Database toolkit', 'sqlalchemy'),
    'pydantic_settings': ('Settings management', 'pydantic-settings'),
    'dotenv': ('.env file parsing', 'python-dotenv'),
    'jinja2': ('Setup wizard templates', 'jinja2'),
    'itsdangerous': ('Signed session cookies', 'itsdangerous'),
    'multipart': ('Form parsing', 'python-multipart'),
    'httpx': ('HTTP client for asset dev server checks', 'httpx'),
}

WRITABLE_DIRECTORIES: Dict[str, str] = {
    'logs': 'Log files directory',
    'tmp': 'Temporary files directory',
    'tmp/cache': 'Cache directory',
    'tmp/sessions': 'Sessions directory',
    'tmp/tests': 'Test cache directory',
}


# ANSI color codes
class Color:
    RESET = '\033[0m'
    BOLD = '\033[1m'
    RED = '\033[31m'
    GREEN = '\033[32m'
    YELLOW = '\033[33m'
    CYAN = '\033[36m'
    GRAY = '\033[90m'


# ============================================================================
# Exception Classes
# ============================================================================

class CheckError(Exception):
    """Critical check failure that prevents startup."""
    pass


class CheckWarning(Exception):
    """Non-critical check failure that allows startup with warning."""
    pass


class CheckSkipped(Exception):
    """Check was skipped (e.g., not applicable for this project)."""
    pass


# ============================================================================
# Env file parsing
# ============================================================================

def read_env_file_value(env_file: Path, key: str) -> Optional[str]:
    """Value of ``key`` in a shell-style env file (``[export ]KEY=value`` lines).

    Later assignments win. Returns None when the file is missing or the value
    is empty.
    """
    try:
        lines = env_file.read_text(encoding='utf-8').splitlines()
    except (OSError, UnicodeDecodeError):
        return None

    value = None
    for line in lines:
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        if line.startswith('export '):
            line = line[len('export '):].lstrip()
        name, sep, raw = line.partition('=')
        if sep and name.strip() == key:
            value = raw.strip().strip('"').strip("'")
    return value or None


# ============================================================================
# PrerequisiteChecker
# ============================================================================

class PrerequisiteChecker:
    """Validates environment prerequisites before starting the server."""

    def __init__(self, config: Dict[str, Any], color_enabled: bool = True,
                 root: Path = PROJECT_ROOT):
        self.config = config
        self.color_enabled = color_enabled
        self.root = root
        self.create_dirs = config.get('create_dirs', False)
        self.errors: List[Tuple[str, str]] = []
        self.warnings: List[Tuple[str, str]] = []
        self.passed: List[str] = []

    def _colorize(self, text: str, color: str) -> str:
        """Apply color to text if colors are enabled."""
        if not self.color_enabled:
            return text
        return f"{color}{text}{Color.RESET}"

    def check_all(self) -> bool:
        """Run all checks. Returns True if all critical checks pass."""
        checks = [
            ("Python version", self.check_python_version),
            ("Python packages", self.check_python_packages),
            ("Writable directories", self.check_writable_directories),
            ("Node.js dependencies", self.check_node_modules),
            ("Redis client", self.check_redis_client),
            ("Environment file", self.check_env_file),
            ("Server port", self.check_port),
        ]

        for name, check_func in checks:
            try:
                check_func()
            except CheckError as e:
                self.errors.append((name, str(e)))
            except CheckWarning as e:
                self.warnings.append((name, str(e)))
            except CheckSkipped:
                pass
            else:
                self.passed.append(name)

        return len(self.errors) == 0

    # ------------------------------------------------------------------
    # Individual checks
    # ------------------------------------------------------------------

    def check_python_version(self):
        version = sys.version_info[:2]
        if tuple(version) < PYTHON_MIN_VERSION:
            raise CheckError(
                f"Python {PYTHON_MIN_VERSION[0]}.{PYTHON_MIN_VERSION[1]}+ required "
                f"(found {version[0]}.{version[1]})\n"
                f"    Fix: Install a newer Python: https://www.python.org/downloads/"
            )

    def check_python_packages(self):
        missing = [
            (module, description, dist)
            for module, (description, dist) in REQUIRED_MODULES.items()
            if not self._module_available(module)
        ]
        if missing:
            lines = [f"    - {dist} ({description})" for _, description, dist in missing]
            raise CheckError(
                "Required Python packages are not installed:\n"
                + "\n".join(lines) + "\n"
                "    Fix: pip install -e ."
            )

    def check_writable_directories(self):
        problems = []
        for rel_path in WRITABLE_DIRECTORIES:
            path = self.root / rel_path
            if not path.is_dir() and self.create_dirs:
                try:
                    path.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    problems.append(f"Directory '{rel_path}' could not be created: {e}")
                    continue
            if not path.is_dir():
                problems.append(f"Directory '{rel_path}' does not exist")
            elif not os.access(path, os.W_OK):
                problems.append(f"Directory '{rel_path}' is not writable")

        if problems:
            raise CheckError(
                "\n".join(problems) + "\n"
                "    Fix: python3 run.py --create-dirs (or fix ownership/permissions)"
            )

    def check_node_modules(self):
        if not (self.root / 'package.json').is_file():
            raise CheckSkipped()
        if not (self.root / 'node_modules').is_dir():
            raise CheckError(
                "Node modules not found\n"
                "    Fix: npm install"
            )

    def check_redis_client(self):
        # The application reads config/.env before the process environment
        redis_host = read_env_file_value(self.root / ENV_FILE, 'REDIS_HOST') or os.getenv('REDIS_HOST')
        if not redis_host:
            raise CheckSkipped()
        if not self._module_available('redis'):
            raise CheckError(
                f"Python 'redis' package is not installed but REDIS_HOST is configured ({redis_host})\n"
                "    Fix: pip install redis, or remove REDIS_HOST to run without Redis caching"
            )

    def check_env_file(self):
        env_file = self.root / ENV_FILE
        if env_file.is_file():
            return
        if (self.root / ENV_TEMPLATE).is_file():
            raise CheckWarning(
                f"{ENV_FILE} not found\n"
                f"    Note: The setup wizard will create it from {ENV_TEMPLATE}"
            )
        raise CheckError(
            f"Neither {ENV_FILE} nor {ENV_TEMPLATE} exists\n"
            f"    Fix: Restore {ENV_TEMPLATE} from version control"
        )

    def check_port(self):
        host = self.config.get('host', DEFAULT_HOST)
        port = self.config.get('port', DEFAULT_PORT)
        if not self._is_port_available(host, port):
            raise CheckError(
                f"Port {port} is already in use\n"
                f"    Fix: Stop the existing process or use --port <port>"
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _module_available(self, module: str) -> bool:
        try:
            return importlib.util.find_spec(module) is not None
        except (ImportError, ValueError):
            return False

    def _is_port_available(self, host: str, port: int) -> bool:
        """Check if a port is available for binding."""
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                s.bind((host, port))
                return True
        except OSError:
            return False

    def print_results(self):
        """Print check results with colored output."""
        for name in self.passed:
            print(f"  {self._colorize('✓', Color.GREEN)} {name}")

        if self.errors:
            print(f"\n{self._colorize('❌ Prerequisite checks failed:', Color.RED + Color.BOLD)}\n")
            for name, error in self.errors:
                print(f"  {self._colorize('•', Color.RED)} {name}: {error}\n")
            print(f"{self._colorize('Fix the issues above and try again.', Color.RED)}\n")

        if self.warnings:
            print(f"\n{self._colorize('⚠️  Warnings:', Color.YELLOW + Color.BOLD)}\n")
            for name, warning in self.warnings:
                print(f"  {self._colorize('•', Color.YELLOW)} {name}: {warning}\n")

        if not self.errors and not self.warnings:
            print(f"\n{self._colorize('✅ All checks passed', Color.GREEN + Color.BOLD)}\n")
        elif not self.errors:
            print(f"\n{self._colorize('✅ All critical checks passed', Color.GREEN + Color.BOLD)}\n")


# ============================================================================
# Launcher
# ============================================================================

def build_server_command(host: str, port: int, reload: bool = False) -> List[str]:
    """uvicorn command line for the application factory."""
    cmd = [
        sys.executable, '-m', 'uvicorn',
        'starterkit.main:create_app', '--factory',
        '--app-dir', str(BACKEND_DIR),
        '--host', host,
        '--port', str(port),
    ]
    if reload:
        cmd.append('--reload')
    return cmd


def start_server(host: str, port: int, reload: bool, color_enabled: bool) -> int:
    cmd = build_server_command(host, port, reload)
    url = f"http://{'localhost' if host in ('0.0.0.0', '127.0.0.1') else host}:{port}"
    message = f"🚀 Starting server at {url}"
    print(f"{Color.CYAN}{message}{Color.RESET}" if color_enabled else message)
    try:
        return subprocess.run(cmd, cwd=str(PROJECT_ROOT)).returncode
    except KeyboardInterrupt:
        return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Check prerequisites and start the Starter Kit server")
    parser.add_argument('--host', default=DEFAULT_HOST, help=f"Bind address (default {DEFAULT_HOST})")
    parser.add_argument('--port', type=int, default=DEFAULT_PORT, help=f"Port (default {DEFAULT_PORT})")
    parser.add_argument('--check-only', action='store_true', help="Run checks without starting the server")
    parser.add_argument('--create-dirs', action='store_true', help="Create missing runtime directories")
    parser.add_argument('--reload', action='store_true', help="Auto-reload on code changes")
    parser.add_argument('--no-color', action='store_true', help="Disable colored output")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    color_enabled = not args.no_color and sys.stdout.isatty()

    checker = PrerequisiteChecker(
        config={
            'host': args.host,
            'port': args.port,
            'create_dirs': args.create_dirs,
        },
        color_enabled=color_enabled,
    )
    print("Checking prerequisites...\n")
    ok = checker.check_all()
    checker.print_results()

    if not ok:
        return 1
    if args.check_only:
        return 0
    return start_server(args.host, args.port, args.reload, color_enabled)


if __name__ == '__main__':
    sys.exit(main())
