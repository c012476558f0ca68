"""Per-session CSRF token and sliding-window rate limiting for the setup wizard.

The wizard is reachable by any unauthenticated client until the application
is configured, and it tests and persists arbitrary credentials. Both guards
keep their state in the client's session, which is injected as a
``SessionStore`` so tests can substitute a plain dict.

Read-modify-write sequences on the attempt list are not atomic across
concurrent requests from the same session. Under-counting a burst of
duplicate submissions is acceptable: the limiter bounds sustained abuse.
"""

import hmac
import logging
import secrets
import time
from collections.abc import Callable, MutableMapping
from typing import Any, Protocol

logger = logging.getLogger(__name__)

CSRF_TOKEN_NAME = "_setup_csrf_token"
RATE_LIMIT_KEY = "_setup_rate_limit"
RATE_LIMIT_ATTEMPTS = 5
RATE_LIMIT_WINDOW = 900  # seconds


class SessionStore(Protocol):
    def read(self, key: str) -> Any: ...

    def write(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MappingSessionStore:
    """Adapts a mutable mapping (e.g. Starlette's ``request.session``)."""

    def __init__(self, data: MutableMapping[str, Any]) -> None:
        self._data = data

    def read(self, key: str) -> Any:
        return self._data.get(key)

    def write(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class SetupSession:
    def __init__(
        self,
        store: SessionStore,
        max_attempts: int = RATE_LIMIT_ATTEMPTS,
        window_seconds: int = RATE_LIMIT_WINDOW,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock

    # ------------------------------------------------------------------
    # CSRF
    # ------------------------------------------------------------------

    def get_or_create_csrf_token(self) -> str:
        token = self.store.read(CSRF_TOKEN_NAME)
        if not token:
            token = secrets.token_hex(16)
            self.store.write(CSRF_TOKEN_NAME, token)
        return token

    def validate_csrf(self, submitted: str | None) -> bool:
        """Constant-time comparison against the stored token."""
        stored = self.store.read(CSRF_TOKEN_NAME)
        if not stored:
            return False
        return hmac.compare_digest(
            str(stored).encode("utf-8"),
            (submitted or "").encode("utf-8"),
        )

    def regenerate_csrf_token(self) -> None:
        """Drop the token so the next form render mints a fresh one."""
        self.store.delete(CSRF_TOKEN_NAME)

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    def _recent_attempts(self) -> list[float]:
        now = self._clock()
        attempts = self.store.read(RATE_LIMIT_KEY) or []
        return [ts for ts in attempts if now - float(ts) < self.window_seconds]

    def check_rate_limit(self) -> bool:
        """True while fewer than ``max_attempts`` fall inside the window."""
        attempts = self._recent_attempts()
        self.store.write(RATE_LIMIT_KEY, attempts)
        allowed = len(attempts) < self.max_attempts
        if not allowed:
            logger.warning("Setup rate limit exceeded (%d attempts)", len(attempts))
        return allowed

    def record_failed_attempt(self) -> None:
        attempts = self._recent_attempts()
        attempts.append(self._clock())
        self.store.write(RATE_LIMIT_KEY, attempts)

    def clear_rate_limit(self) -> None:
        self.store.delete(RATE_LIMIT_KEY)

    def remaining_attempts(self) -> int:
        return max(0, self.max_attempts - len(self._recent_attempts()))
