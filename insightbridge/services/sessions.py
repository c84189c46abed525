import logging
import secrets
import time
from collections.abc import Callable

from insightbridge import settings

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return secrets.token_hex(16)


class SessionRegistry:
    """Known X-Session-ID values and when each was last seen."""

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = settings.SESSION_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._last_access: dict[str, float] = {}

    def resolve(self, session_id: str | None) -> str:
        """Return session_id if it is known, else register and return a fresh one."""
        now = self._clock()
        if session_id and session_id in self._last_access:
            self._last_access[session_id] = now
            return session_id

        session_id = new_session_id()
        self._last_access[session_id] = now
        logger.info("Created new session: %s...", session_id[:8])
        return session_id

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._last_access

    def __len__(self) -> int:
        return len(self._last_access)

    def sweep_expired(self) -> list[str]:
        now = self._clock()
        expired = [sid for sid, seen in self._last_access.items() if now - seen > self._ttl]
        for sid in expired:
            del self._last_access[sid]
            logger.info("Cleaned up expired session: %s...", sid[:8])
        return expired
