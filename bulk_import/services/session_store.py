import logging
import time
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional

from ..core.logging_config import log_with_context
from ..models import ImportSession

logger = logging.getLogger(__name__)

SessionFactory = Callable[[str, datetime, Optional[datetime]], ImportSession]
ReleaseHook = Callable[[ImportSession], Awaitable[None]]


def _to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class SessionStore:
    """
    In-memory registry of import sessions for one source kind.

    Sessions expire ``ttl_seconds`` after creation (never, when None) and the
    oldest are evicted once more than ``max_sessions`` are held. Expired
    sessions are dropped lazily on lookup and in bulk by ``sweep()``. Every
    removal path runs ``on_release`` once so per-session resources such as
    staged files are freed; release failures are logged, not raised.
    """

    def __init__(self, name: str, ttl_seconds: Optional[float] = None,
                 max_sessions: Optional[int] = None,
                 on_release: Optional[ReleaseHook] = None,
                 clock: Callable[[], float] = time.time):
        if max_sessions is not None and max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.max_sessions = max_sessions
        self._on_release = on_release
        self._clock = clock
        self._sessions: "OrderedDict[str, ImportSession]" = OrderedDict()
        self._expires: Dict[str, Optional[float]] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def create(self, factory: SessionFactory) -> ImportSession:
        """Mint a fresh id, build the session with ``factory`` and register it."""
        session_id = uuid.uuid4().hex
        while session_id in self._sessions:
            session_id = uuid.uuid4().hex

        now = self._clock()
        expires = now + self.ttl_seconds if self.ttl_seconds else None
        session = factory(session_id, _to_datetime(now), _to_datetime(expires) if expires else None)

        self._sessions[session_id] = session
        self._expires[session_id] = expires
        log_with_context(logger, logging.INFO, f"Session created with {len(session.entries)} entries",
                         session_id=session_id, source_kind=session.source_kind.value)

        if self.max_sessions is not None:
            while len(self._sessions) > self.max_sessions:
                oldest = next(iter(self._sessions))
                await self._evict(oldest, "evicted")
        return session

    async def get(self, session_id: str) -> Optional[ImportSession]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if self._is_expired(session_id, self._clock()):
            await self._evict(session_id, "expired")
            return None
        return session

    async def delete(self, session_id: str) -> bool:
        """Remove a session; returns False when it was already gone."""
        return await self._evict(session_id, "deleted")

    async def sweep(self) -> int:
        """Evict every expired session, returning how many were removed."""
        now = self._clock()
        expired = [session_id for session_id in list(self._expires)
                   if self._is_expired(session_id, now)]
        for session_id in expired:
            await self._evict(session_id, "expired")
        return len(expired)

    async def clear(self) -> None:
        for session_id in list(self._sessions):
            await self._evict(session_id, "closed")

    def _is_expired(self, session_id: str, now: float) -> bool:
        expires = self._expires.get(session_id)
        return expires is not None and now >= expires

    async def _evict(self, session_id: str, reason: str) -> bool:
        session = self._sessions.pop(session_id, None)
        self._expires.pop(session_id, None)
        if session is None:
            return False

        log_with_context(logger, logging.INFO, f"Session {reason}",
                         session_id=session_id, source_kind=session.source_kind.value)
        if self._on_release is not None:
            try:
                await self._on_release(session)
            except Exception as e:
                logger.warning(f"Failed to release resources for session {session_id}: {e}")
        return True
