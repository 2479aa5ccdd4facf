"""
Session store: in-memory conversation histories keyed by client-supplied userId.

One Session per id, created lazily on first reference and kept for the
process lifetime unless the idle TTL evicts it. History is an ordered,
append-only list of Messages; each Session carries an asyncio.Lock so the
pipeline can hold at most one in-flight completion per session.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional

from chatrelay.models import Message

logger = logging.getLogger("chat-relay")


@dataclass
class Session:
    session_id: str
    created_at: float
    last_active: float
    history: List[Message] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def append(self, message: Message) -> None:
        self.history.append(message)

    def trim(self, max_messages: int) -> int:
        """
        Drop the oldest entries so at most `max_messages` remain.

        The window always starts at a user message: leading assistant
        replies whose prompt fell out of the window are dropped too.
        Returns the number of messages dropped.
        """
        if max_messages <= 0 or len(self.history) <= max_messages:
            return 0
        before = len(self.history)
        del self.history[: before - max_messages]
        while self.history and self.history[0].role != "user":
            del self.history[0]
        return before - len(self.history)


class SessionStore:
    """
    Process-wide mapping from session id to Session.

    `clock` is injectable for TTL tests; defaults to time.monotonic.
    """

    def __init__(self, ttl_seconds: float = 0.0, clock: Optional[Callable[[], float]] = None) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))

    def get(self, session_id: str) -> Optional[Session]:
        """Return the session or None; never creates."""
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> Session:
        """
        Return the stored Session for `session_id`, creating an empty one if unseen.

        The same object is returned on every call; callers append to its history.
        Runs without awaiting, so creation is atomic on the event loop.
        """
        now = self._clock()
        self.prune_expired(now=now)
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(session_id=session_id, created_at=now, last_active=now)
            self._sessions[session_id] = session
            logger.debug("created session user=%s total=%d", session_id, len(self._sessions))
        session.last_active = now
        return session

    def touch(self, session: Session) -> None:
        session.last_active = self._clock()

    def prune_expired(self, now: Optional[float] = None) -> int:
        """Evict sessions idle longer than the TTL. Sessions with a turn in flight are kept."""
        if self.ttl_seconds <= 0:
            return 0
        now = self._clock() if now is None else now
        expired = [
            sid
            for sid, s in self._sessions.items()
            if now - s.last_active > self.ttl_seconds and not s.lock.locked()
        ]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("evicted %d idle session(s); remaining=%d", len(expired), len(self._sessions))
        return len(expired)

    def history(self, session_id: str) -> List[Message]:
        """Snapshot copy of a session's history (empty list if unknown)."""
        session = self._sessions.get(session_id)
        return list(session.history) if session else []
