"""Keyed, process-local store for live conversations.

One entry per call/chat session. Entries idle longer than the TTL are
evicted on the next access, and every session has its own asyncio lock so
two webhooks for the same call are handled one after the other.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Callable

from selaro.session import ConversationState

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 2 * 60 * 60


class SessionStore:
    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, ConversationState] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        # Tasks holding or waiting on each lock
        self._lock_refs: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> ConversationState | None:
        self.evict_expired()
        state = self._sessions.get(session_id)
        if state is not None:
            state.last_seen = self._clock()
        return state

    def get_or_create(self, session_id: str, **kwargs) -> tuple[ConversationState, bool]:
        """Return (state, created). New states are built from kwargs."""
        state = self.get(session_id)
        if state is not None:
            return state, False
        state = ConversationState(session_id=session_id, **kwargs)
        state.last_seen = self._clock()
        self._sessions[session_id] = state
        logger.info("Session created: %s (%d live)", session_id, len(self._sessions))
        return state, True

    def discard(self, session_id: str) -> ConversationState | None:
        """Forget a session. A lock still in use is released by its last holder."""
        if session_id not in self._lock_refs:
            self._locks.pop(session_id, None)
        return self._sessions.pop(session_id, None)

    def evict_expired(self) -> int:
        """Drop sessions idle longer than the TTL. Sessions mid-turn are kept."""
        now = self._clock()
        expired = [
            sid for sid, state in self._sessions.items()
            if now - state.last_seen > self.ttl_seconds
            and sid not in self._lock_refs
        ]
        for sid in expired:
            self.discard(sid)
        if expired:
            logger.info("Evicted %d idle sessions", len(expired))
        return len(expired)

    @asynccontextmanager
    async def lock(self, session_id: str):
        """Serialize turns for one session id."""
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._lock_refs[session_id] = self._lock_refs.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_refs[session_id] -= 1
            if not self._lock_refs[session_id]:
                del self._lock_refs[session_id]
                if session_id not in self._sessions:
                    self._locks.pop(session_id, None)
