"""In-process session registry.

Sessions live in an arena of slots with an id -> slot index. Freed slots are
reused, ids never change. Eviction is explicit: sweep() drops idle sessions,
and a session with a generation in flight is only marked; it is evicted when
the run is released.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Protocol

from game_forge.errors import SessionNotFoundError
from game_forge.models import Stage

from .session import ConversationSession

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    def create(self, session_id: str | None = None) -> ConversationSession: ...
    def get(self, session_id: str) -> ConversationSession: ...
    def find(self, session_id: str) -> ConversationSession | None: ...
    def remove(self, session_id: str) -> bool: ...
    def touch(self, session_id: str) -> None: ...
    def lock_for(self, session_id: str) -> asyncio.Lock: ...
    def hold(self, session_id: str) -> None: ...
    def release(self, session_id: str) -> None: ...
    def sweep(self, now: float | None = None) -> list[str]: ...


@dataclass
class _Slot:
    session: ConversationSession
    last_active: float
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    held: bool = False
    evict_pending: bool = False


class SessionRegistry:
    """Arena-backed session store with idle eviction.

    Args:
        idle_timeout: Seconds without activity before a session is swept.
        max_sessions: Capacity; the least recently active idle session is
                      evicted to make room.
        clock:        Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        idle_timeout: float = 1800.0,
        max_sessions: int = 1000,
        clock=time.monotonic,
    ) -> None:
        self._idle_timeout = idle_timeout
        self._max_sessions = max_sessions
        self._clock = clock
        self._slots: list[_Slot | None] = []
        self._index: dict[str, int] = {}
        self._free: list[int] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._index

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._index)

    def create(self, session_id: str | None = None) -> ConversationSession:
        """Register a new session. An existing id returns the existing session."""
        with self._lock:
            if session_id is not None and session_id in self._index:
                slot = self._slots[self._index[session_id]]
                slot.last_active = self._clock()
                return slot.session
            if len(self._index) >= self._max_sessions:
                self._evict_oldest_locked()
            session = ConversationSession(session_id)
            slot = _Slot(session=session, last_active=self._clock())
            if self._free:
                pos = self._free.pop()
                self._slots[pos] = slot
            else:
                pos = len(self._slots)
                self._slots.append(slot)
            self._index[session.id] = pos
        logger.info("session %s created (slot %d)", session.id, pos)
        return session

    def _slot(self, session_id: str) -> _Slot:
        pos = self._index.get(session_id)
        if pos is None:
            raise SessionNotFoundError(session_id)
        return self._slots[pos]

    def get(self, session_id: str) -> ConversationSession:
        with self._lock:
            return self._slot(session_id).session

    def find(self, session_id: str) -> ConversationSession | None:
        with self._lock:
            pos = self._index.get(session_id)
            return self._slots[pos].session if pos is not None else None

    def touch(self, session_id: str) -> None:
        with self._lock:
            self._slot(session_id).last_active = self._clock()

    def lock_for(self, session_id: str) -> asyncio.Lock:
        """Per-session lock keeping turns in arrival order."""
        with self._lock:
            return self._slot(session_id).lock

    def remove(self, session_id: str) -> bool:
        with self._lock:
            return self._remove_locked(session_id)

    def _remove_locked(self, session_id: str) -> bool:
        pos = self._index.pop(session_id, None)
        if pos is None:
            return False
        self._slots[pos] = None
        self._free.append(pos)
        logger.info("session %s evicted", session_id)
        return True

    # -- in-flight runs ------------------------------------------------------

    def hold(self, session_id: str) -> None:
        """Mark a session as having a run in flight; it will not be evicted."""
        with self._lock:
            self._slot(session_id).held = True

    def release(self, session_id: str) -> None:
        """Clear the in-flight mark, performing any deferred eviction."""
        with self._lock:
            pos = self._index.get(session_id)
            if pos is None:
                return
            slot = self._slots[pos]
            slot.held = False
            slot.last_active = self._clock()
            if slot.evict_pending:
                self._remove_locked(session_id)

    # -- eviction --------------------------------------------------------------

    def sweep(self, now: float | None = None) -> list[str]:
        """Evict sessions idle longer than idle_timeout. Returns evicted ids."""
        now = self._clock() if now is None else now
        evicted: list[str] = []
        with self._lock:
            for session_id, pos in list(self._index.items()):
                slot = self._slots[pos]
                if now - slot.last_active < self._idle_timeout:
                    continue
                if slot.held:
                    slot.evict_pending = True
                    continue
                self._remove_locked(session_id)
                evicted.append(session_id)
        if evicted:
            logger.info("swept %d idle sessions", len(evicted))
        return evicted

    def generating_since(self) -> list[tuple[str, float]]:
        """(id, start time) for every session currently generating."""
        with self._lock:
            return [
                (slot.session.id, slot.session.generation_started)
                for slot in self._slots
                if slot is not None
                and slot.session.stage is Stage.GENERATING
                and slot.session.generation_started is not None
            ]

    def _evict_oldest_locked(self) -> None:
        idle = [
            (slot.last_active, slot.session.id)
            for slot in self._slots
            if slot is not None and not slot.held
        ]
        if idle:
            self._remove_locked(min(idle)[1])
