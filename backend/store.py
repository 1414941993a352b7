"""
Session store.

The durable home of each Session aggregate (participants and answer ledger
included). Writes are optimistic: ``update`` succeeds only when the caller's
copy still carries the stored version, otherwise ``ConcurrencyConflict``.

Callers always receive deep copies, so mutating a loaded session has no effect
until it is written back.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from typing import Optional

from errors import ConcurrencyConflict, NotFound
from models import Session, SessionStatus


class SessionStore(ABC):
    @abstractmethod
    async def create(self, session: Session) -> Session: ...

    @abstractmethod
    async def get(self, session_id: str) -> Session: ...

    @abstractmethod
    async def get_by_code(self, room_code: str) -> Session: ...

    @abstractmethod
    async def update(self, session: Session, expected_version: int) -> Session: ...

    @abstractmethod
    async def delete(self, session_id: str) -> None: ...

    @abstractmethod
    async def is_code_active(self, room_code: str) -> bool: ...

    @abstractmethod
    async def list_by_quiz(self, quiz_id: str) -> list[Session]: ...


class InMemorySessionStore(SessionStore):
    """Process-local store; versions make every write compare-and-swap."""

    def __init__(self):
        self._sessions: dict[str, Session] = {}  # id -> Session
        self._codes: dict[str, str] = {}  # room code -> id of newest session using it

    async def create(self, session: Session) -> Session:
        if session.id in self._sessions:
            raise ConcurrencyConflict(f"Session {session.id} already exists")
        if await self.is_code_active(session.room_code):
            raise ConcurrencyConflict(f"Room code {session.room_code} is in use")
        stored = copy.deepcopy(session)
        stored.version = 1
        self._sessions[stored.id] = stored
        self._codes[stored.room_code] = stored.id
        return copy.deepcopy(stored)

    async def get(self, session_id: str) -> Session:
        stored = self._sessions.get(session_id)
        if stored is None:
            raise NotFound("Session not found")
        return copy.deepcopy(stored)

    async def get_by_code(self, room_code: str) -> Session:
        session_id = self._codes.get(normalize_code(room_code))
        if session_id is None or session_id not in self._sessions:
            raise NotFound("Game not found. Check the code and try again.")
        return copy.deepcopy(self._sessions[session_id])

    async def update(self, session: Session, expected_version: int) -> Session:
        stored = self._sessions.get(session.id)
        if stored is None:
            raise NotFound("Session not found")
        if stored.version != expected_version:
            raise ConcurrencyConflict(
                f"Stale write for session {session.room_code}: "
                f"expected v{expected_version}, stored v{stored.version}"
            )
        updated = copy.deepcopy(session)
        updated.version = expected_version + 1
        self._sessions[updated.id] = updated
        return copy.deepcopy(updated)

    async def delete(self, session_id: str) -> None:
        stored = self._sessions.pop(session_id, None)
        if stored is None:
            raise NotFound("Session not found")
        if self._codes.get(stored.room_code) == session_id:
            del self._codes[stored.room_code]

    async def is_code_active(self, room_code: str) -> bool:
        session_id = self._codes.get(normalize_code(room_code))
        if session_id is None:
            return False
        stored = self._sessions.get(session_id)
        return stored is not None and stored.status != SessionStatus.ENDED

    async def list_by_quiz(self, quiz_id: str) -> list[Session]:
        matches = [s for s in self._sessions.values() if s.quiz_id == quiz_id]
        return [copy.deepcopy(s) for s in sorted(matches, key=lambda s: s.created_at, reverse=True)]

    def __len__(self) -> int:
        return len(self._sessions)


def normalize_code(room_code: str) -> str:
    return (room_code or "").strip().upper()
