"""
Game error taxonomy
===================
Every failure a command can report to a host or student client.

Clients decide how to react from three attributes carried by each class:

  - ``terminal``   game over / invalid for good: navigate away
  - ``retryable``  transient: the same request may succeed if sent again
  - neither        stale view: refetch the session state, then decide

Only ``ConcurrencyConflict`` is retryable, and the coordinator already retries
it internally before it ever reaches a client.
"""

from __future__ import annotations

from typing import Any, Optional


class GameError(Exception):
    kind = "GameError"
    status_code = 400
    retryable = False
    terminal = False

    def __init__(self, message: str, *, extra: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "error": self.kind,
            "detail": self.message,
            "retryable": self.retryable,
            "terminal": self.terminal,
        }
        payload.update(self.extra)
        return payload


class SessionClosed(GameError):
    """Command issued against an ended session."""
    kind = "SessionClosed"
    status_code = 410
    terminal = True


class InvalidPhase(GameError):
    """Wrong session status or stale question index; refetch and retry."""
    kind = "InvalidPhase"
    status_code = 409


class AlreadyAnswered(GameError):
    """Duplicate answer; the first submission stands."""
    kind = "AlreadyAnswered"
    status_code = 409


class Forbidden(GameError):
    kind = "Forbidden"
    status_code = 403
    terminal = True


class NotFound(GameError):
    kind = "NotFound"
    status_code = 404
    terminal = True


class InvalidInput(GameError):
    """Malformed command input, such as a blank name."""
    kind = "ValidationError"
    status_code = 422


class ConcurrencyConflict(GameError):
    """Optimistic write rejected because the stored version moved on."""
    kind = "ConcurrencyConflict"
    status_code = 503
    retryable = True
