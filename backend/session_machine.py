"""
Session lifecycle: waiting -> question -> results -> question ... -> ended.

Every transition takes the session aggregate and the current server time,
validates the phase against the state it was handed, and mutates it in place.
Callers hand in a fresh copy (see coordinator) so a rejected transition never
leaves a half-applied change behind.
"""

from __future__ import annotations

from typing import Optional

from errors import InvalidPhase, SessionClosed
from models import Session, SessionStatus


def ensure_open(session: Session) -> None:
    if session.is_ended:
        raise SessionClosed(f"Session {session.room_code} has ended")


def start(session: Session, now: float) -> None:
    """waiting -> question at index 0"""
    ensure_open(session)
    if session.status != SessionStatus.WAITING:
        raise InvalidPhase(f"Cannot start from '{session.status.value}'")
    if session.total_questions == 0:
        raise InvalidPhase("Quiz has no questions")
    if not session.active_participants():
        raise InvalidPhase("At least one active participant is required to start")

    session.status = SessionStatus.QUESTION
    session.current_question_index = 0
    session.question_started_at = now


def reveal(session: Session, expected_index: Optional[int] = None) -> bool:
    """question -> results.

    With ``expected_index`` the call is an automatic trigger: it is a no-op
    (returns False) when the session already left that question. Manual
    reveals pass no index and must find the session in ``question``.
    """
    if expected_index is not None:
        if (
            session.status != SessionStatus.QUESTION
            or session.current_question_index != expected_index
        ):
            return False

    ensure_open(session)
    if session.status != SessionStatus.QUESTION:
        raise InvalidPhase(f"Cannot reveal from '{session.status.value}'")

    session.status = SessionStatus.RESULTS
    return True


def advance(session: Session, now: float) -> SessionStatus:
    """results -> next question, or results -> ended after the last one"""
    ensure_open(session)
    if session.status != SessionStatus.RESULTS:
        raise InvalidPhase(f"Cannot advance from '{session.status.value}'")

    next_index = session.current_question_index + 1
    if next_index >= session.total_questions:
        _finish(session, now)
        return session.status

    session.current_question_index = next_index
    session.status = SessionStatus.QUESTION
    session.question_started_at = now
    return session.status


def end(session: Session, now: float) -> None:
    """Host-initiated early termination from any open state"""
    ensure_open(session)
    _finish(session, now)


def _finish(session: Session, now: float) -> None:
    session.status = SessionStatus.ENDED
    session.question_started_at = None
    if session.ended_at is None:
        session.ended_at = now


# --- Auto-reveal conditions ---

def reveal_deadline(session: Session) -> Optional[float]:
    """Server-side time limit for the current question, if the quiz is timed"""
    cfg = session.score_config
    if (
        session.status != SessionStatus.QUESTION
        or not cfg.timerEnabled
        or cfg.timerSeconds <= 0
        or session.question_started_at is None
    ):
        return None
    return session.question_started_at + cfg.timerSeconds


def all_active_answered(session: Session) -> bool:
    # Vacuous truth with nobody present must not reveal
    active = session.active_participants()
    if not active:
        return False
    idx = session.current_question_index
    return all(session.has_answered(p.id, idx) for p in active)


def time_expired(session: Session, now: float) -> bool:
    deadline = reveal_deadline(session)
    return deadline is not None and now >= deadline


def auto_reveal_reason(session: Session, now: float) -> Optional[str]:
    if session.status != SessionStatus.QUESTION:
        return None
    if all_active_answered(session):
        return "all_answered"
    if time_expired(session, now):
        return "time_elapsed"
    return None
