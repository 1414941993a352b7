"""Participant registry: membership, status transitions and score accumulation."""

from __future__ import annotations

from errors import Forbidden, InvalidInput, InvalidPhase, NotFound
from models import (
    Participant, ParticipantStatus, Session,
    generate_participant_id, normalize_email,
)
from scoring import round1
from session_machine import ensure_open


def ranking_key(participant: Participant) -> tuple:
    """Score descending, earlier joiners first on ties"""
    return (-participant.score, participant.joinedAt, participant.joinSeq)


def get_participant(session: Session, participant_id: str) -> Participant:
    participant = session.participants.get(participant_id)
    if participant is None:
        raise NotFound("Participant not found")
    return participant


def join(session: Session, name: str, email: str, now: float) -> tuple[Participant, bool]:
    """Join or rejoin by email. Returns (participant, created)."""
    ensure_open(session)

    name = (name or "").strip()
    email_key = normalize_email(email or "")
    if not name or not email_key:
        raise InvalidInput("Name and email are required to join")

    existing = session.find_by_email(email_key)
    if existing is not None:
        if existing.status == ParticipantStatus.KICKED:
            raise Forbidden("You have been removed from this game", extra={"kickReason": existing.kickReason})
        if existing.status == ParticipantStatus.LEFT:
            existing.status = ParticipantStatus.ACTIVE
        return existing, False

    participant = Participant(
        id=generate_participant_id(),
        name=name,
        email=email_key,
        joinedAt=now,
        joinSeq=len(session.participants),
    )
    session.participants[participant.id] = participant
    return participant, True


def mark_left(session: Session, participant_id: str) -> Participant:
    ensure_open(session)
    participant = get_participant(session, participant_id)
    if participant.status == ParticipantStatus.ACTIVE:
        participant.status = ParticipantStatus.LEFT
    return participant


def kick(session: Session, participant_id: str, reason: str) -> bool:
    """Returns False when the participant was already kicked"""
    ensure_open(session)
    participant = get_participant(session, participant_id)
    if participant.status == ParticipantStatus.KICKED:
        return False
    participant.status = ParticipantStatus.KICKED
    participant.kickReason = reason
    return True


def add_score(session: Session, participant_id: str, delta: float) -> float:
    if delta < 0:
        raise ValueError(f"Score delta must be non-negative, got {delta}")
    participant = get_participant(session, participant_id)
    if not participant.is_active:
        raise InvalidPhase(f"Cannot score a participant who is {participant.status.value}")
    participant.score = round1(participant.score + delta)
    return participant.score


def ranked(session: Session, include_kicked: bool = False) -> list[Participant]:
    members = [
        p for p in session.participants.values()
        if include_kicked or p.status != ParticipantStatus.KICKED
    ]
    return sorted(members, key=ranking_key)
