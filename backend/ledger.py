"""
Answer ledger.

Append-only: one record per (participant, question), created on first
submission and never overwritten. Correctness and points are fixed at
submission time so a leaderboard can always be recomputed from the ledger.
"""

from __future__ import annotations

from typing import Optional

from errors import AlreadyAnswered, Forbidden, InvalidPhase
from models import (
    Answer, AnswerResult, Choice, CHOICES, ParticipantStatus, Session, SessionStatus,
)
from participants import add_score, get_participant
from scoring import recorded_time_taken, score
from session_machine import ensure_open


def elapsed_ms(session: Session, now: float) -> int:
    if session.question_started_at is None:
        return 0
    return max(0, int(round((now - session.question_started_at) * 1000)))


def submit(
    session: Session,
    participant_id: str,
    question_index: int,
    choice: Choice,
    time_taken_ms: Optional[float],
    now: float,
) -> AnswerResult:
    """Record an answer, score it and credit the participant.

    ``time_taken_ms`` is the client's own measurement from when the question
    appeared on screen. When it is missing the server measures from
    ``question_started_at``.
    """
    ensure_open(session)
    participant = get_participant(session, participant_id)
    if participant.status == ParticipantStatus.KICKED:
        raise Forbidden("You have been removed from this game", extra={"kickReason": participant.kickReason})
    if participant.status == ParticipantStatus.LEFT:
        raise InvalidPhase("Participant has left the game; rejoin to answer")

    existing = session.answers.get((participant_id, question_index))
    if existing is not None:
        raise AlreadyAnswered(
            "Already answered",
            extra={"answer": existing.model_dump(mode="json")},
        )

    if session.status != SessionStatus.QUESTION:
        raise InvalidPhase(f"Not accepting answers while '{session.status.value}'")
    if question_index != session.current_question_index:
        raise InvalidPhase("Wrong question", extra={"currentQuestionIndex": session.current_question_index})

    question = session.questions[question_index]
    is_correct = choice == question.correctChoice

    if time_taken_ms is None:
        time_taken_ms = elapsed_ms(session, now)
    time_taken_ms = recorded_time_taken(time_taken_ms, session.score_config)
    result = score(is_correct, time_taken_ms, session.score_config)

    answer = Answer(
        participantId=participant_id,
        questionIndex=question_index,
        choice=choice,
        isCorrect=is_correct,
        timeTakenMs=time_taken_ms,
        pointsEarned=result.points,
        speedBonus=result.speedBonus,
        answeredAt=now,
    )
    session.answers[(participant_id, question_index)] = answer
    participant.answersCount += 1
    total = add_score(session, participant_id, result.points)

    return AnswerResult(
        questionIndex=question_index,
        choice=choice,
        isCorrect=is_correct,
        pointsEarned=result.points,
        speedBonus=result.speedBonus,
        timeTakenMs=answer.timeTakenMs,
        totalScore=total,
    )


def answers_for_question(session: Session, question_index: int) -> list[Answer]:
    return [a for (_, idx), a in session.answers.items() if idx == question_index]


def distribution(session: Session, question_index: int) -> dict[Choice, int]:
    counts = {c: 0 for c in CHOICES}
    for answer in answers_for_question(session, question_index):
        counts[answer.choice] += 1
    return counts


def by_participant(session: Session, participant_id: str) -> list[Answer]:
    get_participant(session, participant_id)
    answers = [a for (pid, _), a in session.answers.items() if pid == participant_id]
    return sorted(answers, key=lambda a: a.questionIndex)
