"""
Read-side projections over a session.

Nothing here is stored: every view is rebuilt from the participant registry
and the answer ledger whenever it is asked for, so it can never drift from
the authoritative state. ``limit`` arguments only trim what is displayed.
"""

from __future__ import annotations

from typing import Optional

from ledger import answers_for_question, distribution
from models import (
    AnswerStatus, Leaderboard, LeaderboardEntry, QuestionStats, QuestionView,
    Session, SessionSnapshot, SessionStatus,
)
from participants import ranked
from session_machine import reveal_deadline


def leaderboard(session: Session, limit: Optional[int] = None) -> Leaderboard:
    """Non-kicked participants ranked by score, then join time"""
    correct_counts: dict[str, int] = {}
    for (pid, _), answer in session.answers.items():
        if answer.isCorrect:
            correct_counts[pid] = correct_counts.get(pid, 0) + 1

    ordered = ranked(session)
    entries = [
        LeaderboardEntry(
            id=p.id,
            name=p.name,
            score=p.score,
            rank=i + 1,
            status=p.status,
            answersCount=p.answersCount,
            correctAnswers=correct_counts.get(p.id, 0),
        )
        for i, p in enumerate(ordered)
    ]
    if limit is not None:
        entries = entries[:max(0, limit)]
    return Leaderboard(entries=entries, total=len(ordered))


def answer_status(session: Session, question_index: int, limit: Optional[int] = None) -> AnswerStatus:
    """Partition active participants by whether they answered ``question_index``"""
    answered = []
    waiting = []
    for p in sorted(session.active_participants(), key=lambda p: (p.joinedAt, p.joinSeq)):
        if session.has_answered(p.id, question_index):
            answered.append(p.id)
        else:
            waiting.append(p.id)
    if limit is not None:
        answered, waiting = answered[:limit], waiting[:limit]
    return AnswerStatus(answered=answered, waiting=waiting)


def question_stats(session: Session, question_index: int) -> QuestionStats:
    return QuestionStats(
        questionIndex=question_index,
        totalPlayers=len(session.active_participants()),
        answeredCount=len(answers_for_question(session, question_index)),
        distribution=distribution(session, question_index),
    )


def question_view(session: Session, include_answer_key: bool = False) -> Optional[QuestionView]:
    question = session.current_question
    if question is None or session.status == SessionStatus.WAITING:
        return None
    # Correct choice stays hidden while the question is open
    show_key = include_answer_key or session.status != SessionStatus.QUESTION
    return QuestionView(
        id=question.id,
        text=question.text,
        options=question.options,
        correctChoice=question.correctChoice if show_key else None,
        difficulty=question.difficulty,
    )


def snapshot(
    session: Session,
    include_answer_key: bool = False,
    leaderboard_limit: Optional[int] = None,
) -> SessionSnapshot:
    """Client-facing state of the whole session"""
    in_play = session.status in (SessionStatus.QUESTION, SessionStatus.RESULTS)
    idx = session.current_question_index
    return SessionSnapshot(
        id=session.id,
        quizId=session.quiz_id,
        roomCode=session.room_code,
        status=session.status,
        currentQuestionIndex=idx,
        totalQuestions=session.total_questions,
        questionStartedAt=session.question_started_at,
        revealDeadline=reveal_deadline(session),
        endedAt=session.ended_at,
        version=session.version,
        settings=session.score_config,
        maxViolations=session.max_violations,
        participants=list(session.participants.values()),
        leaderboard=leaderboard(session, limit=leaderboard_limit),
        currentQuestion=question_view(session, include_answer_key),
        answerStatus=answer_status(session, idx) if in_play else None,
        stats=question_stats(session, idx) if in_play else None,
    )
