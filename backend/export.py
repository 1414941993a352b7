"""Final results report for a session, as rows and as CSV text."""

from __future__ import annotations

import csv
import io
from typing import Optional

from pydantic import BaseModel

from models import ParticipantStatus, Session
from participants import ranked
from scoring import calculate_percentage, format_score


class QuestionCell(BaseModel):
    timeSeconds: Optional[float] = None
    points: Optional[float] = None


class ReportRow(BaseModel):
    rank: Optional[int] = None  # None for kicked participants
    name: str
    email: str
    status: ParticipantStatus
    score: float
    correctAnswers: int
    percentage: int
    questions: list[QuestionCell]


def build_report(session: Session) -> list[ReportRow]:
    """Ranked participants first, kicked participants last and unranked"""
    standing = ranked(session)
    kicked = [p for p in ranked(session, include_kicked=True) if p.status == ParticipantStatus.KICKED]
    total = session.total_questions

    rows = []
    for position, participant in enumerate(standing + kicked, start=1):
        cells = []
        correct = 0
        for idx in range(total):
            answer = session.answers.get((participant.id, idx))
            if answer is None:
                cells.append(QuestionCell())
                continue
            correct += answer.isCorrect
            cells.append(QuestionCell(
                timeSeconds=round(answer.timeTakenMs / 1000, 1),
                points=answer.pointsEarned,
            ))
        rows.append(ReportRow(
            rank=position if participant.status != ParticipantStatus.KICKED else None,
            name=participant.name,
            email=participant.email,
            status=participant.status,
            score=participant.score,
            correctAnswers=correct,
            percentage=calculate_percentage(correct, total),
            questions=cells,
        ))
    return rows


def report_to_csv(rows: list[ReportRow], question_count: Optional[int] = None) -> str:
    if question_count is None:
        question_count = len(rows[0].questions) if rows else 0

    header = ["Rank", "Name", "Email", "Status", "Score", "Correct", "Percentage"]
    for n in range(1, question_count + 1):
        header += [f"Q{n} Time (s)", f"Q{n} Points"]

    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(header)
    for row in rows:
        line = [
            "" if row.rank is None else row.rank,
            row.name,
            row.email,
            row.status.value,
            format_score(row.score),
            row.correctAnswers,
            f"{row.percentage}%",
        ]
        for cell in row.questions:
            line += [
                "" if cell.timeSeconds is None else f"{cell.timeSeconds:.1f}",
                "" if cell.points is None else format_score(cell.points),
            ]
        writer.writerow(line)
    return buf.getvalue()
