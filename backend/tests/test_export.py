import csv
import io

import ledger
import participants
import session_machine
from conftest import START, make_session
from export import build_report, report_to_csv
from models import Choice, ParticipantStatus


def finished_session():
    session = make_session(questions=2, timer_seconds=20)
    alice, _ = participants.join(session, 'Alice', 'alice@school.test', START)
    bob, _ = participants.join(session, 'Bob', 'bob@school.test', START + 1)
    cara, _ = participants.join(session, 'Cara', 'cara@school.test', START + 2)
    session_machine.start(session, START + 10)
    ledger.submit(session, alice.id, 0, Choice.B, 10000, START + 20)
    ledger.submit(session, bob.id, 0, Choice.A, 4000, START + 14)
    session_machine.reveal(session)
    session_machine.advance(session, START + 40)
    ledger.submit(session, bob.id, 1, Choice.B, 0, START + 40)
    participants.kick(session, cara.id, 'Anti-cheat violations')
    session_machine.end(session, START + 60)
    return session


def test_report_rows_are_ranked_with_kicked_last():
    rows = build_report(finished_session())
    assert [r.name for r in rows] == ['Bob', 'Alice', 'Cara']
    assert [r.rank for r in rows] == [1, 2, None]
    assert rows[2].status == ParticipantStatus.KICKED

    bob, alice, _ = rows
    assert bob.score == 12.0
    assert bob.correctAnswers == 1
    assert bob.percentage == 50
    assert bob.questions[0].timeSeconds == 4.0
    assert bob.questions[0].points == 0
    assert bob.questions[1].points == 12.0
    assert alice.questions[0].points == 11.0
    assert alice.questions[1].timeSeconds is None


def test_csv_layout():
    session = finished_session()
    text = report_to_csv(build_report(session), session.total_questions)
    lines = list(csv.reader(io.StringIO(text)))

    assert lines[0] == [
        'Rank', 'Name', 'Email', 'Status', 'Score', 'Correct', 'Percentage',
        'Q1 Time (s)', 'Q1 Points', 'Q2 Time (s)', 'Q2 Points',
    ]
    assert lines[1] == ['1', 'Bob', 'bob@school.test', 'active', '12.0', '1', '50%', '4.0', '0.0', '0.0', '12.0']
    assert lines[2] == ['2', 'Alice', 'alice@school.test', 'active', '11.0', '1', '50%', '10.0', '11.0', '', '']
    assert lines[3][0] == ''
    assert lines[3][3] == 'kicked'


def test_empty_report_still_has_header():
    text = report_to_csv([], 3)
    assert text.splitlines() == [
        'Rank,Name,Email,Status,Score,Correct,Percentage,'
        'Q1 Time (s),Q1 Points,Q2 Time (s),Q2 Points,Q3 Time (s),Q3 Points'
    ]
