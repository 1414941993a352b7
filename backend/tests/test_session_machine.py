import pytest

import participants
import session_machine
from conftest import START, make_session
from errors import InvalidPhase, SessionClosed
from models import SessionStatus


def joined(session, *names):
    for i, name in enumerate(names):
        participants.join(session, name, f'{name.lower()}@school.test', START + i)
    return session


def test_start_requires_an_active_participant():
    session = make_session()
    with pytest.raises(InvalidPhase):
        session_machine.start(session, START)
    assert session.status == SessionStatus.WAITING


def test_start_opens_first_question():
    session = joined(make_session(), 'Alice')
    session_machine.start(session, START + 5)
    assert session.status == SessionStatus.QUESTION
    assert session.current_question_index == 0
    assert session.question_started_at == START + 5


def test_cannot_start_twice():
    session = joined(make_session(), 'Alice')
    session_machine.start(session, START)
    with pytest.raises(InvalidPhase):
        session_machine.start(session, START)


def test_full_lifecycle_to_ended():
    session = joined(make_session(questions=2), 'Alice')
    session_machine.start(session, START)
    assert session_machine.reveal(session) is True
    assert session_machine.advance(session, START + 30) == SessionStatus.QUESTION
    assert session.current_question_index == 1
    assert session.question_started_at == START + 30
    session_machine.reveal(session)
    assert session_machine.advance(session, START + 60) == SessionStatus.ENDED
    assert session.ended_at == START + 60
    assert session.question_started_at is None


def test_advance_only_from_results():
    session = joined(make_session(), 'Alice')
    session_machine.start(session, START)
    with pytest.raises(InvalidPhase):
        session_machine.advance(session, START)


def test_manual_reveal_outside_question_is_rejected():
    session = joined(make_session(), 'Alice')
    with pytest.raises(InvalidPhase):
        session_machine.reveal(session)


def test_automatic_reveal_is_idempotent():
    session = joined(make_session(), 'Alice')
    session_machine.start(session, START)
    assert session_machine.reveal(session, expected_index=0) is True
    assert session_machine.reveal(session, expected_index=0) is False
    assert session.status == SessionStatus.RESULTS


def test_stale_automatic_reveal_is_ignored():
    session = joined(make_session(), 'Alice')
    session_machine.start(session, START)
    session_machine.reveal(session)
    session_machine.advance(session, START + 10)
    # A timer armed for question 0 must not close question 1
    assert session_machine.reveal(session, expected_index=0) is False
    assert session.status == SessionStatus.QUESTION


@pytest.mark.parametrize('status', ['waiting', 'question', 'results'])
def test_end_from_any_open_state(status):
    session = joined(make_session(), 'Alice')
    if status != 'waiting':
        session_machine.start(session, START)
    if status == 'results':
        session_machine.reveal(session)
    session_machine.end(session, START + 99)
    assert session.status == SessionStatus.ENDED
    assert session.ended_at == START + 99


def test_ended_is_terminal():
    session = joined(make_session(), 'Alice')
    session_machine.end(session, START + 1)
    for transition in (
        lambda: session_machine.start(session, START + 2),
        lambda: session_machine.reveal(session),
        lambda: session_machine.advance(session, START + 2),
        lambda: session_machine.end(session, START + 2),
    ):
        with pytest.raises(SessionClosed):
            transition()
    assert session.ended_at == START + 1
    # Automatic triggers never raise, they just do nothing
    assert session_machine.reveal(session, expected_index=0) is False


def test_deadline_follows_server_start_time():
    session = joined(make_session(timer_seconds=20), 'Alice')
    assert session_machine.reveal_deadline(session) is None
    session_machine.start(session, START)
    assert session_machine.reveal_deadline(session) == START + 20
    assert not session_machine.time_expired(session, START + 19.9)
    assert session_machine.time_expired(session, START + 20)
    assert session_machine.auto_reveal_reason(session, START + 20) == 'time_elapsed'


def test_untimed_question_never_expires():
    session = joined(make_session(timer_enabled=False), 'Alice')
    session_machine.start(session, START)
    assert session_machine.reveal_deadline(session) is None
    assert session_machine.auto_reveal_reason(session, START + 10_000) is None


def test_all_answered_needs_someone_present():
    session = joined(make_session(), 'Alice')
    session_machine.start(session, START)
    (alice,) = session.participants.values()
    participants.mark_left(session, alice.id)
    assert session_machine.all_active_answered(session) is False
