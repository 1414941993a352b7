import json
import logging

import pytest

from logger import GAME_EVENT_LOGGER, build_game_event, log_game_event, set_request_id, setup_logging
from settings import Settings


@pytest.fixture()
def quiet_logging():
    yield
    setup_logging(Settings(log_to_file=False))


def _file_handlers(name=''):
    return [h for h in logging.getLogger(name).handlers if isinstance(h, logging.FileHandler)]


def test_game_event_fields():
    set_request_id('req-42')
    event = build_game_event(
        'answer_submitted',
        session_code='ABC234',
        player_id='p1',
        data={'points': 11.5, 'event': 'ignored'},
    )
    assert event['event'] == 'answer_submitted'
    assert event['session'] == 'ABC234'
    assert event['player_id'] == 'p1'
    assert event['request_id'] == 'req-42'
    assert event['points'] == 11.5


def test_game_events_are_written_as_json_lines(tmp_path, quiet_logging):
    directory = setup_logging(Settings(log_dir=str(tmp_path), log_to_file=True))
    assert directory == tmp_path

    set_request_id('req-7')
    log_game_event('question_revealed', session_code='ABC234', data={'question_index': 0})
    logging.getLogger('QuizRoom.test').info('plain line')

    lines = (tmp_path / 'game_events.jsonl').read_text(encoding='utf-8').splitlines()
    record = json.loads(lines[-1])
    assert record['event'] == 'question_revealed'
    assert record['question_index'] == 0
    assert record['request_id'] == 'req-7'

    general = (tmp_path / 'quizroom.log').read_text(encoding='utf-8')
    assert '[req-7] plain line' in general
    assert 'question_revealed' not in general


def test_reconfiguring_replaces_file_handlers(tmp_path, quiet_logging):
    setup_logging(Settings(log_dir=str(tmp_path / 'first'), log_to_file=True))
    setup_logging(Settings(log_dir=str(tmp_path / 'second'), log_to_file=True))
    assert len(_file_handlers()) == 1
    assert len(_file_handlers(GAME_EVENT_LOGGER)) == 1

    assert setup_logging(Settings(log_to_file=False)) is None
    assert _file_handlers() == []
    assert _file_handlers(GAME_EVENT_LOGGER) == []
