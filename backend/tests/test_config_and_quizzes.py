import json

import pytest

from errors import NotFound
from models import Choice
from quiz_provider import JsonDirectoryQuizProvider, validate_questions
from settings import Settings

pytestmark = pytest.mark.anyio


QUIZ = {
    'title': 'Fractions',
    'timerEnabled': True,
    'timerSeconds': 15,
    'questions': [
        {'id': 'f1', 'text': '1/2 + 1/4?', 'options': {'A': '3/4', 'B': '2/6', 'C': '1/8', 'D': '1'}, 'correctChoice': 'A'},
        {'text': '2/4 equals?', 'options': {'A': '1/4', 'B': '1/2', 'C': '2', 'D': '4'}, 'correctChoice': 'B', 'difficulty': 'easy'},
    ],
}


async def test_json_directory_provider(tmp_path):
    (tmp_path / 'fractions.json').write_text(json.dumps(QUIZ), encoding='utf-8')
    provider = JsonDirectoryQuizProvider(tmp_path)

    quiz = await provider.get_quiz('fractions')
    assert quiz.title == 'Fractions'
    assert quiz.timerSeconds == 15
    assert quiz.totalQuestions == 2

    questions = await provider.get_questions('fractions')
    assert [q.id for q in questions] == ['f1', '1']
    assert questions[1].correctChoice == Choice.B
    assert validate_questions(questions) is None


async def test_json_directory_rejects_unknown_and_path_like_ids(tmp_path):
    provider = JsonDirectoryQuizProvider(tmp_path)
    for quiz_id in ('missing', '../etc/passwd', ''):
        with pytest.raises(NotFound):
            await provider.get_quiz(quiz_id)


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv('QUIZROOM_MAX_BONUS', '5')
    monkeypatch.setenv('QUIZROOM_MAX_VIOLATIONS', '4')
    monkeypatch.setenv('QUIZROOM_ENABLE_TIMERS', 'false')
    monkeypatch.setenv('QUIZROOM_CORS_ORIGINS', 'http://a.test, http://b.test')
    settings = Settings.from_env()
    assert settings.max_bonus == 5
    assert settings.max_violations == 4
    assert settings.enable_timers is False
    assert settings.cors_origins == ['http://a.test', 'http://b.test']
    assert settings.base_points == 10


def test_timer_override_clamp():
    settings = Settings()
    assert settings.clamp_timer(1) == 5
    assert settings.clamp_timer(30) == 30
    assert settings.clamp_timer(999) == 120
