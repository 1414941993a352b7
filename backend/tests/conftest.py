import os
import sys
import pytest

# Ensure the backend root (containing the flat modules) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

# main builds a module-level app on import; keep it off the disk
os.environ.setdefault('QUIZROOM_LOG_TO_FILE', '0')

from broadcast import WebSocketHub
from coordinator import GameCoordinator
from models import Choice, QuestionDefinition, QuizDefinition, ScoreConfig, Session
from quiz_provider import InMemoryQuizProvider
from settings import Settings
from store import InMemorySessionStore


START = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


def make_question(i: int, correct: Choice = Choice.A) -> QuestionDefinition:
    return QuestionDefinition(
        id=f'q{i}',
        text=f'Question {i}?',
        options={c: f'Option {c.value}' for c in Choice},
        correctChoice=correct,
    )


def make_session(
    questions: int = 3,
    timer_enabled: bool = True,
    timer_seconds: int = 20,
    room_code: str = 'ABC234',
) -> Session:
    """A bare session aggregate for exercising the domain modules directly"""
    return Session(
        id=f'session-{room_code}',
        quiz_id='geo',
        room_code=room_code,
        host_token='host-token',
        questions=[make_question(i, correct=Choice.B) for i in range(questions)],
        score_config=ScoreConfig(timerEnabled=timer_enabled, timerSeconds=timer_seconds),
        created_at=START,
    )


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def anyio_backend():
    return 'asyncio'


@pytest.fixture()
def quizzes():
    provider = InMemoryQuizProvider()
    provider.add(
        QuizDefinition(id='geo', title='Capitals', timerEnabled=True, timerSeconds=20),
        [make_question(i, correct=Choice.B) for i in range(3)],
    )
    provider.add(
        QuizDefinition(id='untimed', title='Warm-up', timerEnabled=False),
        [make_question(i, correct=Choice.C) for i in range(2)],
    )
    return provider


@pytest.fixture()
def settings():
    return Settings(enable_timers=False, log_to_file=False)


@pytest.fixture()
def store():
    return InMemorySessionStore()


@pytest.fixture()
def hub():
    return WebSocketHub()


@pytest.fixture()
def coordinator(store, quizzes, hub, settings, clock):
    return GameCoordinator(store, quizzes, hub, settings=settings, clock=clock)


@pytest.fixture()
def fastapi_app(store, quizzes, hub, settings, clock):
    from main import create_app
    return create_app(settings=settings, store=store, quizzes=quizzes, hub=hub, clock=clock)


@pytest.fixture()
def client(fastapi_app):
    from fastapi.testclient import TestClient
    with TestClient(fastapi_app) as test_client:
        yield test_client
