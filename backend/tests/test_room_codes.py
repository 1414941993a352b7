import random

import pytest

from conftest import make_session
from coordinator import GameCoordinator
from errors import ConcurrencyConflict
from models import ROOM_CODE_ALPHABET, ROOM_CODE_LENGTH, SessionStatus, generate_room_code
from store import InMemorySessionStore

pytestmark = pytest.mark.anyio


def test_codes_use_only_unambiguous_characters():
    rng = random.Random(7)
    for _ in range(2000):
        code = generate_room_code(rng=rng)
        assert len(code) == ROOM_CODE_LENGTH
        assert not set(code) & set('01IO')
        assert set(code) <= set(ROOM_CODE_ALPHABET)


async def test_allocation_never_collides_with_active_sessions(quizzes, hub, settings, clock):
    store = InMemorySessionStore()
    seed_rng = random.Random(1234)
    active = set()
    while len(active) < 500:
        code = generate_room_code(rng=seed_rng)
        if code in active:
            continue
        await store.create(make_session(room_code=code))
        active.add(code)

    coordinator = GameCoordinator(store, quizzes, hub, settings=settings, clock=clock, rng=random.Random(99))
    for _ in range(10_000):
        code = await coordinator.allocate_room_code()
        assert code not in active
        assert not set(code) & set('01IO')


async def test_allocation_retries_past_taken_codes(quizzes, hub, settings, clock):
    store = InMemorySessionStore()
    taken = generate_room_code(rng=random.Random(5))
    await store.create(make_session(room_code=taken))

    # The same seed replays the taken code first, then moves on
    coordinator = GameCoordinator(store, quizzes, hub, settings=settings, clock=clock, rng=random.Random(5))
    code = await coordinator.allocate_room_code()
    assert code != taken


async def test_allocation_gives_up_after_bounded_attempts(quizzes, hub, settings, clock):
    class AlwaysTaken(InMemorySessionStore):
        async def is_code_active(self, room_code):
            return True

    coordinator = GameCoordinator(AlwaysTaken(), quizzes, hub, settings=settings, clock=clock)
    with pytest.raises(ConcurrencyConflict):
        await coordinator.allocate_room_code()


async def test_ended_session_frees_its_code(store):
    session = make_session(room_code='ZZZ999')
    created = await store.create(session)
    assert await store.is_code_active('zzz999')
    created.status = SessionStatus.ENDED
    await store.update(created, expected_version=created.version)
    assert not await store.is_code_active('ZZZ999')
