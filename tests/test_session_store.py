import asyncio

import fakeredis
import pytest
from redis.exceptions import WatchError

from agentloop.core.errors import SessionConflictError, SessionDuplicateError, SessionNotFoundError
from agentloop.sessions.store import AgentSession, RedisSessionStore


@pytest.fixture
def store():
    return RedisSessionStore(fakeredis.FakeAsyncRedis(decode_responses=True))


def session(session_id: str = "s1", user_id: str = "u1", name: str = "research") -> AgentSession:
    return AgentSession(id=session_id, user_id=user_id, name=name)


async def test_save_and_read_back(store):
    await store.save(session())

    assert await store.exists("s1", "u1")
    loaded = await store.get("s1", "u1")
    assert loaded.name == "research"
    assert await store.count("u1") == 1


async def test_get_is_scoped_to_owner(store):
    await store.save(session())
    assert await store.get("s1", "someone-else") is None
    assert not await store.exists("s1", "someone-else")


async def test_duplicate_save_is_rejected(store):
    await store.save(session())
    with pytest.raises(SessionDuplicateError):
        await store.save(session(name="other"))
    assert (await store.get("s1", "u1")).name == "research"


async def test_concurrent_saves_admit_exactly_one(store):
    results = await asyncio.gather(
        store.save(session(name="first")),
        store.save(session(name="second")),
        return_exceptions=True,
    )

    assert results.count(None) == 1
    [error] = [r for r in results if r is not None]
    assert isinstance(error, SessionDuplicateError)
    assert await store.count("u1") == 1


async def test_update_changes_record(store):
    original = session()
    await store.save(original)

    updated = await store.update(original.model_copy(update={"name": "renamed"}))

    assert updated.updated_at >= original.updated_at
    assert (await store.get("s1", "u1")).name == "renamed"


async def test_update_missing_session(store):
    with pytest.raises(SessionNotFoundError):
        await store.update(session())


async def test_delete_removes_record_and_index(store):
    await store.save(session())
    await store.delete("s1", "u1")

    assert await store.get("s1", "u1") is None
    assert await store.count("u1") == 0
    with pytest.raises(SessionNotFoundError):
        await store.delete("s1", "u1")


async def test_list_sessions_for_user(store):
    await store.save(session("a", "u1", "one"))
    await store.save(session("b", "u1", "two"))
    await store.save(session("c", "u2", "three"))

    listed = await store.list_sessions("u1")

    assert [s.id for s in listed] == ["a", "b"]
    assert await store.list_sessions("nobody") == []


# ── retry exhaustion ──────────────────────────────────────────────────────────

class ConflictingPipeline:
    """Every EXEC loses the race."""

    def __init__(self, counter: dict):
        self.counter = counter

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def watch(self, *keys):
        pass

    async def unwatch(self):
        pass

    async def exists(self, key):
        return 0

    def multi(self):
        pass

    def set(self, *args, **kwargs):
        pass

    def sadd(self, *args):
        pass

    async def execute(self):
        self.counter["exec"] += 1
        raise WatchError("watched key changed")


class ConflictingRedis:
    def __init__(self):
        self.counter = {"exec": 0}

    def pipeline(self, transaction: bool = True):
        return ConflictingPipeline(self.counter)


async def test_save_gives_up_after_max_attempts():
    redis = ConflictingRedis()
    store = RedisSessionStore(redis, max_retry_attempts=3)

    with pytest.raises(SessionConflictError) as exc_info:
        await store.save(session())

    assert exc_info.value.attempts == 3
    assert exc_info.value.operation == "save"
    assert redis.counter["exec"] == 3
