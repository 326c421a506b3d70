"""
Agent session metadata in Redis, written with optimistic locking.

Keys:
    sessions:{id}                             JSON record
    sessions:by-user:{user_id}                set of session ids
    sessions:idx:session-user:{id}:{user_id}  ownership marker

Every write follows the same pattern:

    WATCH record + ownership keys
      → existence / ownership check
      → MULTI … EXEC
      → WatchError (someone else wrote in between) → retry

After max_retry_attempts conflicting attempts the write fails with
SessionConflictError instead of silently succeeding.
"""

from datetime import datetime, timezone
from functools import lru_cache

import redis.asyncio as aioredis
from pydantic import BaseModel, Field, ValidationError
from redis.exceptions import WatchError

from agentloop.core.config import get_settings
from agentloop.core.errors import SessionConflictError, SessionDuplicateError, SessionNotFoundError
from agentloop.core.logging import get_logger
from agentloop.core.models import AgentMode, ExecutionMode, new_id

log = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AgentSession(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    name: str
    mode: AgentMode = AgentMode.INTERACTIVE
    execution_mode: ExecutionMode = ExecutionMode.PLANNING
    memory_enabled: bool = True
    max_graph_steps: int = 100
    max_iterations: int = 15
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


@lru_cache
def get_redis() -> aioredis.Redis:
    settings = get_settings()
    return aioredis.from_url(settings.redis_url, decode_responses=True)


class RedisSessionStore:
    def __init__(self, redis: aioredis.Redis, max_retry_attempts: int = 3):
        self.redis = redis
        self.max_retry_attempts = max_retry_attempts

    # ── keys ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _key(session_id: str) -> str:
        return f"sessions:{session_id}"

    @staticmethod
    def _user_key(user_id: str) -> str:
        return f"sessions:by-user:{user_id}"

    @staticmethod
    def _owner_key(session_id: str, user_id: str) -> str:
        return f"sessions:idx:session-user:{session_id}:{user_id}"

    # ── writes ───────────────────────────────────────────────────────────────

    async def save(self, session: AgentSession) -> None:
        key = self._key(session.id)
        owner_key = self._owner_key(session.id, session.user_id)

        for attempt in range(1, self.max_retry_attempts + 1):
            try:
                async with self.redis.pipeline(transaction=True) as pipe:
                    await pipe.watch(key, owner_key)
                    if await pipe.exists(key) or await pipe.exists(owner_key):
                        await pipe.unwatch()
                        raise SessionDuplicateError(session.id)

                    pipe.multi()
                    pipe.set(key, session.model_dump_json())
                    pipe.sadd(self._user_key(session.user_id), session.id)
                    pipe.set(owner_key, "1")
                    await pipe.execute()

                log.info("session_saved", session_id=session.id, user_id=session.user_id, attempt=attempt)
                return
            except WatchError:
                log.warning("session_save_conflict", session_id=session.id, attempt=attempt)

        raise SessionConflictError("save", session.id, self.max_retry_attempts)

    async def update(self, session: AgentSession) -> AgentSession:
        key = self._key(session.id)
        owner_key = self._owner_key(session.id, session.user_id)
        updated = session.model_copy(update={"updated_at": _now()})

        for attempt in range(1, self.max_retry_attempts + 1):
            try:
                async with self.redis.pipeline(transaction=True) as pipe:
                    await pipe.watch(key, owner_key)
                    if not await pipe.exists(owner_key):
                        await pipe.unwatch()
                        raise SessionNotFoundError(session.id)

                    pipe.multi()
                    pipe.set(key, updated.model_dump_json())
                    await pipe.execute()

                log.info("session_updated", session_id=session.id, attempt=attempt)
                return updated
            except WatchError:
                log.warning("session_update_conflict", session_id=session.id, attempt=attempt)

        raise SessionConflictError("update", session.id, self.max_retry_attempts)

    async def delete(self, session_id: str, user_id: str) -> None:
        key = self._key(session_id)
        owner_key = self._owner_key(session_id, user_id)

        for attempt in range(1, self.max_retry_attempts + 1):
            try:
                async with self.redis.pipeline(transaction=True) as pipe:
                    await pipe.watch(key, owner_key)
                    if not await pipe.exists(owner_key):
                        await pipe.unwatch()
                        raise SessionNotFoundError(session_id)

                    pipe.multi()
                    pipe.delete(key)
                    pipe.srem(self._user_key(user_id), session_id)
                    pipe.delete(owner_key)
                    await pipe.execute()

                log.info("session_deleted", session_id=session_id, attempt=attempt)
                return
            except WatchError:
                log.warning("session_delete_conflict", session_id=session_id, attempt=attempt)

        raise SessionConflictError("delete", session_id, self.max_retry_attempts)

    # ── reads ────────────────────────────────────────────────────────────────

    async def exists(self, session_id: str, user_id: str) -> bool:
        return bool(await self.redis.exists(self._owner_key(session_id, user_id)))

    async def get(self, session_id: str, user_id: str) -> AgentSession | None:
        if not await self.exists(session_id, user_id):
            return None
        raw = await self.redis.get(self._key(session_id))
        if raw is None:
            return None
        return AgentSession.model_validate_json(raw)

    async def list_sessions(self, user_id: str) -> list[AgentSession]:
        ids = sorted(await self.redis.smembers(self._user_key(user_id)))
        if not ids:
            return []

        raws = await self.redis.mget([self._key(i) for i in ids])
        sessions = []
        for session_id, raw in zip(ids, raws):
            if raw is None:
                log.warning("session_index_stale", session_id=session_id, user_id=user_id)
                continue
            try:
                sessions.append(AgentSession.model_validate_json(raw))
            except ValidationError as exc:
                log.error("session_record_corrupt", session_id=session_id, error=str(exc))
        return sorted(sessions, key=lambda s: s.created_at)

    async def count(self, user_id: str) -> int:
        return int(await self.redis.scard(self._user_key(user_id)))


def get_session_store() -> RedisSessionStore:
    return RedisSessionStore(get_redis(), get_settings().max_retry_attempts)
