from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.checkpoint.memory import MemorySaver
from langgraph.checkpoint.postgres.aio import AsyncPostgresSaver
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from agentloop.core.config import Settings, get_settings
from agentloop.core.logging import get_logger

log = get_logger(__name__)

_pool: AsyncConnectionPool | None = None


async def get_connection_pool(settings: Settings | None = None) -> AsyncConnectionPool:
    global _pool
    if _pool is None:
        settings = settings or get_settings()
        _pool = AsyncConnectionPool(
            conninfo=settings.database_url,
            max_size=20,
            kwargs={"autocommit": True, "prepare_threshold": 0, "row_factory": dict_row},
            open=False,
        )
        await _pool.open()
    return _pool


async def close_connection_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def get_checkpointer(settings: Settings | None = None) -> BaseCheckpointSaver:
    """
    Postgres-backed checkpointer when DATABASE_URL is set, in-memory otherwise.

    setup() is idempotent — it creates the checkpointer tables
    (checkpoints, checkpoint_writes, checkpoint_blobs) if they don't exist yet.
    Suspended human-in-the-loop turns only survive a restart with Postgres.
    """
    settings = settings or get_settings()
    if not settings.database_url:
        log.warning("checkpointer_in_memory", reason="database_url not configured")
        return MemorySaver()

    pool = await get_connection_pool(settings)
    checkpointer = AsyncPostgresSaver(pool)
    await checkpointer.setup()
    return checkpointer
