"""
Async database helpers for the long-term memory tables.
Separate from the pool used by the LangGraph checkpointer.

psycopg3 (psycopg) API — uses cursor.fetchone(), not fetchrow().

Usage:
    async with get_db() as conn:
        async with conn.cursor() as cur:
            await cur.execute("SELECT * FROM semantic_memories WHERE user_id = %s", (user_id,))
            row = await cur.fetchone()   # returns a dict (dict_row factory)
"""

import psycopg
from psycopg.rows import dict_row
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from agentloop.core.config import get_settings


@asynccontextmanager
async def get_db(database_url: str | None = None) -> AsyncGenerator[psycopg.AsyncConnection, None]:
    """
    Yields an async Postgres connection with dict_row as the default row factory.
    Closes cleanly on exit.
    """
    conn = await psycopg.AsyncConnection.connect(
        database_url or get_settings().database_url,
        autocommit=True,
        row_factory=dict_row,
    )
    try:
        yield conn
    finally:
        await conn.close()
