"""
Long-term memory store — episodic and semantic records in Postgres + pgvector.

Write path (LTM manager):
    upsert_memory(semantic, episodic)
      → validate records
      → embed content
      → near-duplicate (cosine ≥ 0.95) → UPDATE, otherwise INSERT

Query path (retrieval node):
    retrieve_similar_memories(query, user_id, thread_id)
      → embed query
      → cosine similarity over both tables, scoped to user + thread
      → hits above retrieve_memory_threshold, best first

Both operations return a MemoryOperationResult and never raise.
"""

import asyncio
from typing import Protocol

from agentloop.core.config import Settings
from agentloop.core.db import get_db
from agentloop.core.logging import get_logger
from agentloop.memory.types import (
    EpisodicMemoryContext,
    MemoryHit,
    MemoryOperationResult,
    SemanticMemoryContext,
)

log = get_logger(__name__)

MAX_CONTENT_LENGTH = 10_000
DUPLICATE_SIMILARITY = 0.95


class MemoryStore(Protocol):
    async def upsert_memory(
        self,
        semantic: list[SemanticMemoryContext],
        episodic: list[EpisodicMemoryContext],
    ) -> MemoryOperationResult[str]: ...

    async def retrieve_similar_memories(
        self, query: str, user_id: str, thread_id: str
    ) -> MemoryOperationResult[list[MemoryHit]]: ...


# ── Validation ────────────────────────────────────────────────────────────────

def _validate_ids(record: EpisodicMemoryContext | SemanticMemoryContext) -> str | None:
    if not record.user_id.strip():
        return "user_id is required"
    if not record.run_id.strip():
        return "run_id is required"
    if not record.step_id.strip():
        return "step_id is required"
    return None


def validate_episodic(record: EpisodicMemoryContext) -> str | None:
    if error := _validate_ids(record):
        return error
    if not record.content.strip():
        return "content is empty"
    if len(record.content) > MAX_CONTENT_LENGTH:
        return f"content exceeds {MAX_CONTENT_LENGTH} characters"
    if not record.sources:
        return "at least one source is required"
    return None


def validate_semantic(record: SemanticMemoryContext) -> str | None:
    if error := _validate_ids(record):
        return error
    if not record.fact.strip():
        return "fact is empty"
    if len(record.fact) > MAX_CONTENT_LENGTH:
        return f"fact exceeds {MAX_CONTENT_LENGTH} characters"
    if not record.category.strip():
        return "category is empty"
    return None


# ── Postgres implementation ───────────────────────────────────────────────────

class PgVectorMemoryStore:
    def __init__(self, settings: Settings):
        self.settings = settings

    async def upsert_memory(
        self,
        semantic: list[SemanticMemoryContext],
        episodic: list[EpisodicMemoryContext],
    ) -> MemoryOperationResult[str]:
        for record in episodic:
            if error := validate_episodic(record):
                return MemoryOperationResult.fail(f"invalid episodic memory: {error}")
        for record in semantic:
            if error := validate_semantic(record):
                return MemoryOperationResult.fail(f"invalid semantic memory: {error}")

        try:
            written = await asyncio.wait_for(
                self._write(semantic, episodic), timeout=self.settings.memory_timeout_seconds
            )
        except Exception as exc:
            log.error("memory_upsert_failed", error=str(exc), error_type=type(exc).__name__)
            return MemoryOperationResult.fail(str(exc) or type(exc).__name__)

        log.info("memory_upserted", semantic=len(semantic), episodic=len(episodic), written=written)
        return MemoryOperationResult.ok(f"upserted {written} memories")

    async def _write(
        self,
        semantic: list[SemanticMemoryContext],
        episodic: list[EpisodicMemoryContext],
    ) -> int:
        written = 0
        async with get_db(self.settings.database_url) as conn:
            async with conn.transaction():
                async with conn.cursor() as cur:
                    for record in episodic:
                        embedding = await self._require_embedding(record.content)
                        await cur.execute(
                            """
                            SELECT id FROM episodic_memories
                            WHERE  user_id = %s AND run_id = %s
                              AND  1 - (embedding <=> %s::vector) >= %s
                            LIMIT  1
                            """,
                            (record.user_id, record.run_id, embedding, DUPLICATE_SIMILARITY),
                        )
                        existing = await cur.fetchone()
                        if existing:
                            await cur.execute(
                                """
                                UPDATE episodic_memories
                                SET    content = %s, sources = %s, step_id = %s, task_id = %s,
                                       embedding = %s::vector, updated_at = now()
                                WHERE  id = %s
                                """,
                                (record.content, list(record.sources), record.step_id,
                                 record.task_id, embedding, existing["id"]),
                            )
                        else:
                            await cur.execute(
                                """
                                INSERT INTO episodic_memories
                                    (user_id, run_id, task_id, step_id, content, sources, embedding)
                                VALUES (%s, %s, %s, %s, %s, %s, %s::vector)
                                """,
                                (record.user_id, record.run_id, record.task_id, record.step_id,
                                 record.content, list(record.sources), embedding),
                            )
                        written += 1

                    for record in semantic:
                        embedding = await self._require_embedding(record.fact)
                        await cur.execute(
                            """
                            SELECT id FROM semantic_memories
                            WHERE  user_id = %s AND run_id = %s
                              AND  1 - (embedding <=> %s::vector) >= %s
                            LIMIT  1
                            """,
                            (record.user_id, record.run_id, embedding, DUPLICATE_SIMILARITY),
                        )
                        existing = await cur.fetchone()
                        if existing:
                            await cur.execute(
                                """
                                UPDATE semantic_memories
                                SET    fact = %s, category = %s, step_id = %s, task_id = %s,
                                       embedding = %s::vector, updated_at = now()
                                WHERE  id = %s
                                """,
                                (record.fact, record.category, record.step_id, record.task_id,
                                 embedding, existing["id"]),
                            )
                        else:
                            await cur.execute(
                                """
                                INSERT INTO semantic_memories
                                    (user_id, run_id, task_id, step_id, fact, category, embedding)
                                VALUES (%s, %s, %s, %s, %s, %s, %s::vector)
                                """,
                                (record.user_id, record.run_id, record.task_id, record.step_id,
                                 record.fact, record.category, embedding),
                            )
                        written += 1
        return written

    async def retrieve_similar_memories(
        self, query: str, user_id: str, thread_id: str
    ) -> MemoryOperationResult[list[MemoryHit]]:
        if not query.strip():
            return MemoryOperationResult.ok([])

        attempts = self.settings.memory_retry_attempts
        last_error = ""
        for attempt in range(1, attempts + 1):
            try:
                hits = await asyncio.wait_for(
                    self._query(query, user_id, thread_id),
                    timeout=self.settings.memory_timeout_seconds,
                )
                log.debug("memory_retrieved", hits=len(hits), attempt=attempt)
                return MemoryOperationResult.ok(hits)
            except Exception as exc:
                last_error = str(exc) or type(exc).__name__
                log.warning("memory_retrieve_retry", attempt=attempt, error=last_error)
                if attempt < attempts:
                    await asyncio.sleep(min(0.5 * attempt, 2.0))

        return MemoryOperationResult.fail(f"retrieval failed after {attempts} attempts: {last_error}")

    async def _query(self, query: str, user_id: str, thread_id: str) -> list[MemoryHit]:
        embedding = await self._require_embedding(query)
        async with get_db(self.settings.database_url) as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    SELECT * FROM (
                        SELECT id::text AS memory_id, 'episodic' AS memory_type, content,
                               NULL::text AS category, sources, step_id, task_id,
                               1 - (embedding <=> %(vec)s::vector) AS similarity
                        FROM   episodic_memories
                        WHERE  user_id = %(user_id)s AND run_id = %(run_id)s
                          AND  embedding IS NOT NULL
                        UNION ALL
                        SELECT id::text, 'semantic', fact,
                               category, ARRAY[]::text[], step_id, task_id,
                               1 - (embedding <=> %(vec)s::vector)
                        FROM   semantic_memories
                        WHERE  user_id = %(user_id)s AND run_id = %(run_id)s
                          AND  embedding IS NOT NULL
                    ) hits
                    WHERE  similarity >= %(threshold)s
                    ORDER  BY similarity DESC
                    LIMIT  %(limit)s
                    """,
                    {
                        "vec": embedding,
                        "user_id": user_id,
                        "run_id": thread_id,
                        "threshold": self.settings.retrieve_memory_threshold,
                        "limit": self.settings.max_retrieve_memory_size,
                    },
                )
                rows = await cur.fetchall()

        return [
            MemoryHit(
                memory_id=row["memory_id"],
                memory_type=row["memory_type"],
                content=row["content"],
                similarity=float(row["similarity"]),
                step_id=row["step_id"],
                task_id=row["task_id"],
                category=row["category"],
                sources=list(row["sources"] or []),
            )
            for row in rows
        ]

    async def _require_embedding(self, text: str) -> str:
        embedding = await _embed(text, self.settings)
        if embedding is None:
            raise RuntimeError("embedding request failed")
        return _vec_literal(embedding)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _vec_literal(v: list[float]) -> str:
    """Convert a float list to a Postgres vector literal string."""
    return "[" + ",".join(str(x) for x in v) + "]"


async def _embed(text: str, settings: Settings) -> list[float] | None:
    """Generate an embedding via the configured embedding model."""
    try:
        if settings.litellm_mode == "library":
            import litellm
            response = await litellm.aembedding(
                model=settings.embedding_model,
                input=[text],
            )
            return response.data[0]["embedding"]

        import httpx
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                f"{settings.litellm_base_url}/embeddings",
                headers={"Authorization": f"Bearer {settings.litellm_master_key}"},
                json={"model": settings.embedding_model, "input": text},
                timeout=30,
            )
            resp.raise_for_status()
            return resp.json()["data"][0]["embedding"]
    except Exception as exc:
        log.warning("embedding_failed", model=settings.embedding_model, error=str(exc))
        return None
