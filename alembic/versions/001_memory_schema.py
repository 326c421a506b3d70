"""Long-term memory tables — episodic events and semantic facts.

Both tables are scoped by (user_id, run_id); run_id is the LangGraph
thread id. step_id / task_id link a memory back to the agent step that
produced it so retrieval can skip memories still held in short-term memory.

LangGraph checkpoint tables are not managed here: AsyncPostgresSaver.setup()
creates them at startup.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

revision = "001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    op.execute("""
        CREATE TABLE IF NOT EXISTS episodic_memories (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id     TEXT NOT NULL,
            run_id      TEXT NOT NULL,
            task_id     TEXT,
            step_id     TEXT NOT NULL,
            content     TEXT NOT NULL CHECK (char_length(content) <= 10000),
            sources     TEXT[] NOT NULL DEFAULT '{}',
            embedding   vector(1536),
            created_at  TIMESTAMPTZ DEFAULT now(),
            updated_at  TIMESTAMPTZ DEFAULT now()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_episodic_scope ON episodic_memories(user_id, run_id)")
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_episodic_embedding
            ON episodic_memories
            USING hnsw (embedding vector_cosine_ops)
            WITH (m = 16, ef_construction = 64)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS semantic_memories (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id     TEXT NOT NULL,
            run_id      TEXT NOT NULL,
            task_id     TEXT,
            step_id     TEXT NOT NULL,
            fact        TEXT NOT NULL CHECK (char_length(fact) <= 10000),
            category    TEXT NOT NULL,
            embedding   vector(1536),
            created_at  TIMESTAMPTZ DEFAULT now(),
            updated_at  TIMESTAMPTZ DEFAULT now()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_semantic_scope    ON semantic_memories(user_id, run_id)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_semantic_category ON semantic_memories(category)")
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_semantic_embedding
            ON semantic_memories
            USING hnsw (embedding vector_cosine_ops)
            WITH (m = 16, ef_construction = 64)
    """)


def downgrade() -> None:
    for table in ("semantic_memories", "episodic_memories"):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
