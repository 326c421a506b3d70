"""
Memory value types.

    Memories
      ├── stm: STMContext   fixed-capacity FIFO of recent step records
      └── ltm: LTMContext   session-local cache of hits pulled from the store

    EpisodicMemoryContext / SemanticMemoryContext
      records produced by the LTM manager and written to the MemoryStore

All of these are pydantic models so they survive LangGraph checkpoints and
dump_state()/load_state() unchanged. They are treated as immutable: memory
nodes build new instances instead of mutating the ones in state.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

T = TypeVar("T")


# ── Short-term memory ─────────────────────────────────────────────────────────

class MessageContent(BaseModel):
    content: str
    tokens: int = 0


class ToolRecord(BaseModel):
    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    result: str = ""
    status: str = "success"
    tokens: int = 0


class StepRecord(BaseModel):
    type: Literal["tools", "message"]
    message: MessageContent | None = None
    tools: list[ToolRecord] = Field(default_factory=list)

    @property
    def tokens(self) -> int:
        total = sum(t.tokens for t in self.tools)
        if self.message is not None:
            total += self.message.tokens
        return total


class STMItem(BaseModel):
    content: StepRecord
    step_id: str
    task_id: str | None = None
    tokens: int = 0
    inserted_at: float = Field(default_factory=time.time)


class STMContext(BaseModel):
    items: list[STMItem] = Field(default_factory=list)
    max_size: int = 10
    total_inserted: int = 0

    def step_ids(self) -> set[str]:
        return {item.step_id for item in self.items}

    def latest(self) -> STMItem | None:
        return self.items[-1] if self.items else None


# ── Long-term memory ──────────────────────────────────────────────────────────

class MemoryHit(BaseModel):
    memory_id: str
    memory_type: Literal["episodic", "semantic"]
    content: str
    similarity: float = 0.0
    step_id: str | None = None
    task_id: str | None = None
    category: str | None = None
    sources: list[str] = Field(default_factory=list)


class LTMContext(BaseModel):
    items: list[MemoryHit] = Field(default_factory=list)
    episodic_size: int = 0
    semantic_size: int = 0
    merge_size: int = 0

    @classmethod
    def from_hits(cls, hits: list[MemoryHit]) -> "LTMContext":
        episodic = sum(1 for h in hits if h.memory_type == "episodic")
        return cls(
            items=list(hits),
            episodic_size=episodic,
            semantic_size=len(hits) - episodic,
            merge_size=len(hits),
        )


class Memories(BaseModel):
    stm: STMContext = Field(default_factory=STMContext)
    ltm: LTMContext = Field(default_factory=LTMContext)

    @classmethod
    def empty(cls, stm_max_size: int = 10) -> "Memories":
        return cls(stm=STMContext(max_size=stm_max_size))


def validate_memories(value: Any) -> bool:
    """Structural check used by the memory router before entering the sub-graph."""
    if value is None:
        return False
    if not isinstance(value, Memories):
        try:
            value = Memories.model_validate(value)
        except ValidationError:
            return False

    stm, ltm = value.stm, value.ltm
    if stm.max_size <= 0 or len(stm.items) > stm.max_size:
        return False
    if stm.total_inserted < len(stm.items):
        return False
    if any(not item.step_id or item.tokens < 0 for item in stm.items):
        return False
    if ltm.merge_size != len(ltm.items):
        return False
    if ltm.episodic_size + ltm.semantic_size != len(ltm.items):
        return False
    return True


# ── Records written to the store ──────────────────────────────────────────────

class EpisodicMemoryContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    run_id: str
    task_id: str | None = None
    step_id: str
    content: str
    sources: list[str] = Field(default_factory=list)


class SemanticMemoryContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    run_id: str
    task_id: str | None = None
    step_id: str
    fact: str
    category: str


@dataclass
class MemoryOperationResult(Generic[T]):
    success: bool
    data: T | None = None
    error: str | None = None
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def ok(cls, data: T | None = None) -> "MemoryOperationResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "MemoryOperationResult[T]":
        return cls(success=False, error=error)
