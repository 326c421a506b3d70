"""
Long-term memory manager.

Runs after a task finishes (completed or failed):

    finished task ──format──▶ fast model (structured output)
                                  │
                 {episodic: [...], semantic: [...]}   bounded lists
                                  │
                 stamp user / run / task / last step ids
                                  │
                        MemoryStore.upsert_memory

Planning mode feeds the model the whole step history of the task; reactive
mode feeds it the most recent STM item. Store failures are logged and never
interrupt the graph.
"""

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.runnables import RunnableConfig
from pydantic import BaseModel, Field, create_model

from agentloop.core.config import Settings
from agentloop.core.graph_state import MemoryNode, run_identity
from agentloop.core.llm import ModelHandle
from agentloop.core.logging import get_logger
from agentloop.core.models import ExecutionMode, Task
from agentloop.memory.formatting import format_stm_item, format_task
from agentloop.memory.store import MemoryStore
from agentloop.memory.types import EpisodicMemoryContext, Memories, SemanticMemoryContext

log = get_logger(__name__)

LTM_PROMPT = (
    "You maintain the long-term memory of an autonomous agent.\n"
    "From the activity below extract:\n"
    "- episodic: concrete things that happened (at most {max_episodic}), each with the "
    "sources it came from (tool names, 'conversation');\n"
    "- semantic: durable facts worth knowing in future tasks (at most {max_semantic}), "
    "each with a short category such as preference, fact, procedure or entity.\n"
    "Return empty lists when nothing is worth remembering."
)


class EpisodicExtraction(BaseModel):
    content: str = Field(description="What happened, in one or two sentences")
    source: list[str] = Field(default_factory=lambda: ["conversation"])


class SemanticExtraction(BaseModel):
    fact: str = Field(description="A standalone fact")
    category: str = "fact"


class LTMExtraction(BaseModel):
    episodic: list[EpisodicExtraction] = Field(default_factory=list)
    semantic: list[SemanticExtraction] = Field(default_factory=list)


def ltm_extraction_schema(max_episodic: int, max_semantic: int) -> type[BaseModel]:
    """LTMExtraction with the list bounds written into the JSON schema."""
    return create_model(
        "MemoryExtraction",
        __doc__="Memories extracted from a finished agent task.",
        episodic=(list[EpisodicExtraction], Field(default_factory=list, max_length=max_episodic)),
        semantic=(list[SemanticExtraction], Field(default_factory=list, max_length=max_semantic)),
    )


def build_records(
    extraction: LTMExtraction,
    *,
    user_id: str,
    run_id: str,
    task_id: str | None,
    step_id: str,
    max_episodic: int,
    max_semantic: int,
) -> tuple[list[SemanticMemoryContext], list[EpisodicMemoryContext]]:
    episodic = [
        EpisodicMemoryContext(
            user_id=user_id,
            run_id=run_id,
            task_id=task_id,
            step_id=step_id,
            content=e.content.strip(),
            sources=[s for s in e.source if s.strip()] or ["conversation"],
        )
        for e in extraction.episodic[:max_episodic]
        if e.content.strip()
    ]
    semantic = [
        SemanticMemoryContext(
            user_id=user_id,
            run_id=run_id,
            task_id=task_id,
            step_id=step_id,
            fact=s.fact.strip(),
            category=s.category.strip() or "fact",
        )
        for s in extraction.semantic[:max_semantic]
        if s.fact.strip()
    ]
    return semantic, episodic


class LTMManager:
    def __init__(self, settings: Settings, model: ModelHandle | None = None, store: MemoryStore | None = None):
        self.settings = settings
        self.model = model
        self.store = store

    def _source_text(self, task: Task, memories: Memories) -> str:
        if ExecutionMode(self.settings.execution_mode) == ExecutionMode.PLANNING:
            return format_task(task)
        return format_stm_item(memories.stm.items[-1])

    async def extract(self, text: str) -> LTMExtraction:
        schema = ltm_extraction_schema(
            self.settings.max_insert_episodic_size, self.settings.max_insert_semantic_size
        )
        prompt = LTM_PROMPT.format(
            max_episodic=self.settings.max_insert_episodic_size,
            max_semantic=self.settings.max_insert_semantic_size,
        )
        raw = await self.model.structured(schema).ainvoke(
            [SystemMessage(content=prompt), HumanMessage(content=text)]
        )
        if isinstance(raw, BaseModel):
            raw = raw.model_dump()
        return LTMExtraction.model_validate(raw)

    # ── node handler ─────────────────────────────────────────────────────────

    async def process(self, state: dict, config: RunnableConfig) -> dict:
        update = {"last_node": MemoryNode.LTM_MANAGER.value}
        if not self.settings.memory_enabled:
            return update
        if state.get("current_graph_step", 0) >= self.settings.max_graph_steps:
            log.warning("ltm_skipped_budget", current_graph_step=state.get("current_graph_step"))
            return update

        tasks = state.get("tasks") or []
        task = tasks[-1] if tasks else None
        if task is None or not task.is_finished:
            return update

        memories = state.get("memories") or Memories()
        if not memories.stm.items:
            log.debug("ltm_skipped_empty_stm", task_id=task.id)
            return update
        if self.model is None or self.store is None:
            log.debug("ltm_skipped_unavailable", has_model=self.model is not None, has_store=self.store is not None)
            return update

        try:
            extraction = await self.extract(self._source_text(task, memories))
        except Exception as exc:
            log.error("ltm_extraction_failed", task_id=task.id, error=str(exc))
            return update

        user_id, run_id = run_identity(config)
        step_id = task.steps[-1].id if task.steps else memories.stm.items[-1].step_id
        semantic, episodic = build_records(
            extraction,
            user_id=user_id,
            run_id=run_id,
            task_id=task.id,
            step_id=step_id,
            max_episodic=self.settings.max_insert_episodic_size,
            max_semantic=self.settings.max_insert_semantic_size,
        )
        if not semantic and not episodic:
            return update

        result = await self.store.upsert_memory(semantic, episodic)
        if not result.success:
            log.warning("ltm_upsert_failed", task_id=task.id, error=result.error)
        else:
            log.info("ltm_memories_stored", task_id=task.id, semantic=len(semantic), episodic=len(episodic))
        return update
