"""
Memory retrieval node.

    newest STM item ──format──▶ similarity query (user + thread scope)
                                       │
                    drop hits whose step is still in STM (or has no step)
                                       │
                    merge into Memories.ltm (newest first, unique ids, capped)
"""

from langchain_core.runnables import RunnableConfig

from agentloop.core.config import Settings
from agentloop.core.graph_state import MemoryNode, run_identity
from agentloop.core.logging import get_logger
from agentloop.memory.formatting import format_stm_item
from agentloop.memory.store import MemoryStore
from agentloop.memory.types import LTMContext, Memories, MemoryHit, STMContext

log = get_logger(__name__)


def filter_hits(hits: list[MemoryHit], stm: STMContext) -> list[MemoryHit]:
    """Hits already represented in STM are redundant; hits without a step id are unanchored."""
    in_stm = stm.step_ids()
    return [h for h in hits if h.step_id and h.step_id not in in_stm]


def merge_hits(ltm: LTMContext, hits: list[MemoryHit], limit: int) -> LTMContext:
    fresh_ids = {h.memory_id for h in hits}
    merged = list(hits) + [h for h in ltm.items if h.memory_id not in fresh_ids]
    return LTMContext.from_hits(merged[:limit])


class MemoryRetriever:
    def __init__(self, settings: Settings, store: MemoryStore | None = None):
        self.settings = settings
        self.store = store

    async def retrieve(self, state: dict, config: RunnableConfig) -> dict:
        update = {"last_node": MemoryNode.RETRIEVE_MEMORY.value}
        if not self.settings.memory_enabled or self.store is None:
            return update
        if state.get("current_graph_step", 0) >= self.settings.max_graph_steps:
            log.warning("retrieval_skipped_budget", current_graph_step=state.get("current_graph_step"))
            return update

        memories = state.get("memories") or Memories()
        latest = memories.stm.latest()
        if latest is None:
            return update
        query = format_stm_item(latest)
        if not query.strip():
            return update

        user_id, thread_id = run_identity(config)
        result = await self.store.retrieve_similar_memories(query, user_id, thread_id)
        if not result.success:
            log.warning("memory_retrieval_failed", error=result.error)
            return update

        hits = filter_hits(result.data or [], memories.stm)
        log.debug("memory_retrieval", returned=len(result.data or []), kept=len(hits))
        if not hits:
            return update

        ltm = merge_hits(memories.ltm, hits, self.settings.ltm_cache_size)
        return {**update, "memories": Memories(stm=memories.stm, ltm=ltm)}
