"""
Memory sub-graph — an explicit state machine run inside agent nodes.

    (router) ─┬─▶ stm_manager ──▶ ltm_manager ──▶ retrieve_memory ──▶ (router) ─▶ end
              ├─▶ ltm_manager ──▶ retrieve_memory ──▶ ...
              ├─▶ retrieve_memory ──▶ ...
              └─▶ end_memory_graph

The router (agentloop.memory.router) is consulted on entry and after
retrieve_memory; the edges in between are fixed. Every handler is
non-fatal: a failing handler leaves memories as they were and the run
moves on.
"""

from dataclasses import dataclass, field

from langchain_core.runnables import RunnableConfig

from agentloop.core.config import Settings
from agentloop.core.graph_state import MemoryNode
from agentloop.core.llm import ModelHandle
from agentloop.core.logging import get_logger
from agentloop.memory.ltm import LTMManager
from agentloop.memory.retrieval import MemoryRetriever
from agentloop.memory.router import route_memory
from agentloop.memory.stm import STMManager
from agentloop.memory.store import MemoryStore
from agentloop.memory.types import Memories

log = get_logger(__name__)

_EDGES = {
    MemoryNode.STM_MANAGER: MemoryNode.LTM_MANAGER,
    MemoryNode.LTM_MANAGER: MemoryNode.RETRIEVE_MEMORY,
}
_TERMINAL = (MemoryNode.END, MemoryNode.END_SUBGRAPH)


@dataclass
class MemoryRun:
    memories: Memories | None
    path: list[MemoryNode] = field(default_factory=list)


class MemoryGraph:
    def __init__(self, settings: Settings, stm: STMManager, ltm: LTMManager, retriever: MemoryRetriever):
        self.settings = settings
        self._handlers = {
            MemoryNode.STM_MANAGER: stm.process,
            MemoryNode.LTM_MANAGER: ltm.process,
            MemoryNode.RETRIEVE_MEMORY: retriever.retrieve,
        }

    @classmethod
    def build(cls, settings: Settings, model: ModelHandle | None = None, store: MemoryStore | None = None) -> "MemoryGraph":
        return cls(
            settings,
            STMManager(settings, model),
            LTMManager(settings, model, store),
            MemoryRetriever(settings, store),
        )

    async def run(self, state: dict, last_node: str, config: RunnableConfig | None = None) -> MemoryRun:
        working = {**state, "last_node": last_node}
        node = route_memory(working, self.settings.max_graph_steps)
        path = [node]

        while node not in _TERMINAL:
            try:
                update = await self._handlers[node](working, config or {})
            except Exception as exc:
                log.error("memory_node_failed", node=node.value, error=str(exc), error_type=type(exc).__name__)
                update = {"last_node": node.value}
            working = {**working, **update}
            node = _EDGES.get(node) or route_memory(working, self.settings.max_graph_steps)
            path.append(node)

        log.debug("memory_graph_done", entry=str(last_node), path=[n.value for n in path])
        return MemoryRun(memories=working.get("memories"), path=path)
