"""
Memory router — decides where the memory sub-graph goes next.

Rules, first match wins:

    (a) current_graph_step >= max_graph_steps   → END_SUBGRAPH
    (b) memories fail structural validation     → END_SUBGRAPH
    (c) last_node is the planner                → RETRIEVE_MEMORY
    (d) last_node is an executor (agent, tools) → STM_MANAGER
    (e) last_node is the verifier               → LTM_MANAGER
    (f) last_node is RETRIEVE_MEMORY            → END
    (g) anything else                           → END_SUBGRAPH (warning)

Pure function of state; never mutates it.
"""

from agentloop.core.graph_state import EXECUTOR_NODES, MemoryNode, PlannerNode, VerifierNode
from agentloop.core.logging import get_logger
from agentloop.memory.types import validate_memories

log = get_logger(__name__)


def route_memory(state: dict, max_graph_steps: int) -> MemoryNode:
    step = state.get("current_graph_step", 0)
    if step >= max_graph_steps:
        log.warning("memory_router_budget_exhausted", current_graph_step=step, max_graph_steps=max_graph_steps)
        return MemoryNode.END_SUBGRAPH

    if not validate_memories(state.get("memories")):
        log.error("memory_router_invalid_memories")
        return MemoryNode.END_SUBGRAPH

    last_node = state.get("last_node", "")
    last_node = str(getattr(last_node, "value", last_node))
    if last_node == PlannerNode.PLANNER.value:
        return MemoryNode.RETRIEVE_MEMORY
    if last_node in EXECUTOR_NODES:
        return MemoryNode.STM_MANAGER
    if last_node == VerifierNode.VERIFIER.value:
        return MemoryNode.LTM_MANAGER
    if last_node == MemoryNode.RETRIEVE_MEMORY.value:
        return MemoryNode.END

    log.warning("memory_router_unknown_node", last_node=str(last_node))
    return MemoryNode.END_SUBGRAPH
