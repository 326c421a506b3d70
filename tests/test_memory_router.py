import pytest

from agentloop.core.graph_state import MemoryNode
from agentloop.memory.router import route_memory
from agentloop.memory.types import LTMContext, Memories, MemoryHit, STMContext, validate_memories


def state(last_node, step: int = 1, memories=None) -> dict:
    return {"last_node": last_node, "current_graph_step": step, "memories": memories or Memories()}


@pytest.mark.parametrize(
    "last_node, expected",
    [
        ("planner", MemoryNode.RETRIEVE_MEMORY),
        ("agent", MemoryNode.STM_MANAGER),
        ("tools", MemoryNode.STM_MANAGER),
        ("verifier", MemoryNode.LTM_MANAGER),
        ("retrieve_memory", MemoryNode.END),
        ("human_input", MemoryNode.END_SUBGRAPH),
        ("", MemoryNode.END_SUBGRAPH),
    ],
)
def test_routes_by_last_node(last_node, expected):
    assert route_memory(state(last_node), max_graph_steps=10) == expected


def test_accepts_enum_members():
    assert route_memory(state(MemoryNode.RETRIEVE_MEMORY), max_graph_steps=10) == MemoryNode.END


@pytest.mark.parametrize("last_node", ["planner", "agent", "tools", "verifier", "retrieve_memory"])
def test_budget_exhaustion_wins(last_node):
    assert route_memory(state(last_node, step=10), max_graph_steps=10) == MemoryNode.END_SUBGRAPH


def test_invalid_memories_end_the_subgraph(make_stm_item):
    overfull = Memories(stm=STMContext(items=[make_stm_item("a"), make_stm_item("b")], max_size=1,
                                       total_inserted=2))
    assert route_memory(state("agent", memories=overfull), 10) == MemoryNode.END_SUBGRAPH
    assert route_memory({"last_node": "agent", "current_graph_step": 0, "memories": None}, 10) == MemoryNode.END_SUBGRAPH


def test_router_does_not_mutate_state():
    before = state("agent")
    snapshot = dict(before)
    route_memory(before, 10)
    assert before == snapshot


def test_validate_memories(make_stm_item):
    assert validate_memories(Memories())
    assert validate_memories(Memories().model_dump())
    assert not validate_memories({"stm": {"max_size": "lots"}})

    miscounted = Memories(stm=STMContext(items=[make_stm_item("a")], total_inserted=0))
    assert not validate_memories(miscounted)

    hit = MemoryHit(memory_id="m", memory_type="semantic", content="c", step_id="s")
    assert validate_memories(Memories(ltm=LTMContext.from_hits([hit])))
    assert not validate_memories(Memories(ltm=LTMContext(items=[hit], merge_size=1)))
