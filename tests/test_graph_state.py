import json

from langchain_core.messages import AIMessage, HumanMessage, ToolMessage

from agentloop.core.graph_state import dump_state, initial_state, load_state, run_identity, start_turn
from agentloop.core.models import Step, Task, TaskStatus, Thought, ToolCall
from agentloop.core.tokens import TokenUsage
from agentloop.memory.types import LTMContext, Memories, MemoryHit, STMContext


def test_initial_state_has_every_field():
    state = initial_state([HumanMessage(content="hi")], stm_max_size=4)
    assert state["memories"].stm.max_size == 4
    assert state["current_graph_step"] == 0
    assert state["token_usage"] == TokenUsage()


def test_start_turn_resets_budgets():
    payload = start_turn(HumanMessage(content="again"))
    assert payload["current_graph_step"] == 0
    assert payload["iteration"] == 0
    assert "tasks" not in payload


def test_run_identity_defaults():
    assert run_identity(None) == ("default_user", "default_thread")
    assert run_identity({"configurable": {"thread_id": "t", "user_id": "u"}}) == ("u", "t")


def test_state_survives_json_round_trip(make_stm_item):
    hit = MemoryHit(memory_id="m1", memory_type="semantic", content="likes tea", step_id="s0", category="preference")
    task = Task(
        thought=Thought(text="goal"),
        steps=[Step(tool=[ToolCall(id="c1", name="lookup", args={"key": "a"}, result="v", status="success")])],
        status=TaskStatus.IN_PROGRESS,
    )
    state = {
        "messages": [
            HumanMessage(content="hi"),
            AIMessage(content="", tool_calls=[{"name": "lookup", "args": {"key": "a"}, "id": "c1"}]),
            ToolMessage(content="v", tool_call_id="c1"),
        ],
        "tasks": [task],
        "current_step_index": 0,
        "current_graph_step": 3,
        "iteration": 2,
        "memories": Memories(stm=STMContext(items=[make_stm_item("s1")], total_inserted=1),
                             ltm=LTMContext.from_hits([hit])),
        "last_node": "tools",
        "retry": 1,
        "token_usage": TokenUsage(prompt_tokens=10, response_tokens=5, total_tokens=15, calls=1),
    }

    restored = load_state(json.loads(json.dumps(dump_state(state))))

    assert restored["tasks"] == [task]
    assert restored["memories"] == state["memories"]
    assert restored["token_usage"] == state["token_usage"]
    assert (restored["current_graph_step"], restored["iteration"], restored["retry"]) == (3, 2, 1)
    assert restored["last_node"] == "tools"
    assert restored["messages"][1].tool_calls[0]["id"] == "c1"
    assert restored["messages"][2].tool_call_id == "c1"
