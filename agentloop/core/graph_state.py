from enum import Enum
from typing import Annotated, Any, TypedDict

from langchain_core.messages import BaseMessage, messages_from_dict, messages_to_dict
from langgraph.graph.message import add_messages

from agentloop.core.models import Task
from agentloop.core.tokens import TokenUsage
from agentloop.memory.types import Memories


# ── Node identities ───────────────────────────────────────────────────────────

class AgentNode(str, Enum):
    AGENT = "agent"
    TOOLS = "tools"
    HUMAN_INPUT = "human_input"
    END = "__end__"


class PlannerNode(str, Enum):
    PLANNER = "planner"


class VerifierNode(str, Enum):
    VERIFIER = "verifier"


class MemoryNode(str, Enum):
    STM_MANAGER = "stm_manager"
    LTM_MANAGER = "ltm_manager"
    RETRIEVE_MEMORY = "retrieve_memory"
    END_SUBGRAPH = "end_memory_graph"
    END = "end"


EXECUTOR_NODES = frozenset({AgentNode.AGENT.value, AgentNode.TOOLS.value})


class GraphState(TypedDict, total=False):
    """Shared state passed between all LangGraph nodes."""
    messages:           Annotated[list, add_messages]  # append-only conversation
    tasks:              list[Task]      # plan (planning mode) or step history (reactive)
    current_step_index: int             # active step within the open task
    current_graph_step: int             # node executions this turn, the hard budget
    iteration:          int             # agent model turns this turn
    memories:           Memories
    last_node:          str             # id of the node that produced the last update
    retry:              int             # consecutive verifier rejections
    token_usage:        TokenUsage


def initial_state(messages: list[BaseMessage], *, stm_max_size: int = 10) -> dict:
    return {
        "messages": list(messages),
        "tasks": [],
        "current_step_index": 0,
        "current_graph_step": 0,
        "iteration": 0,
        "memories": Memories.empty(stm_max_size),
        "last_node": "",
        "retry": 0,
        "token_usage": TokenUsage(),
    }


def run_identity(config: dict | None) -> tuple[str, str]:
    """(user_id, thread_id) from a LangGraph run config."""
    configurable = (config or {}).get("configurable", {})
    return (
        str(configurable.get("user_id") or "default_user"),
        str(configurable.get("thread_id") or "default_thread"),
    )


def start_turn(message: BaseMessage) -> dict:
    """Input for a new inbound message on an existing thread. Budgets reset per turn."""
    return {"messages": [message], "current_graph_step": 0, "iteration": 0}


# ── Serialisation ─────────────────────────────────────────────────────────────

def dump_state(state: dict) -> dict[str, Any]:
    """JSON-safe snapshot of every GraphState field."""
    memories = state.get("memories") or Memories()
    usage = state.get("token_usage") or TokenUsage()
    return {
        "messages": messages_to_dict(list(state.get("messages", []))),
        "tasks": [t.model_dump(mode="json") for t in state.get("tasks", [])],
        "current_step_index": state.get("current_step_index", 0),
        "current_graph_step": state.get("current_graph_step", 0),
        "iteration": state.get("iteration", 0),
        "memories": memories.model_dump(mode="json"),
        "last_node": str(state.get("last_node", "")),
        "retry": state.get("retry", 0),
        "token_usage": usage.model_dump(mode="json"),
    }


def load_state(data: dict[str, Any]) -> dict:
    return {
        "messages": messages_from_dict(data.get("messages", [])),
        "tasks": [Task.model_validate(t) for t in data.get("tasks", [])],
        "current_step_index": int(data.get("current_step_index", 0)),
        "current_graph_step": int(data.get("current_graph_step", 0)),
        "iteration": int(data.get("iteration", 0)),
        "memories": Memories.model_validate(data.get("memories", {})),
        "last_node": data.get("last_node", ""),
        "retry": int(data.get("retry", 0)),
        "token_usage": TokenUsage.model_validate(data.get("token_usage", {})),
    }
