"""
Agent execution graph — LangGraph assembly.

    START → agent ──(route_after_agent)──┬──▶ tools ────────▶ agent
              ↑                          ├──▶ human_input ──▶ agent   (hybrid only)
              └──────────────────────────┴──▶ END

agent:        plan / reason / verify, memory hand-offs (agentloop.agents.nodes)
tools:        tool execution wrapper
human_input:  interrupt() — the run suspends until resumed with Command(resume=...)

Routing policy lives in agentloop.agents.transitions; this module only
maps it onto LangGraph edges and compiles with a checkpointer.
"""

from langchain_core.tools import BaseTool
from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.graph import END, START, StateGraph

from agentloop.agents.nodes import AgentNodes
from agentloop.agents.tools import ToolExecutor
from agentloop.agents.transitions import route_after_agent
from agentloop.core.config import Settings, get_settings
from agentloop.core.errors import ConfigurationError
from agentloop.core.graph_state import AgentNode, GraphState
from agentloop.core.llm import ModelSet
from agentloop.core.logging import get_logger
from agentloop.core.models import AgentMode
from agentloop.memory.graph import MemoryGraph
from agentloop.memory.store import MemoryStore

log = get_logger(__name__)


class AgentExecutionGraph:
    def __init__(
        self,
        models: ModelSet | None,
        *,
        tools: list[BaseTool] | None = None,
        memory_store: MemoryStore | None = None,
        checkpointer: BaseCheckpointSaver | None = None,
        settings: Settings | None = None,
        mode: AgentMode | str | None = None,
    ):
        if models is None:
            raise ConfigurationError("AgentExecutionGraph requires a model set")
        self.settings = settings or get_settings()
        self.mode = AgentMode(mode or self.settings.agent_mode)

        executor = ToolExecutor(
            tools or [],
            max_result_chars=self.settings.tool_result_max_chars,
            args_log_chars=self.settings.tool_args_log_chars,
        )
        memory = MemoryGraph.build(self.settings, models.fast, memory_store)
        self.nodes = AgentNodes(self.settings, models, executor, memory, self.mode)
        self.graph = self._compile(checkpointer)

        log.info(
            "agent_graph_built",
            mode=self.mode.value,
            execution_mode=self.settings.execution_mode,
            tools=len(executor.tools),
            memory_store=memory_store is not None,
        )

    def route_agent(self, state: GraphState) -> str:
        return route_after_agent(state, self.mode).value

    def _compile(self, checkpointer: BaseCheckpointSaver | None):
        workflow = StateGraph(GraphState)

        # Nodes
        workflow.add_node(AgentNode.AGENT.value, self.nodes.agent_node)
        workflow.add_node(AgentNode.TOOLS.value, self.nodes.tools_node)
        path_map = {
            AgentNode.AGENT.value: AgentNode.AGENT.value,
            AgentNode.TOOLS.value: AgentNode.TOOLS.value,
            AgentNode.END.value: END,
        }
        if self.mode == AgentMode.HYBRID:
            workflow.add_node(AgentNode.HUMAN_INPUT.value, self.nodes.human_input_node)
            workflow.add_edge(AgentNode.HUMAN_INPUT.value, AgentNode.AGENT.value)
            path_map[AgentNode.HUMAN_INPUT.value] = AgentNode.HUMAN_INPUT.value

        # Edges
        workflow.add_edge(START, AgentNode.AGENT.value)
        workflow.add_conditional_edges(AgentNode.AGENT.value, self.route_agent, path_map)
        workflow.add_edge(AgentNode.TOOLS.value, AgentNode.AGENT.value)

        return workflow.compile(checkpointer=checkpointer)

    def run_config(self, thread_id: str, user_id: str | None = None) -> dict:
        return {
            "configurable": {"thread_id": thread_id, "user_id": user_id or "default_user"},
            # each top-level node is one superstep; the step ceiling ends the run first
            "recursion_limit": self.settings.max_graph_steps + 10,
        }


def build_agent_graph(
    models: ModelSet | None,
    *,
    tools: list[BaseTool] | None = None,
    memory_store: MemoryStore | None = None,
    checkpointer: BaseCheckpointSaver | None = None,
    settings: Settings | None = None,
    mode: AgentMode | str | None = None,
) -> AgentExecutionGraph:
    """
    Compile the agent graph. The compiled graph holds no per-thread state —
    build it once per process and reuse it across threads.
    """
    return AgentExecutionGraph(
        models,
        tools=tools,
        memory_store=memory_store,
        checkpointer=checkpointer,
        settings=settings,
        mode=mode,
    )
