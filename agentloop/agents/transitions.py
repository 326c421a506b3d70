"""
Top-level transition table for the agent execution graph.

    AGENT ──tool calls──────────────────────────▶ TOOLS ──▶ AGENT
      │──WAITING_FOR_HUMAN_INPUT (hybrid)───────▶ HUMAN_INPUT ──▶ AGENT
      │──FINAL ANSWER (interactive)─────────────▶ END
      │──FINAL ANSWER (autonomous / hybrid)─────▶ AGENT   (continuation appended by the node)
      │──terminal message (limit, error)────────▶ END
      └──anything else──────────────────────────▶ AGENT

These are plain functions of (state, mode) so the table can be tested
without building a graph. agentloop.agents.agent_graph wires them into
LangGraph as conditional edges.
"""

from langchain_core.messages import AIMessage

from agentloop.agents.prompts import has_final_answer, needs_human_input
from agentloop.core.graph_state import AgentNode
from agentloop.core.models import AgentMode
from agentloop.core.tokens import message_text


def is_terminal(message) -> bool:
    return bool(getattr(message, "additional_kwargs", {}).get("final"))


def route_after_agent(state: dict, mode: AgentMode | str) -> AgentNode:
    messages = state.get("messages") or []
    if not messages:
        return AgentNode.END
    last = messages[-1]
    if not isinstance(last, AIMessage):
        # continuation or verifier feedback appended after the model response
        return AgentNode.AGENT

    if is_terminal(last):
        return AgentNode.END
    if last.tool_calls:
        return AgentNode.TOOLS

    text = message_text(last)
    mode = AgentMode(mode)
    if mode == AgentMode.HYBRID and needs_human_input(text):
        return AgentNode.HUMAN_INPUT
    if has_final_answer(text):
        return AgentNode.END if mode == AgentMode.INTERACTIVE else AgentNode.AGENT
    return AgentNode.AGENT


def route_after_tools(state: dict) -> AgentNode:
    return AgentNode.AGENT


def route_after_human(state: dict) -> AgentNode:
    return AgentNode.AGENT


TRANSITIONS = {
    AgentNode.AGENT: route_after_agent,
    AgentNode.TOOLS: route_after_tools,
    AgentNode.HUMAN_INPUT: route_after_human,
}
