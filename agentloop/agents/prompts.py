"""Prompt text and response markers for the agent graph."""

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from agentloop.core.models import AgentMode, ExecutionMode, Task
from agentloop.memory.formatting import format_ltm, format_stm
from agentloop.memory.types import Memories

FINAL_ANSWER_MARKER = "FINAL ANSWER"
HUMAN_INPUT_MARKER = "WAITING_FOR_HUMAN_INPUT"

_BASE = "You are an agent that completes objectives step by step, using tools when they help."

_MODE_RULES = {
    AgentMode.INTERACTIVE: (
        f"When you have answered the user, start your reply with '{FINAL_ANSWER_MARKER}:'."
    ),
    AgentMode.AUTONOMOUS: (
        "You run without a user. Keep working toward the objective. "
        f"When a step is done, reply with '{FINAL_ANSWER_MARKER}:' followed by its result; "
        "you will then be asked to continue."
    ),
    AgentMode.HYBRID: (
        "You run autonomously but may ask the user for help. "
        f"To ask, write '{HUMAN_INPUT_MARKER}' followed by your question. "
        f"When a step is done, reply with '{FINAL_ANSWER_MARKER}:' followed by its result."
    ),
}

PLANNER_PROMPT = (
    "Break the user's objective into at most {max_steps} concrete steps an agent with tools "
    "can execute in order. Give the objective in `thought.text`, your reasoning in "
    "`thought.reasoning`, and one entry per step."
)


def build_system_prompt(
    mode: AgentMode,
    execution_mode: ExecutionMode,
    task: Task | None,
    step_index: int,
    memories: Memories | None,
) -> SystemMessage:
    parts = [_BASE, _MODE_RULES[AgentMode(mode)]]

    if task is not None:
        parts.append(f"\nCurrent objective: {task.thought.text}")
        if ExecutionMode(execution_mode) == ExecutionMode.PLANNING and task.steps:
            plan = "\n".join(
                f"{'→' if i == step_index else ' '} {i + 1}. {s.thought.text}" for i, s in enumerate(task.steps)
            )
            parts.append(f"Plan:\n{plan}")

    if memories is not None:
        recent = format_stm(memories.stm)
        if recent:
            parts.append(f"\nRecent steps:\n{recent}")
        known = format_ltm(memories.ltm)
        if known:
            parts.append(f"\nFrom long-term memory:\n{known}")

    return SystemMessage(content="\n".join(parts))


# ── Markers ───────────────────────────────────────────────────────────────────

def has_final_answer(text: str) -> bool:
    return FINAL_ANSWER_MARKER in text


def needs_human_input(text: str) -> bool:
    return HUMAN_INPUT_MARKER in text


def extract_final_answer(text: str) -> str:
    _, _, answer = text.partition(FINAL_ANSWER_MARKER)
    return answer.lstrip(" :\n").strip()


# ── Synthesised messages ──────────────────────────────────────────────────────

def continuation_message(answer: str) -> HumanMessage:
    return HumanMessage(
        content=(
            f"Your previous result was: {answer}\n"
            "Continue toward the objective and decide the next action."
        ),
        additional_kwargs={"from": "continuation"},
    )


def rejection_message(retry: int, max_retries: int) -> HumanMessage:
    return HumanMessage(
        content=(
            f"Your final answer was empty ({retry}/{max_retries}). "
            f"Provide the result after '{FINAL_ANSWER_MARKER}:'."
        ),
        additional_kwargs={"from": "verifier"},
    )


def stopped_message(current_graph_step: int, reason: str = "max_graph_steps") -> AIMessage:
    return AIMessage(
        content=f"Stopped after {current_graph_step} steps: the step limit for this turn was reached.",
        additional_kwargs={"final": True, "error": reason},
    )


def skipped_tool_message(call: dict, reason: str) -> ToolMessage:
    return ToolMessage(
        content=f"Not executed: the {reason} limit for this turn was reached.",
        tool_call_id=call.get("id") or "",
        name=call.get("name"),
        additional_kwargs={"error": reason},
    )


def error_message(exc: BaseException) -> AIMessage:
    return AIMessage(
        content=f"I ran into an unexpected error and had to stop: {type(exc).__name__}: {exc}",
        additional_kwargs={"final": True, "error": "unexpected_error"},
    )
