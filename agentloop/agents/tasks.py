"""
Planning, step bookkeeping and final-answer verification.

    TaskPlanner.plan        new Task for the latest objective
    record_agent_turn       agent text + requested tool calls → active step
    record_tool_outcomes    tool results → matching ToolCalls on the active step
    verify_final_answer     accept (advance / complete) or reject (retry / fail)

All helpers return new Task objects; tasks held in graph state are never
mutated in place.
"""

from dataclasses import dataclass

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from agentloop.agents.prompts import PLANNER_PROMPT, extract_final_answer
from agentloop.agents.tools import ToolOutcome
from agentloop.core.config import Settings
from agentloop.core.llm import ModelHandle
from agentloop.core.logging import get_logger
from agentloop.core.models import ExecutionMode, Step, Task, TaskStatus, Thought, ToolCall, new_id
from agentloop.core.tokens import message_text

log = get_logger(__name__)


class PlannedStep(BaseModel):
    text: str
    reasoning: str = ""


class Plan(BaseModel):
    thought: Thought = Field(default_factory=Thought)
    steps: list[PlannedStep] = Field(default_factory=list)


# HumanMessages the loop writes itself; never an objective
SYNTHESISED_SOURCES = frozenset({"continuation", "verifier"})


def latest_objective(messages: list[BaseMessage]) -> str:
    for message in reversed(messages):
        if not isinstance(message, HumanMessage):
            continue
        if message.additional_kwargs.get("from") in SYNTHESISED_SOURCES:
            continue
        return message_text(message)
    return ""


class TaskPlanner:
    def __init__(self, settings: Settings, model: ModelHandle):
        self.settings = settings
        self.model = model

    async def plan(self, messages: list[BaseMessage]) -> Task:
        objective = latest_objective(messages)
        if ExecutionMode(self.settings.execution_mode) == ExecutionMode.REACTIVE:
            return Task(thought=Thought(text=objective))

        raw = await self.model.structured(Plan).ainvoke(
            [
                SystemMessage(content=PLANNER_PROMPT.format(max_steps=self.settings.max_plan_steps)),
                HumanMessage(content=objective),
            ]
        )
        if isinstance(raw, BaseModel):
            raw = raw.model_dump()
        plan = Plan.model_validate(raw)

        steps = [
            Step(thought=Thought(text=s.text, reasoning=s.reasoning))
            for s in plan.steps[: self.settings.max_plan_steps]
            if s.text.strip()
        ] or [Step(thought=Thought(text=objective))]
        thought = plan.thought if plan.thought.text else Thought(text=objective, reasoning=plan.thought.reasoning)

        log.info("task_planned", steps=len(steps))
        return Task(thought=thought, steps=steps)


# ── Step bookkeeping ──────────────────────────────────────────────────────────

def _step_position(task: Task, execution_mode: ExecutionMode, step_index: int) -> int | None:
    if not task.steps:
        return None
    if execution_mode == ExecutionMode.PLANNING and 0 <= step_index < len(task.steps):
        return step_index
    return len(task.steps) - 1


def record_agent_turn(task: Task, execution_mode: ExecutionMode | str, step_index: int, response: AIMessage) -> Task:
    mode = ExecutionMode(execution_mode)
    calls = [
        ToolCall(id=c.get("id") or new_id(), name=c["name"], args=c.get("args") or {})
        for c in getattr(response, "tool_calls", None) or []
    ]
    text = message_text(response.content)

    steps = list(task.steps)
    position = _step_position(task, mode, step_index) if mode == ExecutionMode.PLANNING else None
    if position is None:
        steps.append(Step(thought=Thought(text=text[:200]), tool=calls, output=text))
    else:
        step = steps[position]
        output = f"{step.output}\n{text}".strip() if text else step.output
        steps[position] = step.model_copy(update={"tool": list(step.tool) + calls, "output": output})

    return task.model_copy(update={"steps": steps, "status": TaskStatus.IN_PROGRESS})


def record_tool_outcomes(task: Task, execution_mode: ExecutionMode | str, step_index: int, outcomes: list[ToolOutcome]) -> Task:
    position = _step_position(task, ExecutionMode(execution_mode), step_index)
    if position is None:
        return task

    step = task.steps[position]
    calls = list(step.tool)
    for outcome in outcomes:
        for i, call in enumerate(calls):
            if call.id == outcome.call_id or (call.name == outcome.name and call.result is None):
                calls[i] = call.model_copy(update={"result": outcome.content, "status": "success"})
                break
        else:
            calls.append(ToolCall(id=outcome.call_id, name=outcome.name, args=outcome.args,
                                  result=outcome.content, status="success"))

    steps = list(task.steps)
    steps[position] = step.model_copy(update={"tool": calls})
    return task.model_copy(update={"steps": steps})


# ── Verification ──────────────────────────────────────────────────────────────

@dataclass
class Verdict:
    task: Task
    step_index: int
    retry: int
    accepted: bool

    @property
    def finished(self) -> bool:
        return self.task.is_finished


def verify_final_answer(
    task: Task,
    execution_mode: ExecutionMode | str,
    step_index: int,
    response_text: str,
    retry: int,
    max_retries: int,
) -> Verdict:
    """
    An empty final answer is a rejection. max_retries rejections in a row
    fail the task. An accepted answer completes the step; the task
    completes with its last step (planning) or immediately (reactive).
    """
    if not extract_final_answer(response_text):
        retry += 1
        if retry >= max_retries:
            log.warning("task_failed", task_id=task.id, retries=retry)
            return Verdict(task.model_copy(update={"status": TaskStatus.FAILED}), step_index, 0, False)
        log.info("final_answer_rejected", task_id=task.id, retry=retry)
        return Verdict(task, step_index, retry, False)

    if ExecutionMode(execution_mode) == ExecutionMode.PLANNING and task.steps:
        step_index += 1
        if step_index < len(task.steps):
            return Verdict(task, step_index, 0, True)

    log.info("task_completed", task_id=task.id, steps=len(task.steps))
    return Verdict(task.model_copy(update={"status": TaskStatus.COMPLETED}), step_index, 0, True)
