"""
Task / step records produced while the agent works.

    Task ──< Step ──< ToolCall

A Task is created by the planner for each objective. In planning mode its
steps are laid out up front and filled in as the agent executes them; in
reactive mode steps are appended one per agent turn and form the history.

Status moves pending → in_progress → completed | failed. Only finished
tasks are handed to long-term memory extraction.
"""

import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class AgentMode(str, Enum):
    INTERACTIVE = "interactive"
    AUTONOMOUS = "autonomous"
    HYBRID = "hybrid"


class ExecutionMode(str, Enum):
    PLANNING = "planning"
    REACTIVE = "reactive"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


def new_id() -> str:
    return str(uuid.uuid4())


class Thought(BaseModel):
    text: str = ""
    reasoning: str = ""


class ToolCall(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    result: str | None = None
    status: str = "pending"          # pending | success | error


class Step(BaseModel):
    id: str = Field(default_factory=new_id)
    thought: Thought = Field(default_factory=Thought)
    tool: list[ToolCall] = Field(default_factory=list)
    output: str = ""                 # the agent's text for this step


class Task(BaseModel):
    id: str = Field(default_factory=new_id)
    thought: Thought = Field(default_factory=Thought)
    steps: list[Step] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING

    @property
    def is_finished(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)


def active_task(tasks: list[Task]) -> Task | None:
    """The most recent task if it is still open."""
    if tasks and not tasks[-1].is_finished:
        return tasks[-1]
    return None


def active_step(task: Task | None, execution_mode: ExecutionMode | str, step_index: int) -> Step | None:
    """The step currently being worked on, or None."""
    if task is None or not task.steps:
        return None
    if ExecutionMode(execution_mode) == ExecutionMode.PLANNING:
        if 0 <= step_index < len(task.steps):
            return task.steps[step_index]
        return task.steps[-1]
    return task.steps[-1]
