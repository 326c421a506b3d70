import pytest
import structlog

from agentloop.core.config import Settings
from agentloop.core.models import Step, Thought
from agentloop.memory.types import MessageContent, STMItem, StepRecord


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


@pytest.fixture
def make_settings():
    def factory(**overrides) -> Settings:
        return Settings(_env_file=None, **overrides)
    return factory


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


@pytest.fixture
def make_stm_item():
    def factory(step_id: str, text: str = "did something", task_id: str | None = "task-1") -> STMItem:
        record = StepRecord(type="message", message=MessageContent(content=text, tokens=3))
        return STMItem(content=record, step_id=step_id, task_id=task_id, tokens=record.tokens)
    return factory


@pytest.fixture
def make_step():
    def factory(text: str = "step", output: str = "") -> Step:
        return Step(thought=Thought(text=text), output=output)
    return factory
