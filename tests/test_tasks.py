import pytest
from langchain_core.messages import AIMessage, HumanMessage

from agentloop.agents.prompts import continuation_message, rejection_message
from agentloop.agents.tasks import (
    Plan,
    PlannedStep,
    TaskPlanner,
    latest_objective,
    record_agent_turn,
    record_tool_outcomes,
    verify_final_answer,
)
from agentloop.agents.tools import ToolOutcome
from agentloop.core.errors import ConfigurationError
from agentloop.core.llm import ModelHandle
from agentloop.core.models import Step, Task, TaskStatus, Thought
from fakes import FakeChatModel, PlainChatModel, tool_call_message


def planned_task(n: int = 3) -> Task:
    return Task(thought=Thought(text="goal"), steps=[Step(thought=Thought(text=f"step {i}")) for i in range(n)])


def test_latest_objective_is_last_human_message():
    messages = [HumanMessage(content="first"), AIMessage(content="a"), HumanMessage(content="second")]
    assert latest_objective(messages) == "second"
    assert latest_objective([]) == ""


def test_latest_objective_skips_messages_the_loop_wrote():
    messages = [
        HumanMessage(content="monitor the wallet"),
        AIMessage(content="FINAL ANSWER: done"),
        continuation_message("done"),
        AIMessage(content="FINAL ANSWER:"),
        rejection_message(1, 3),
    ]
    assert latest_objective(messages) == "monitor the wallet"
    assert latest_objective([continuation_message("done")]) == ""


async def test_planning_mode_builds_bounded_plan(make_settings):
    plan = Plan(thought=Thought(text="trip"), steps=[PlannedStep(text=f"s{i}") for i in range(5)])
    model = FakeChatModel(structured=[plan])
    planner = TaskPlanner(make_settings(max_plan_steps=3), ModelHandle.from_model("smart", model))

    task = await planner.plan([HumanMessage(content="plan my trip")])

    assert [s.thought.text for s in task.steps] == ["s0", "s1", "s2"]
    assert task.thought.text == "trip"
    assert task.status == TaskStatus.PENDING
    schema, prompt = model.structured_calls[0]
    assert schema is Plan
    assert prompt[1].content == "plan my trip"


async def test_empty_plan_falls_back_to_objective(make_settings):
    model = FakeChatModel(structured=[{"steps": []}])
    task = await TaskPlanner(make_settings(), ModelHandle.from_model("smart", model)).plan(
        [HumanMessage(content="say hi")]
    )
    assert [s.thought.text for s in task.steps] == ["say hi"]
    assert task.thought.text == "say hi"


async def test_reactive_mode_does_not_call_the_model(make_settings):
    model = FakeChatModel()
    task = await TaskPlanner(make_settings(execution_mode="reactive"), ModelHandle.from_model("smart", model)).plan(
        [HumanMessage(content="hello")]
    )
    assert task.steps == []
    assert task.thought.text == "hello"
    assert model.structured_calls == []


async def test_planning_requires_structured_output(make_settings):
    planner = TaskPlanner(make_settings(), ModelHandle.from_model("plain", PlainChatModel()))
    with pytest.raises(ConfigurationError):
        await planner.plan([HumanMessage(content="x")])


def test_planning_turn_fills_the_active_step():
    task = record_agent_turn(planned_task(), "planning", 1, tool_call_message("lookup", {"key": "a"}, "c1", "checking"))

    assert task.status == TaskStatus.IN_PROGRESS
    assert task.steps[1].output == "checking"
    assert [c.name for c in task.steps[1].tool] == ["lookup"]
    assert task.steps[0].tool == []


def test_reactive_turn_appends_a_step():
    task = record_agent_turn(Task(), "reactive", 0, AIMessage(content="thinking"))
    task = record_agent_turn(task, "reactive", 0, AIMessage(content="more"))
    assert [s.output for s in task.steps] == ["thinking", "more"]


def test_tool_outcomes_land_on_matching_call():
    task = record_agent_turn(Task(), "reactive", 0, tool_call_message("lookup", {"key": "a"}, "c1"))
    outcome = ToolOutcome(call_id="c1", name="lookup", args={"key": "a"}, content="value", latency_ms=3)

    task = record_tool_outcomes(task, "reactive", 0, [outcome])

    [call] = task.steps[-1].tool
    assert (call.result, call.status) == ("value", "success")


def test_record_helpers_do_not_mutate_input():
    original = planned_task()
    record_agent_turn(original, "planning", 0, AIMessage(content="x"))
    assert original.steps[0].output == ""
    assert original.status == TaskStatus.PENDING


def test_accepted_answer_advances_the_plan():
    verdict = verify_final_answer(planned_task(3), "planning", 0, "FINAL ANSWER: done", retry=1, max_retries=3)
    assert verdict.accepted
    assert verdict.step_index == 1
    assert verdict.retry == 0
    assert not verdict.finished


def test_last_step_completes_the_task():
    verdict = verify_final_answer(planned_task(3), "planning", 2, "FINAL ANSWER: done", 0, 3)
    assert verdict.finished
    assert verdict.task.status == TaskStatus.COMPLETED


def test_reactive_answer_completes_immediately():
    verdict = verify_final_answer(Task(), "reactive", 0, "FINAL ANSWER: 42", 0, 3)
    assert verdict.task.status == TaskStatus.COMPLETED


def test_empty_answer_is_rejected_until_retries_run_out():
    task = planned_task(2)
    verdict = verify_final_answer(task, "planning", 0, "FINAL ANSWER:", 0, 2)
    assert not verdict.accepted
    assert verdict.retry == 1
    assert not verdict.finished

    verdict = verify_final_answer(task, "planning", 0, "FINAL ANSWER:   ", verdict.retry, 2)
    assert verdict.task.status == TaskStatus.FAILED
    assert verdict.finished
