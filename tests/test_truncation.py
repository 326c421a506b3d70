import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from agentloop.agents.truncation import TRUNCATION_EXHAUSTED_MESSAGE, TruncationLadder, window
from agentloop.core.tokens import TokenTracker
from fakes import FakeChatModel

CONTEXT_ERROR = ValueError("This model's maximum context length is 8192 tokens")


def conversation(turns: int) -> list:
    messages = []
    for i in range(turns):
        messages += [HumanMessage(content=f"question {i}"), AIMessage(content=f"answer {i}")]
    return messages + [HumanMessage(content="last question")]


def sent_history_sizes(model: FakeChatModel) -> list[int]:
    return [len(call) - 1 for call in model.calls]


async def test_full_history_on_first_attempt():
    model = FakeChatModel(default=AIMessage(content="ok"))
    tracker = TokenTracker()
    result = await TruncationLadder().invoke(model, SystemMessage(content="sys"), conversation(3), tracker=tracker)

    assert result.rung == "full"
    assert sent_history_sizes(model) == [7]
    assert isinstance(model.calls[0][0], SystemMessage)
    assert tracker.usage.calls == 1


async def test_ladder_shrinks_monotonically_then_stops():
    model = FakeChatModel(default=CONTEXT_ERROR)
    result = await TruncationLadder().invoke(model, SystemMessage(content="sys"), conversation(3))

    assert sent_history_sizes(model) == [7, 4, 2]
    assert result.exhausted
    assert result.attempts == ["full", "recent", "minimal"]
    assert result.message.content == TRUNCATION_EXHAUSTED_MESSAGE
    assert result.message.additional_kwargs == {"final": True, "error": "token_limit_exceeded"}


async def test_recovers_on_smaller_window():
    model = FakeChatModel([CONTEXT_ERROR], default=AIMessage(content="fits now"))
    result = await TruncationLadder().invoke(model, None, conversation(3))

    assert result.rung == "recent"
    assert result.prompt_messages == 4
    assert result.message.content == "fits now"


async def test_rungs_that_do_not_shrink_are_skipped():
    model = FakeChatModel(default=CONTEXT_ERROR)
    result = await TruncationLadder().invoke(model, None, [HumanMessage(content="hi"), AIMessage(content="hello")])

    # recent and minimal would resend the same two messages
    assert len(model.calls) == 1
    assert result.exhausted


async def test_over_budget_rung_is_not_sent():
    history = [HumanMessage(content="word " * 2000) for _ in range(6)] + [HumanMessage(content="short")]
    model = FakeChatModel(default=AIMessage(content="ok"))
    result = await TruncationLadder(token_ceiling=3000).invoke(model, SystemMessage(content="sys"), history)

    assert result.rung == "minimal"
    assert sent_history_sizes(model) == [2]


async def test_other_errors_propagate():
    model = FakeChatModel(default=RuntimeError("connection reset"))
    with pytest.raises(RuntimeError, match="connection reset"):
        await TruncationLadder().invoke(model, None, conversation(2))
    assert len(model.calls) == 1


def test_window_never_starts_with_tool_result():
    messages = [
        HumanMessage(content="q"),
        AIMessage(content="", tool_calls=[{"name": "lookup", "args": {}, "id": "c1"}]),
        ToolMessage(content="r", tool_call_id="c1"),
        AIMessage(content="a"),
    ]
    assert window(messages, 2) == [messages[3]]
    assert window(messages, None) == messages
