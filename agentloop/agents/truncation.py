"""
Truncation ladder for model calls under token pressure.

    full history ──▶ last 4 messages ──▶ last 2 messages ──▶ terminal message
                                                             (no model call)

A rung is skipped when its estimated prompt is over the ceiling or when it
would not send fewer messages than the rung before it. A token-limit error
from the provider moves to the next rung; any other error propagates.
"""

from dataclasses import dataclass
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, SystemMessage, ToolMessage

from agentloop.core.errors import is_token_limit_error
from agentloop.core.logging import get_logger
from agentloop.core.tokens import TokenTracker, estimate_message_tokens

log = get_logger(__name__)

RUNGS: tuple[tuple[str, int | None], ...] = (("full", None), ("recent", 4), ("minimal", 2))

TRUNCATION_EXHAUSTED_MESSAGE = (
    "I'm sorry, this conversation has grown too long for me to continue. "
    "Please start a new conversation or shorten your request."
)


@dataclass
class LadderResult:
    message: AIMessage
    rung: str
    prompt_messages: int
    attempts: list[str]

    @property
    def exhausted(self) -> bool:
        return self.rung == "exhausted"


def window(messages: list[BaseMessage], size: int | None) -> list[BaseMessage]:
    """The last `size` messages, never starting on a tool result whose call was cut off."""
    selected = list(messages) if size is None else list(messages[-size:])
    while size is not None and selected and isinstance(selected[0], ToolMessage):
        selected.pop(0)
    return selected


def terminal_message(content: str, reason: str) -> AIMessage:
    return AIMessage(content=content, additional_kwargs={"final": True, "error": reason})


class TruncationLadder:
    def __init__(self, token_ceiling: int = 90_000):
        self.token_ceiling = token_ceiling

    async def invoke(
        self,
        runnable: Any,
        system: SystemMessage | None,
        messages: list[BaseMessage],
        *,
        tracker: TokenTracker | None = None,
        model_name: str = "unknown_model",
    ) -> LadderResult:
        attempts: list[str] = []
        previous_size: int | None = None
        prefix = [system] if system is not None else []

        for rung, size in RUNGS:
            history = window(messages, size)
            if previous_size is not None and len(history) >= previous_size:
                continue
            if not history:
                continue

            prompt = prefix + history
            estimated = estimate_message_tokens(prompt)
            if estimated > self.token_ceiling:
                log.warning("truncation_rung_over_budget", rung=rung, estimated_tokens=estimated,
                            ceiling=self.token_ceiling)
                previous_size = len(history)
                continue

            attempts.append(rung)
            previous_size = len(history)
            try:
                response = await runnable.ainvoke(prompt)
            except Exception as exc:
                if not is_token_limit_error(exc):
                    raise
                log.warning("truncation_rung_token_limit", rung=rung, messages=len(history), error=str(exc))
                continue

            if tracker is not None:
                tracker.track_call(response, model_name, prompt)
            if rung != "full":
                log.info("truncation_applied", rung=rung, messages=len(history), total=len(messages))
            return LadderResult(message=response, rung=rung, prompt_messages=len(history), attempts=attempts)

        log.error("truncation_exhausted", attempts=attempts, total=len(messages))
        return LadderResult(
            message=terminal_message(TRUNCATION_EXHAUSTED_MESSAGE, "token_limit_exceeded"),
            rung="exhausted",
            prompt_messages=0,
            attempts=attempts,
        )
