"""
Token accounting.

Two concerns live here:

  estimate_tokens / estimate_message_tokens
      Cheap, provider-agnostic estimates used for budget decisions
      (truncation ladder, STM summarisation thresholds).

  TokenTracker
      Session-scoped usage counters. A tracker wraps a TokenUsage value that
      lives in GraphState, so counts are per thread and survive checkpoints.
      Provider responses report usage in different shapes; the tracker reads
      them in this order:

        1. message.usage_metadata                     (LangChain standard)
        2. response_metadata["token_usage"|"tokenUsage"]  (OpenAI)
        3. response_metadata["usage"]                 (Anthropic)
        4. word-based estimate of the response text
"""

import json
import math
import re
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from agentloop.core.logging import get_logger

log = get_logger(__name__)

_SPECIAL_CHARS = re.compile(r"[^\w\s]")


def estimate_tokens(text: str) -> int:
    """Average of the chars/4 and word-count heuristics, rounded up."""
    if not text:
        return 0
    char_count = len(text)
    word_count = len(text.split())
    return math.ceil((char_count / 4 + word_count) / 2)


def message_text(message: Any) -> str:
    """Flatten a message (or raw content) to the text a provider would receive."""
    content = getattr(message, "content", message)
    if isinstance(content, str):
        text = content
    elif isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and "text" in part:
                parts.append(str(part["text"]))
        text = "".join(parts)
    else:
        text = "" if content is None else str(content)

    tool_calls = getattr(message, "tool_calls", None)
    if tool_calls:
        text += json.dumps([{"name": c.get("name"), "args": c.get("args")} for c in tool_calls], default=str)
    return text


def estimate_message_tokens(messages: list) -> int:
    return sum(estimate_tokens(message_text(m)) for m in messages)


# ── Session accounting ────────────────────────────────────────────────────────

class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    response_tokens: int = 0
    total_tokens: int = 0
    calls: int = 0


@dataclass(frozen=True)
class CallUsage:
    prompt_tokens: int
    response_tokens: int
    total_tokens: int
    estimated: bool = False


def _as_dict(value: Any) -> dict:
    if isinstance(value, dict):
        return value
    if value is None:
        return {}
    dump = getattr(value, "model_dump", None)
    return dump() if callable(dump) else {}


def extract_usage(result: Any) -> CallUsage | None:
    """Read provider-reported usage from a model response, or None if absent."""
    meta = _as_dict(getattr(result, "usage_metadata", None))
    if meta:
        prompt = int(meta.get("input_tokens", 0) or 0)
        response = int(meta.get("output_tokens", 0) or 0)
        total = int(meta.get("total_tokens", 0) or 0) or prompt + response
        return CallUsage(prompt, response, total)

    response_meta = _as_dict(getattr(result, "response_metadata", None))

    openai = _as_dict(response_meta.get("token_usage") or response_meta.get("tokenUsage"))
    if openai:
        prompt = int(openai.get("prompt_tokens", openai.get("promptTokens", 0)) or 0)
        response = int(openai.get("completion_tokens", openai.get("completionTokens", 0)) or 0)
        total = int(openai.get("total_tokens", openai.get("totalTokens", 0)) or 0) or prompt + response
        return CallUsage(prompt, response, total)

    anthropic = _as_dict(response_meta.get("usage"))
    if anthropic:
        prompt = int(anthropic.get("input_tokens", 0) or 0)
        response = int(anthropic.get("output_tokens", 0) or 0)
        return CallUsage(prompt, response, prompt + response)

    return None


class TokenTracker:
    """
    Accumulates usage for one session.

    Create one per model-invoking node run from the state's TokenUsage and
    return tracker.usage in the node's state update.
    """

    def __init__(self, usage: TokenUsage | None = None):
        self._usage = usage.model_copy() if usage is not None else TokenUsage()

    @property
    def usage(self) -> TokenUsage:
        return self._usage.model_copy()

    @staticmethod
    def estimate_from_text(text: str) -> int:
        """Word-based fallback: 1.3 tokens per word plus half a token per symbol."""
        if not text:
            return 0
        words = len(text.split())
        special = len(_SPECIAL_CHARS.findall(text))
        return math.ceil(words * 1.3 + special * 0.5)

    def track_call(self, result: Any, model_name: str = "unknown_model", prompt: list | None = None) -> CallUsage:
        usage = extract_usage(result)
        if usage is None:
            prompt_tokens = sum(self.estimate_from_text(message_text(m)) for m in prompt or [])
            response_tokens = self.estimate_from_text(message_text(result))
            usage = CallUsage(prompt_tokens, response_tokens, prompt_tokens + response_tokens, estimated=True)

        self._usage.prompt_tokens += usage.prompt_tokens
        self._usage.response_tokens += usage.response_tokens
        self._usage.total_tokens += usage.total_tokens
        self._usage.calls += 1

        log.debug(
            "token_usage",
            model=model_name,
            prompt_tokens=usage.prompt_tokens,
            response_tokens=usage.response_tokens,
            total_tokens=usage.total_tokens,
            estimated=usage.estimated,
            session_total=self._usage.total_tokens,
        )
        return usage

    def reset(self) -> None:
        self._usage = TokenUsage()
