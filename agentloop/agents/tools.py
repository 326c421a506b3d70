"""
Tool execution wrapper.

Tools are LangChain BaseTool objects registered with the model via
bind_tools(). The wrapper runs the tool calls of the last model response:

  - logs each call with its arguments (first 150 chars of the JSON)
  - measures latency per call
  - caps the combined result text of the batch at 5,000 characters,
    cutting the overflow and appending "... [truncated N characters]"

Tool errors are not caught here: they propagate to the graph caller.
"""

import json
import time
from dataclasses import dataclass
from typing import Any

from langchain_core.messages import ToolMessage
from langchain_core.tools import BaseTool

from agentloop.core.errors import ToolNotFoundError
from agentloop.core.logging import get_logger

log = get_logger(__name__)


@dataclass
class ToolOutcome:
    call_id: str
    name: str
    args: dict
    content: str
    latency_ms: int

    def to_message(self) -> ToolMessage:
        return ToolMessage(content=self.content, tool_call_id=self.call_id, name=self.name)


def stringify(result: Any) -> str:
    if isinstance(result, str):
        return result
    content = getattr(result, "content", None)
    if isinstance(content, str):
        return content
    return json.dumps(result, default=str, ensure_ascii=False)


def truncate_combined(texts: list[str], max_chars: int) -> list[str]:
    """Cap the summed length of `texts` at max_chars, marking what was cut."""
    remaining = max_chars
    capped = []
    for text in texts:
        if len(text) <= remaining:
            capped.append(text)
            remaining -= len(text)
            continue
        cut = len(text) - remaining
        capped.append(f"{text[:remaining]}... [truncated {cut} characters]")
        remaining = 0
    return capped


class ToolExecutor:
    def __init__(self, tools: list[BaseTool], *, max_result_chars: int = 5_000, args_log_chars: int = 150):
        self.tools = {t.name: t for t in tools}
        self.max_result_chars = max_result_chars
        self.args_log_chars = args_log_chars

    @property
    def tool_list(self) -> list[BaseTool]:
        return list(self.tools.values())

    async def execute(self, tool_calls: list[dict]) -> list[ToolOutcome]:
        if not tool_calls:
            return []

        outcomes = []
        for call in tool_calls:
            name = call["name"]
            args = call.get("args") or {}
            tool = self.tools.get(name)
            if tool is None:
                raise ToolNotFoundError(name)

            log.info(
                "tool_call",
                tool_name=name,
                args=json.dumps(args, default=str)[: self.args_log_chars],
            )
            started = time.perf_counter()
            result = await tool.ainvoke(args)
            latency_ms = int((time.perf_counter() - started) * 1000)
            log.info("tool_executed", tool_name=name, latency_ms=latency_ms)

            outcomes.append(
                ToolOutcome(
                    call_id=call.get("id") or "",
                    name=name,
                    args=args,
                    content=stringify(result),
                    latency_ms=latency_ms,
                )
            )

        total = sum(len(o.content) for o in outcomes)
        if total > self.max_result_chars:
            log.warning("tool_results_truncated", total_chars=total, max_chars=self.max_result_chars)
            for outcome, text in zip(outcomes, truncate_combined([o.content for o in outcomes], self.max_result_chars)):
                outcome.content = text
        return outcomes
