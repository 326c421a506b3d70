"""
Short-term memory manager.

STM is a fixed-capacity FIFO of step records:

    add(item)
      → summarise oversized tool results / messages with the fast model
      → append (or replace the newest item when it is the same step)
      → evict from the front until len(items) <= max_size

Oversized content is never stored raw. If summarisation is impossible the
add fails and the caller keeps its previous memories.
"""

import time

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.runnables import RunnableConfig

from agentloop.core.config import Settings
from agentloop.core.graph_state import MemoryNode
from agentloop.core.llm import ModelHandle
from agentloop.core.logging import get_logger
from agentloop.core.models import Step, active_step
from agentloop.core.tokens import estimate_tokens, message_text
from agentloop.memory.types import (
    Memories,
    MemoryOperationResult,
    MessageContent,
    STMContext,
    STMItem,
    StepRecord,
    ToolRecord,
)

log = get_logger(__name__)

SUMMARIZE_PROMPT = (
    "Summarize the following content for an agent's working memory. "
    "Keep identifiers, numbers, names and conclusions. "
    "Reply with the summary only."
)


def append_item(stm: STMContext, item: STMItem) -> STMContext:
    items = list(stm.items)
    total = stm.total_inserted
    if items and items[-1].step_id == item.step_id:
        items[-1] = item
    else:
        items.append(item)
        total += 1
    while len(items) > stm.max_size:
        items.pop(0)
    return STMContext(items=items, max_size=stm.max_size, total_inserted=total)


def record_from_step(step: Step, task_id: str | None) -> STMItem | None:
    """Build an STM item from a step. Steps with neither text nor tool results yield None."""
    tools = [
        ToolRecord(
            name=call.name,
            args=call.args,
            result=call.result,
            status=call.status,
            tokens=estimate_tokens(call.result),
        )
        for call in step.tool
        if call.result is not None
    ]
    message = None
    if step.output:
        message = MessageContent(content=step.output, tokens=estimate_tokens(step.output))
    if not tools and message is None:
        return None

    record = StepRecord(type="tools" if tools else "message", message=message, tools=tools)
    return STMItem(content=record, step_id=step.id, task_id=task_id, tokens=record.tokens)


def _clip(text: str, limit: int) -> str:
    while text and estimate_tokens(text) >= limit:
        text = text[: int(len(text) * 0.8)]
    return text


class STMManager:
    def __init__(self, settings: Settings, model: ModelHandle | None = None):
        self.settings = settings
        self.model = model

    async def summarize(self, text: str, limit: int) -> str:
        if self.model is None:
            raise RuntimeError("no model available for summarisation")
        response = await self.model.model.ainvoke(
            [SystemMessage(content=SUMMARIZE_PROMPT), HumanMessage(content=text)]
        )
        return _clip(message_text(response).strip(), limit)

    async def _prepare(self, item: STMItem) -> STMItem:
        record = item.content
        threshold = self.settings.stm_summarization_threshold
        tools = []
        for tool in record.tools:
            if tool.tokens >= threshold:
                summary = await self.summarize(tool.result, threshold)
                log.debug("stm_tool_result_summarized", tool_name=tool.name, before=tool.tokens,
                          after=estimate_tokens(summary))
                tool = tool.model_copy(update={"result": summary, "tokens": estimate_tokens(summary)})
            tools.append(tool)

        message = record.message
        limit = self.settings.stm_max_message_tokens
        if message is not None and message.tokens >= limit:
            summary = await self.summarize(message.content, limit)
            message = MessageContent(content=summary, tokens=estimate_tokens(summary))

        record = StepRecord(type=record.type, message=message, tools=tools)
        return item.model_copy(update={"content": record, "tokens": record.tokens})

    async def add(self, memories: Memories, item: STMItem, timestamp: float | None = None) -> MemoryOperationResult[Memories]:
        try:
            prepared = await self._prepare(item)
        except Exception as exc:
            log.error("stm_summarization_failed", step_id=item.step_id, error=str(exc))
            return MemoryOperationResult.fail(f"summarisation failed: {exc}")

        prepared = prepared.model_copy(update={"inserted_at": timestamp or time.time()})
        stm = append_item(memories.stm, prepared)
        log.debug("stm_item_added", step_id=item.step_id, size=len(stm.items), max_size=stm.max_size)
        return MemoryOperationResult.ok(Memories(stm=stm, ltm=memories.ltm))

    # ── node handler ─────────────────────────────────────────────────────────

    async def process(self, state: dict, config: RunnableConfig) -> dict:
        update = {"last_node": MemoryNode.STM_MANAGER.value}
        if state.get("current_graph_step", 0) >= self.settings.max_graph_steps:
            log.warning("stm_skipped_budget", current_graph_step=state.get("current_graph_step"))
            return update

        tasks = state.get("tasks") or []
        task = tasks[-1] if tasks else None
        step = active_step(task, self.settings.execution_mode, state.get("current_step_index", 0))
        item = record_from_step(step, task.id) if step is not None else None
        if item is None:
            return update

        memories = state.get("memories") or Memories.empty(self.settings.stm_max_size)
        result = await self.add(memories, item)
        if not result.success:
            return update
        return {**update, "memories": result.data}
