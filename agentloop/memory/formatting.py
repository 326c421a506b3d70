"""
Text renderings of memory for prompts, similarity queries and LTM extraction.

    format_stm_item(item)   one STM record; also the retrieval query
    format_stm(stm)         all STM items, oldest first
    format_ltm(ltm)         retrieved hits grouped by kind
    format_task(task)       full step history of a task

Task history layout:

    Task: <objective>
    -Steps: 1.[thought|reasoning];-tool(args) → status:result;=output
"""

import json

from agentloop.core.models import Task
from agentloop.memory.types import LTMContext, STMContext, STMItem


def _args(args: dict) -> str:
    return json.dumps(args, default=str, ensure_ascii=False)


def format_stm_item(item: STMItem) -> str:
    record = item.content
    lines: list[str] = []
    if record.message is not None and record.message.content:
        lines.append(record.message.content)
    for tool in record.tools:
        lines.append(f"{tool.name}({_args(tool.args)}) → {tool.status}: {tool.result}")
    return "\n".join(lines)


def format_stm(stm: STMContext) -> str:
    parts = []
    for i, item in enumerate(stm.items, start=1):
        text = format_stm_item(item)
        if text:
            parts.append(f"[{i}] {text}")
    return "\n".join(parts)


def format_ltm(ltm: LTMContext) -> str:
    episodic = [h for h in ltm.items if h.memory_type == "episodic"]
    semantic = [h for h in ltm.items if h.memory_type == "semantic"]

    parts: list[str] = []
    if semantic:
        parts.append("Known facts:")
        parts.extend(
            f"- [{h.category or 'fact'}] {h.content} (relevance {h.similarity:.2f})" for h in semantic
        )
    if episodic:
        parts.append("Past events:")
        parts.extend(f"- {h.content} (relevance {h.similarity:.2f})" for h in episodic)
    return "\n".join(parts)


def format_task(task: Task) -> str:
    step_parts = []
    for i, step in enumerate(task.steps, start=1):
        entry = f"{i}.[{step.thought.text}|{step.thought.reasoning}]"
        for call in step.tool:
            entry += f";-{call.name}({_args(call.args)}) → {call.status}:{call.result or ''}"
        if step.output:
            entry += f";={step.output}"
        step_parts.append(entry)
    return f"Task: {task.thought.text}\n-Steps: " + " ".join(step_parts)
