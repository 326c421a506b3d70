"""
Agent API endpoints.

    POST /api/agent/invoke                      run one turn
    POST /api/agent/threads/{thread_id}/resume  answer a hybrid-mode question
    GET  /api/agent/threads/{thread_id}         persisted graph state

A turn either completes (the last message is returned) or suspends at
human_input, in which case the pending question is returned and the
thread waits for /resume.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Request
from langchain_core.messages import HumanMessage
from langgraph.types import Command
from pydantic import BaseModel

from agentloop.agents.agent_graph import AgentExecutionGraph
from agentloop.core.graph_state import dump_state, initial_state, start_turn
from agentloop.core.logging import bind_run_context, get_logger
from agentloop.core.tokens import message_text

log = get_logger(__name__)
router = APIRouter(prefix="/api/agent", tags=["agent"])


class InvokeRequest(BaseModel):
    message: str
    thread_id: str | None = None
    user_id: str | None = None


class ResumeRequest(BaseModel):
    input: str
    user_id: str | None = None


def get_agent_graph(request: Request) -> AgentExecutionGraph:
    agent = getattr(request.app.state, "agent_graph", None)
    if agent is None:
        raise HTTPException(status_code=503, detail="Agent graph is not initialised")
    return agent


async def _turn_result(agent: AgentExecutionGraph, config: dict, thread_id: str) -> dict:
    snapshot = await agent.graph.aget_state(config)
    values = snapshot.values or {}
    messages = values.get("messages") or []
    usage = values.get("token_usage")

    result = {
        "thread_id": thread_id,
        "status": "completed",
        "response": message_text(messages[-1]) if messages else "",
        "current_graph_step": values.get("current_graph_step", 0),
        "total_tokens": usage.total_tokens if usage is not None else 0,
    }

    interrupts = [i for task in snapshot.tasks for i in getattr(task, "interrupts", ())]
    if snapshot.next and interrupts:
        payload = interrupts[0].value
        result["status"] = "waiting_human_input"
        result["question"] = payload.get("question") if isinstance(payload, dict) else str(payload)
    return result


# ── Endpoints ─────────────────────────────────────────────────────────────────

@router.post("/invoke")
async def invoke_agent(req: InvokeRequest, agent: AgentExecutionGraph = Depends(get_agent_graph)):
    """Run one turn and wait for it to finish or suspend."""
    thread_id = req.thread_id or str(uuid.uuid4())
    bind_run_context(thread_id=thread_id, user_id=req.user_id)
    config = agent.run_config(thread_id, req.user_id)

    message = HumanMessage(content=req.message)
    existing = await agent.graph.aget_state(config)
    if existing.values:
        payload = start_turn(message)
    else:
        payload = initial_state([message], stm_max_size=agent.settings.stm_max_size)

    await agent.graph.ainvoke(payload, config=config)
    result = await _turn_result(agent, config, thread_id)
    log.info("invoke_complete", status=result["status"], current_graph_step=result["current_graph_step"])
    return result


@router.post("/threads/{thread_id}/resume")
async def resume_agent(
    thread_id: str,
    req: ResumeRequest,
    agent: AgentExecutionGraph = Depends(get_agent_graph),
):
    """Resume a turn suspended at human_input with the user's reply."""
    bind_run_context(thread_id=thread_id, user_id=req.user_id)
    config = agent.run_config(thread_id, req.user_id)

    snapshot = await agent.graph.aget_state(config)
    if not snapshot.next:
        raise HTTPException(status_code=409, detail="Thread is not waiting for input")

    await agent.graph.ainvoke(Command(resume=req.input), config=config)
    result = await _turn_result(agent, config, thread_id)
    log.info("resume_complete", status=result["status"])
    return result


@router.get("/threads/{thread_id}")
async def get_thread_state(thread_id: str, agent: AgentExecutionGraph = Depends(get_agent_graph)):
    """Retrieve the persisted state of a conversation thread."""
    snapshot = await agent.graph.aget_state(agent.run_config(thread_id))
    if not snapshot.values:
        raise HTTPException(status_code=404, detail="Thread not found")
    return {"thread_id": thread_id, "next": list(snapshot.next), "state": dump_state(snapshot.values)}
