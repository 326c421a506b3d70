"""
LangGraph node implementations.

Graph topology:

    START → agent ──(route_after_agent)──┬──▶ tools ────────▶ agent
              ↑                          ├──▶ human_input ──▶ agent   (hybrid)
              └──────────────────────────┴──▶ END

agent_node:
    - stops with a terminal message once the step / iteration limit is hit
    - plans a new Task when none is open, then hands off to memory as the
      planner (→ retrieve_memory)
    - calls the model through the truncation ladder, tools bound when the
      model supports them
    - records the turn on the active step; without tool calls hands off to
      memory as the executor (→ stm_manager → ltm_manager → retrieve_memory)
    - on FINAL ANSWER runs the verifier; a finished task is handed off to
      memory as the verifier (→ ltm_manager → retrieve_memory)
    - autonomous / hybrid: appends the continuation message itself

tools_node:
    - runs the requested tool calls (errors propagate); past the limit each
      call gets a "not executed" result instead
    - records results on the active step, hands off to memory as the executor

human_input_node:
    - suspends the run with interrupt(); resumes with the human reply
"""

from langchain_core.messages import AIMessage, HumanMessage
from langchain_core.runnables import RunnableConfig
from langgraph.types import interrupt

from agentloop.agents.prompts import (
    HUMAN_INPUT_MARKER,
    build_system_prompt,
    continuation_message,
    error_message,
    extract_final_answer,
    has_final_answer,
    needs_human_input,
    rejection_message,
    skipped_tool_message,
    stopped_message,
)
from agentloop.agents.tasks import TaskPlanner, record_agent_turn, record_tool_outcomes, verify_final_answer
from agentloop.agents.tools import ToolExecutor
from agentloop.agents.truncation import TruncationLadder
from agentloop.core.config import Settings
from agentloop.core.graph_state import AgentNode, GraphState, PlannerNode, VerifierNode
from agentloop.core.llm import ModelSet
from agentloop.core.logging import get_logger
from agentloop.core.models import AgentMode, ExecutionMode, active_task
from agentloop.core.tokens import TokenTracker, message_text
from agentloop.memory.graph import MemoryGraph
from agentloop.memory.types import Memories

log = get_logger(__name__)


class AgentNodes:
    def __init__(
        self,
        settings: Settings,
        models: ModelSet,
        executor: ToolExecutor,
        memory: MemoryGraph | None,
        mode: AgentMode,
    ):
        self.settings = settings
        self.models = models
        self.executor = executor
        self.memory = memory
        self.mode = mode
        self.execution_mode = ExecutionMode(settings.execution_mode)
        self.planner = TaskPlanner(settings, models.smart)
        self.ladder = TruncationLadder(settings.truncation_token_ceiling)

    # ── helpers ──────────────────────────────────────────────────────────────

    def _limit_reason(self, state: GraphState) -> str | None:
        if state.get("current_graph_step", 0) >= self.settings.max_graph_steps:
            return "max_graph_steps"
        if self.mode != AgentMode.INTERACTIVE and state.get("iteration", 0) >= self.settings.max_iterations:
            return "max_iterations"
        return None

    async def _handoff(self, working: dict, last_node: str, config: RunnableConfig) -> Memories | None:
        if self.memory is None:
            return None
        run = await self.memory.run(working, last_node, config)
        return run.memories if isinstance(run.memories, Memories) else None

    # ── agent_node ───────────────────────────────────────────────────────────

    async def agent_node(self, state: GraphState, config: RunnableConfig) -> dict:
        graph_step = state.get("current_graph_step", 0)
        reason = self._limit_reason(state)
        if reason:
            log.warning("agent_limit_reached", reason=reason, current_graph_step=graph_step,
                        iteration=state.get("iteration", 0))
            return {"messages": [stopped_message(graph_step, reason)], "last_node": AgentNode.AGENT.value}

        graph_step += 1
        messages = list(state.get("messages") or [])
        tasks = list(state.get("tasks") or [])
        step_index = state.get("current_step_index", 0)
        retry = state.get("retry", 0)
        memories = state.get("memories") or Memories.empty(self.settings.stm_max_size)
        update: dict = {"current_graph_step": graph_step, "last_node": AgentNode.AGENT.value}

        def working() -> dict:
            return {
                **state,
                "current_graph_step": graph_step,
                "tasks": tasks,
                "current_step_index": step_index,
                "memories": memories,
            }

        task = active_task(tasks)
        if task is None:
            try:
                task = await self.planner.plan(messages)
            except Exception as exc:
                log.error("planning_failed", error=str(exc), error_type=type(exc).__name__)
                return {**update, "messages": [error_message(exc)]}
            tasks.append(task)
            step_index, retry = 0, 0
            memories = await self._handoff(working(), PlannerNode.PLANNER.value, config) or memories

        tracker = TokenTracker(state.get("token_usage"))
        system = build_system_prompt(self.mode, self.execution_mode, task, step_index, memories)
        runnable = self.models.smart.with_tools(self.executor.tool_list)

        try:
            result = await self.ladder.invoke(
                runnable, system, messages, tracker=tracker, model_name=self.models.smart.name
            )
        except Exception as exc:
            log.error("agent_model_failed", error=str(exc), error_type=type(exc).__name__)
            return {
                **update,
                "messages": [error_message(exc)],
                "tasks": tasks,
                "current_step_index": step_index,
                "memories": memories,
                "token_usage": tracker.usage,
            }

        update.update(iteration=state.get("iteration", 0) + 1, token_usage=tracker.usage)
        response = result.message
        if result.exhausted:
            return {**update, "messages": [response], "tasks": tasks, "current_step_index": step_index,
                    "memories": memories}

        tasks[-1] = record_agent_turn(task, self.execution_mode, step_index, response)
        new_messages = [response]
        log.debug(
            "agent_response",
            rung=result.rung,
            has_tool_calls=bool(getattr(response, "tool_calls", None)),
            content_length=len(message_text(response.content)),
        )

        if not getattr(response, "tool_calls", None):
            memories = await self._handoff(working(), AgentNode.AGENT.value, config) or memories

            text = message_text(response.content)
            asks_human = self.mode == AgentMode.HYBRID and needs_human_input(text)
            if has_final_answer(text) and not asks_human:
                verdict = verify_final_answer(
                    tasks[-1], self.execution_mode, step_index, text, retry, self.settings.max_retries
                )
                tasks[-1], step_index, retry = verdict.task, verdict.step_index, verdict.retry
                if verdict.finished:
                    memories = await self._handoff(working(), VerifierNode.VERIFIER.value, config) or memories

                if not verdict.accepted and not verdict.finished:
                    new_messages.append(rejection_message(retry, self.settings.max_retries))
                elif self.mode != AgentMode.INTERACTIVE:
                    answer = extract_final_answer(text) or "the task could not be completed"
                    new_messages.append(continuation_message(answer))

        return {
            **update,
            "messages": new_messages,
            "tasks": tasks,
            "current_step_index": step_index,
            "retry": retry,
            "memories": memories,
        }

    # ── tools_node ───────────────────────────────────────────────────────────

    async def tools_node(self, state: GraphState, config: RunnableConfig) -> dict:
        messages = state.get("messages") or []
        last = messages[-1] if messages else None
        calls = last.tool_calls if isinstance(last, AIMessage) else []

        reason = self._limit_reason(state)
        if reason:
            # every tool call in history keeps a matching result
            log.warning("tools_limit_reached", reason=reason, skipped_calls=len(calls))
            return {
                "messages": [skipped_tool_message(call, reason) for call in calls],
                "last_node": AgentNode.TOOLS.value,
            }

        graph_step = state.get("current_graph_step", 0) + 1
        update = {"current_graph_step": graph_step, "last_node": AgentNode.TOOLS.value}

        if not calls:
            return update

        outcomes = await self.executor.execute(calls)

        tasks = list(state.get("tasks") or [])
        step_index = state.get("current_step_index", 0)
        if tasks:
            tasks[-1] = record_tool_outcomes(tasks[-1], self.execution_mode, step_index, outcomes)

        memories = state.get("memories") or Memories.empty(self.settings.stm_max_size)
        working = {**state, "current_graph_step": graph_step, "tasks": tasks, "memories": memories}
        memories = await self._handoff(working, AgentNode.TOOLS.value, config) or memories

        return {
            **update,
            "messages": [o.to_message() for o in outcomes],
            "tasks": tasks,
            "memories": memories,
        }

    # ── human_input_node ─────────────────────────────────────────────────────

    async def human_input_node(self, state: GraphState, config: RunnableConfig) -> dict:
        reason = self._limit_reason(state)
        if reason:
            return {"last_node": AgentNode.HUMAN_INPUT.value}

        messages = state.get("messages") or []
        text = message_text(messages[-1]) if messages else ""
        _, _, question = text.partition(HUMAN_INPUT_MARKER)
        question = question.lstrip(" :\n").strip() or text

        log.info("human_input_requested", question_length=len(question))
        answer = interrupt({"question": question})

        return {
            "messages": [HumanMessage(content=str(answer), additional_kwargs={"from": "human"})],
            "current_graph_step": state.get("current_graph_step", 0) + 1,
            "last_node": AgentNode.HUMAN_INPUT.value,
        }
