"""
structlog setup for the agent loop.

Events are named after what happened in the run, one family per subsystem:

  agent_*        agent_limit_reached, agent_response, agent_model_failed
  tool_*         tool_call, tool_executed, tool_results_truncated, tools_limit_reached
  truncation_*   truncation_applied, truncation_rung_over_budget, truncation_exhausted
  task_*         task_planned, task_completed, task_failed
  stm_* / ltm_*  STM writes and summaries, LTM extraction, skips and upserts
  memory_*       memory graph routing, retrieval and store calls
  session_*      Redis session writes and conflicts

thread_id and user_id are not passed per call. They are bound once per
request by bind_run_context() and merged into every event emitted while
the graph runs for that request.
"""

import logging
import sys

import structlog
from agentloop.core.config import Settings, get_settings

RUN_CONTEXT_KEYS = ("thread_id", "user_id")


def _renderer(is_dev: bool) -> list:
    if is_dev:
        return [structlog.dev.ConsoleRenderer()]
    return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]


def configure_logging(settings: Settings | None = None) -> None:
    """
    Call once at startup. Console output in development, JSON lines elsewhere.
    """
    settings = settings or get_settings()
    is_dev = settings.environment == "development"

    # httpx, langgraph and redis log through stdlib; keep them to warnings
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            *_renderer(is_dev),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG if is_dev else logging.INFO),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(sys.stdout),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__):
    return structlog.get_logger(name)


def bind_run_context(**values) -> None:
    """Replace the request-scoped fields; None values are left unbound."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        **{k: v for k, v in values.items() if k in RUN_CONTEXT_KEYS and v is not None}
    )
