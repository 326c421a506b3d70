"""
Exception hierarchy shared across the agent graph, memory layer and session store.

Memory operations never raise to their callers; they return a
MemoryOperationResult (agentloop.memory.types) instead. Everything else
raises one of the types below.
"""

_TOKEN_LIMIT_MARKERS = (
    "token limit",
    "tokens exceed",
    "context length",
    "context_length_exceeded",
    "maximum context length",
)


class AgentLoopError(Exception):
    """Base class for all agentloop errors."""


class ConfigurationError(AgentLoopError):
    """Missing or invalid configuration. Raised at construction time."""


class ToolNotFoundError(AgentLoopError):
    def __init__(self, tool_name: str):
        super().__init__(f"Tool '{tool_name}' is not registered")
        self.tool_name = tool_name


# ── Session store ─────────────────────────────────────────────────────────────

class SessionStoreError(AgentLoopError):
    pass


class SessionDuplicateError(SessionStoreError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} already exists")
        self.session_id = session_id


class SessionNotFoundError(SessionStoreError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class SessionConflictError(SessionStoreError):
    """Optimistic-lock retries exhausted."""

    def __init__(self, operation: str, session_id: str, attempts: int):
        super().__init__(
            f"{operation} of session {session_id} failed after {attempts} attempts "
            "due to concurrent modifications"
        )
        self.operation = operation
        self.session_id = session_id
        self.attempts = attempts


def is_token_limit_error(exc: BaseException) -> bool:
    """True when a provider error means the prompt exceeded the context window."""
    message = str(exc).lower()
    return any(marker in message for marker in _TOKEN_LIMIT_MARKERS)
