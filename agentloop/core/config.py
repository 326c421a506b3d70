from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Database ───────────────────────────────────────────────────────────────
    # empty → in-memory checkpointer and no long-term memory store
    database_url: str = ""

    # ── LiteLLM ───────────────────────────────────────────────────────────────
    # mode: "proxy" = external LiteLLM container (dev default)
    #       "library" = litellm imported directly (production, no network hop)
    litellm_mode: str = "proxy"
    litellm_base_url: str = "http://litellm:4000/v1"
    litellm_master_key: str = ""

    # ── Models ────────────────────────────────────────────────────────────────
    primary_model: str = "gpt-4o"
    fast_model: str = "gpt-4o-mini"          # summarisation, memory extraction
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536

    # ── Agent ─────────────────────────────────────────────────────────────────
    agent_mode: Literal["interactive", "autonomous", "hybrid"] = "interactive"
    execution_mode: Literal["planning", "reactive"] = "planning"
    max_graph_steps: int = 100
    max_iterations: int = 15                 # autonomous / hybrid loop cap
    max_retries: int = 3                     # verifier rejections before a task fails
    max_plan_steps: int = 8

    # ── Memory ────────────────────────────────────────────────────────────────
    memory_enabled: bool = True
    stm_max_size: int = 10
    ltm_cache_size: int = 20
    stm_summarization_threshold: int = 1000  # tokens per tool result
    stm_max_message_tokens: int = 1500
    max_insert_episodic_size: int = 5
    max_insert_semantic_size: int = 5
    max_retrieve_memory_size: int = 10
    retrieve_memory_threshold: float = 0.5
    memory_timeout_seconds: float = 10.0
    memory_retry_attempts: int = 3

    # ── Budgets ───────────────────────────────────────────────────────────────
    truncation_token_ceiling: int = 90_000
    tool_result_max_chars: int = 5_000
    tool_args_log_chars: int = 150

    # ── Redis ─────────────────────────────────────────────────────────────────
    redis_host: str = "redis"
    redis_port: int = 6379
    redis_password: str = ""
    max_retry_attempts: int = 3              # optimistic-lock retries for session writes

    # ── App ───────────────────────────────────────────────────────────────────
    environment: str = "development"
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "extra": "ignore"}

    @field_validator(
        "max_graph_steps",
        "max_iterations",
        "max_plan_steps",
        "stm_max_size",
        "ltm_cache_size",
        "truncation_token_ceiling",
        "tool_result_max_chars",
        "max_retry_attempts",
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("max_retries", "max_insert_episodic_size", "max_insert_semantic_size")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @property
    def redis_url(self) -> str:
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/0"
        return f"redis://{self.redis_host}:{self.redis_port}/0"


@lru_cache
def get_settings() -> Settings:
    return Settings()
