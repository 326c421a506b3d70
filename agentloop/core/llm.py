"""
LLM factory — returns LangChain chat models based on LITELLM_MODE.

  proxy   → ChatOpenAI pointed at the LiteLLM proxy container (dev default)
  library → ChatLiteLLM using the litellm library in-process (production)

Models are wrapped in a ModelHandle that records, once at selection time,
what the model can do (tool binding, structured output). Graph nodes ask
the handle instead of probing the model object on every call.

  ModelSet.smart  agent reasoning, planning
  ModelSet.fast   STM summarisation, LTM extraction
"""

from dataclasses import dataclass
from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel

from agentloop.core.config import Settings, get_settings
from agentloop.core.errors import ConfigurationError


def get_chat_model(
    *,
    model: str | None = None,
    streaming: bool = False,
    temperature: float = 0.3,
    settings: Settings | None = None,
) -> BaseChatModel:
    """
    Return a configured chat model.

    Args:
        model:       Override the model name. Defaults to settings.primary_model.
        streaming:   Enable token-by-token streaming.
        temperature: Sampling temperature.
    """
    settings = settings or get_settings()
    model_name = model or settings.primary_model

    if settings.litellm_mode == "library":
        from langchain_community.chat_models import ChatLiteLLM

        return ChatLiteLLM(
            model=model_name,
            streaming=streaming,
            temperature=temperature,
        )

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        base_url=settings.litellm_base_url,
        api_key=settings.litellm_master_key or "unset",
        model=model_name,
        streaming=streaming,
        temperature=temperature,
    )


# ── Capabilities ──────────────────────────────────────────────────────────────

def _overrides(model: Any, attr: str) -> bool:
    method = getattr(type(model), attr, None)
    if method is None:
        return False
    if isinstance(model, BaseChatModel):
        # BaseChatModel defines these but raises NotImplementedError
        return method is not getattr(BaseChatModel, attr, None)
    return callable(method)


@dataclass(frozen=True)
class ModelHandle:
    name: str
    model: Any
    supports_tools: bool = False
    supports_structured_output: bool = False

    @classmethod
    def from_model(cls, name: str, model: Any) -> "ModelHandle":
        return cls(
            name=name,
            model=model,
            supports_tools=_overrides(model, "bind_tools"),
            supports_structured_output=_overrides(model, "with_structured_output")
            or _overrides(model, "bind_tools"),
        )

    def with_tools(self, tools: list) -> Any:
        """The runnable to invoke: tool-bound when the model supports it."""
        if tools and self.supports_tools:
            return self.model.bind_tools(tools)
        return self.model

    def structured(self, schema: type) -> Any:
        if not self.supports_structured_output:
            raise ConfigurationError(f"Model {self.name} does not support structured output")
        return self.model.with_structured_output(schema)


@dataclass(frozen=True)
class ModelSet:
    smart: ModelHandle
    fast: ModelHandle


def get_model_set(settings: Settings | None = None) -> ModelSet:
    settings = settings or get_settings()
    smart = get_chat_model(model=settings.primary_model, settings=settings)
    fast = get_chat_model(model=settings.fast_model, temperature=0.0, settings=settings)
    return ModelSet(
        smart=ModelHandle.from_model(settings.primary_model, smart),
        fast=ModelHandle.from_model(settings.fast_model, fast),
    )
