"""LLM access for ActionPilot."""

from .llm_runtime import (
    BaseLLMProvider,
    LLMConfig,
    LLMMessage,
    LLMResponse,
    LLMRuntime,
    LLMUsage,
    OllamaProvider,
    OpenAICompatProvider,
    ProviderManager,
    get_llm_runtime,
    reset_llm_runtime,
)
from .model_assist import ModelAssistClient, normalize_completion_text, strip_reasoning_blocks
from .provider_config import build_default_provider_bundle, load_provider_bundle

__all__ = [
    "BaseLLMProvider",
    "LLMConfig",
    "LLMMessage",
    "LLMResponse",
    "LLMRuntime",
    "LLMUsage",
    "ModelAssistClient",
    "OllamaProvider",
    "OpenAICompatProvider",
    "ProviderManager",
    "build_default_provider_bundle",
    "get_llm_runtime",
    "load_provider_bundle",
    "normalize_completion_text",
    "reset_llm_runtime",
    "strip_reasoning_blocks",
]
