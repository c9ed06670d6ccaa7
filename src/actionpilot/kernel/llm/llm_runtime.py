"""LLM Runtime - provider adapter layer used by model-assisted completion."""

from __future__ import annotations

import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import httpx
from openai import AsyncOpenAI

from actionpilot.infrastructure.logging_setup import get_logger


def _join_url(base_url: str, path: str) -> str:
    raw_path = str(path or "").strip()
    if raw_path.startswith("http://") or raw_path.startswith("https://"):
        return raw_path

    base = str(base_url or "").strip().rstrip("/")
    if not base:
        return raw_path
    normalized_path = raw_path if raw_path.startswith("/") else f"/{raw_path}"
    return f"{base}{normalized_path}"


@dataclass
class LLMMessage:
    """A message in the conversation."""

    role: str  # system, user, assistant
    content: str


@dataclass
class LLMUsage:
    """Token usage information."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class LLMResponse:
    """Response from LLM invocation."""

    content: str
    usage: LLMUsage = field(default_factory=LLMUsage)
    latency_ms: int = 0
    model: str = ""


@dataclass
class LLMConfig:
    """Per-call configuration for LLM calls."""

    provider_id: Optional[str] = None
    model: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 1024
    timeout_seconds: Optional[float] = None
    json_mode: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)


class BaseLLMProvider(ABC):
    """Base class for all runtime providers."""

    @abstractmethod
    async def invoke(
        self,
        messages: List[LLMMessage],
        config: Optional[LLMConfig],
        provider_config: Dict[str, Any],
    ) -> LLMResponse:
        """Invoke model with the given messages."""


class OpenAICompatProvider(BaseLLMProvider):
    """OpenAI-compatible provider (OpenAI, Groq and similar endpoints)."""

    def _resolve_auth(self, config: Optional[LLMConfig], provider_config: Dict[str, Any]) -> Tuple[str, str]:
        api_key = provider_config.get("api_key") or os.environ.get("OPENAI_API_KEY")
        base_url = provider_config.get("base_url") or "https://api.openai.com/v1"
        if not api_key:
            raise ValueError("missing_api_key_for_openai_compat_provider")
        return str(api_key), str(base_url)

    async def invoke(
        self,
        messages: List[LLMMessage],
        config: Optional[LLMConfig],
        provider_config: Dict[str, Any],
    ) -> LLMResponse:
        api_key, base_url = self._resolve_auth(config, provider_config)
        model = str((config.model if config else None) or provider_config.get("model") or "gpt-4o-mini")
        timeout = (config.timeout_seconds if config else None) or provider_config.get("timeout")
        client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)

        params: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": config.temperature if config else provider_config.get("temperature", 0.7),
            "max_tokens": config.max_tokens if config else provider_config.get("max_tokens", 1024),
        }
        if config and config.json_mode:
            params["response_format"] = {"type": "json_object"}
        if config and config.extra:
            params.update(config.extra)

        start = time.time()
        response = await client.chat.completions.create(**params)
        latency_ms = int((time.time() - start) * 1000)

        usage = LLMUsage()
        if response.usage:
            usage = LLMUsage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )
        content = response.choices[0].message.content if response.choices else None
        return LLMResponse(
            content=content or "",
            usage=usage,
            latency_ms=latency_ms,
            model=response.model or model,
        )


class OllamaProvider(BaseLLMProvider):
    """Native Ollama provider via /api/chat."""

    async def invoke(
        self,
        messages: List[LLMMessage],
        config: Optional[LLMConfig],
        provider_config: Dict[str, Any],
    ) -> LLMResponse:
        base_url = str(provider_config.get("base_url") or "http://127.0.0.1:11434")
        model = str((config.model if config else None) or provider_config.get("model") or "qwen2.5:14b")
        api_path = str(provider_config.get("api_path") or "/api/chat")
        timeout = (config.timeout_seconds if config else None) or provider_config.get("timeout", 120)

        payload: Dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": m.role if m.role in {"system", "user", "assistant"} else "user", "content": m.content}
                for m in messages
            ],
            "stream": False,
            "options": {
                "temperature": config.temperature if config else 0.7,
                "num_predict": config.max_tokens if config else 1024,
            },
        }
        if config and config.json_mode:
            payload["format"] = "json"

        start = time.time()
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(_join_url(base_url, api_path), json=payload)
            response.raise_for_status()
            data = response.json()

        output = ""
        if isinstance(data, dict) and isinstance(data.get("message"), dict):
            output = str(data["message"].get("content") or "")

        usage = LLMUsage(
            prompt_tokens=int(data.get("prompt_eval_count") or 0) if isinstance(data, dict) else 0,
            completion_tokens=int(data.get("eval_count") or 0) if isinstance(data, dict) else 0,
        )
        usage.total_tokens = usage.prompt_tokens + usage.completion_tokens

        return LLMResponse(
            content=output,
            usage=usage,
            latency_ms=int((time.time() - start) * 1000),
            model=model,
        )


class ProviderManager:
    """Registry for runtime provider implementations."""

    def __init__(self) -> None:
        self._providers: Dict[str, BaseLLMProvider] = {}
        self._register_defaults()

    def _register_defaults(self) -> None:
        self.register_provider("openai_compat", OpenAICompatProvider())
        self.register_provider("ollama", OllamaProvider())

    def register_provider(self, provider_type: str, provider: BaseLLMProvider) -> None:
        self._providers[str(provider_type)] = provider

    def get_provider(self, provider_type: str) -> Optional[BaseLLMProvider]:
        return self._providers.get(str(provider_type))

    def list_provider_types(self) -> List[str]:
        return sorted(self._providers.keys())


class LLMRuntime:
    """Central runtime for LLM operations with provider routing."""

    def __init__(
        self,
        provider: Optional[BaseLLMProvider] = None,
        provider_manager: Optional[ProviderManager] = None,
        provider_bundle: Optional[Dict[str, Any]] = None,
        *,
        logger: Any = None,
    ):
        self.provider_manager = provider_manager or ProviderManager()
        self._logger = logger or get_logger("llm_runtime")

        if provider is not None:
            self.provider_manager.register_provider("custom", provider)
            self.provider_bundle = {
                "default_provider_id": "custom",
                "providers": {"custom": {"type": "custom"}},
            }
        else:
            if provider_bundle is None:
                from .provider_config import load_provider_bundle

                provider_bundle = load_provider_bundle()
            self.provider_bundle = provider_bundle

        self.default_provider_id = str(self.provider_bundle.get("default_provider_id") or "openai")
        providers = self.provider_bundle.get("providers")
        self.provider_configs: Dict[str, Dict[str, Any]] = providers if isinstance(providers, dict) else {}

    def _resolve_provider(
        self, config: Optional[LLMConfig]
    ) -> Tuple[BaseLLMProvider, Dict[str, Any], str]:
        provider_id = (config.provider_id if config else None) or self.default_provider_id
        provider_cfg = self.provider_configs.get(str(provider_id))

        if provider_cfg is None and self.provider_manager.get_provider(str(provider_id)) is not None:
            provider_cfg = {"type": str(provider_id)}

        if provider_cfg is None:
            raise ValueError(f"unknown_provider_id: {provider_id}")

        provider_type = str(provider_cfg.get("type") or provider_id)
        provider = self.provider_manager.get_provider(provider_type)
        if provider is None:
            raise ValueError(f"unsupported_provider_type: {provider_type}")

        return provider, provider_cfg, str(provider_id)

    async def chat(
        self,
        system_prompt: str,
        user_prompt: str,
        config: Optional[LLMConfig] = None,
    ) -> LLMResponse:
        messages = [LLMMessage(role="system", content=system_prompt)]
        if user_prompt:
            messages.append(LLMMessage(role="user", content=user_prompt))
        provider, provider_cfg, provider_id = self._resolve_provider(config)
        self._logger.debug("llm_provider_selected", provider_id=provider_id, provider_type=provider_cfg.get("type"))
        return await provider.invoke(messages, config, provider_cfg)


# Global runtime instance
_runtime: Optional[LLMRuntime] = None


def get_llm_runtime() -> LLMRuntime:
    """Get or create the global LLM runtime."""
    global _runtime
    if _runtime is None:
        _runtime = LLMRuntime()
    return _runtime


def reset_llm_runtime() -> None:
    """Drop the cached runtime so the next call rebuilds it from settings."""
    global _runtime
    _runtime = None
