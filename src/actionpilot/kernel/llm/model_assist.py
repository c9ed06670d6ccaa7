"""Model-assisted completion shared by argument repair, follow-up and narration."""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Optional

from actionpilot.domain.errors import CompletionError
from actionpilot.infrastructure.logging_setup import get_logger
from actionpilot.kernel.llm.llm_runtime import LLMConfig, LLMResponse, LLMRuntime

_LEADING_REASONING_BLOCK_RE = re.compile(
    r"^\s*<(think|thinking|reasoning)(?:\s[^>]*)?>.*?</\1>\s*",
    re.IGNORECASE | re.DOTALL,
)
_FENCED_BLOCK_RE = re.compile(r"```(?:[a-zA-Z0-9_+\-.]+)?\s*\n?(.*?)```", re.DOTALL)


def strip_reasoning_blocks(content: str) -> str:
    text = str(content or "").strip()
    while True:
        stripped = _LEADING_REASONING_BLOCK_RE.sub("", text, count=1).strip()
        if stripped == text:
            return text
        text = stripped


def normalize_completion_text(content: str) -> str:
    """Strip reasoning blocks and markdown fences around a JSON answer."""
    text = strip_reasoning_blocks(content)
    if not text:
        return ""

    fenced = _FENCED_BLOCK_RE.search(text)
    if fenced:
        return fenced.group(1).strip()
    return text


class ModelAssistClient:
    """Single completion capability with one timeout and parse policy.

    ``complete_json`` and ``complete_text`` raise ``CompletionError``; the
    ``try_`` variants log and return ``None`` instead.
    """

    def __init__(
        self,
        runtime: LLMRuntime,
        *,
        provider_id: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: float = 30.0,
        logger: Any = None,
    ):
        self.runtime = runtime
        self.provider_id = provider_id
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._logger = logger or get_logger("model_assist")

    async def _request(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> LLMResponse:
        config = LLMConfig(
            provider_id=self.provider_id,
            model=self.model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout_seconds=self.timeout_seconds,
            json_mode=json_mode,
        )
        try:
            return await asyncio.wait_for(
                self.runtime.chat(system_prompt=system_prompt, user_prompt=user_prompt, config=config),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise CompletionError(f"completion timed out after {self.timeout_seconds}s") from exc
        except CompletionError:
            raise
        except Exception as exc:
            raise CompletionError(f"completion request failed: {exc}") from exc

    async def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
    ) -> Any:
        response = await self._request(
            system_prompt, user_prompt, temperature=temperature, max_tokens=max_tokens, json_mode=True
        )
        content = normalize_completion_text(response.content)
        if not content:
            raise CompletionError("completion returned empty content")
        try:
            parsed = json.loads(content)
        except ValueError as exc:
            raise CompletionError(f"completion is not valid JSON: {exc}") from exc

        self._logger.debug(
            "completion_parsed",
            model=response.model,
            latency_ms=response.latency_ms,
            total_tokens=response.usage.total_tokens,
        )
        return parsed

    async def complete_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
    ) -> str:
        response = await self._request(
            system_prompt, user_prompt, temperature=temperature, max_tokens=max_tokens, json_mode=False
        )
        text = strip_reasoning_blocks(response.content).strip('"').strip()
        if not text:
            raise CompletionError("completion returned empty content")

        self._logger.debug(
            "completion_text_received",
            model=response.model,
            latency_ms=response.latency_ms,
            total_tokens=response.usage.total_tokens,
        )
        return text

    async def try_complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
    ) -> Optional[Any]:
        try:
            return await self.complete_json(
                system_prompt,
                user_prompt,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except CompletionError as exc:
            self._logger.warning("completion_unavailable", error=str(exc))
            return None

    async def try_complete_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
    ) -> Optional[str]:
        try:
            return await self.complete_text(
                system_prompt,
                user_prompt,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except CompletionError as exc:
            self._logger.warning("completion_unavailable", error=str(exc))
            return None
