"""LLM provider bundle built from settings and environment overrides."""

from __future__ import annotations

import json
import os
from typing import Any, Dict

from actionpilot.config import settings


_PROVIDER_ALIASES = {
    "local": "ollama",
    "openai": "openai",
    "groq": "groq",
    "ollama": "ollama",
}


def _env(name: str, default: str = "") -> str:
    value = os.environ.get(name)
    if value is None:
        return default
    return str(value).strip()


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = _deep_merge(current, value)
        else:
            result[key] = value
    return result


def build_default_provider_bundle() -> Dict[str, Any]:
    """Build default provider bundle from settings + environment."""
    providers: Dict[str, Dict[str, Any]] = {
        "openai": {
            "type": "openai_compat",
            "name": "OpenAI",
            "base_url": settings.openai_base_url or _env("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            "api_key": settings.openai_api_key or _env("OPENAI_API_KEY"),
            "model": settings.openai_model,
            "timeout": settings.completion_timeout_seconds,
        },
        "groq": {
            "type": "openai_compat",
            "name": "Groq",
            "base_url": settings.groq_base_url,
            "api_key": settings.groq_api_key or _env("GROQ_API_KEY"),
            "model": settings.groq_model,
            "timeout": settings.completion_timeout_seconds,
        },
        "ollama": {
            "type": "ollama",
            "name": "Ollama",
            "base_url": settings.ollama_base_url,
            "model": settings.ollama_model,
            "api_path": "/api/chat",
            "timeout": settings.completion_timeout_seconds,
        },
    }

    default_provider_id = _PROVIDER_ALIASES.get(settings.llm_provider, settings.llm_provider)
    if default_provider_id not in providers:
        default_provider_id = "groq"

    return {
        "default_provider_id": default_provider_id,
        "providers": providers,
    }


def _parse_env_json(var_name: str) -> Dict[str, Any]:
    raw = _env(var_name)
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _normalize_bundle(bundle: Dict[str, Any]) -> Dict[str, Any]:
    providers = bundle.get("providers")
    if not isinstance(providers, dict):
        providers = {}

    normalized: Dict[str, Dict[str, Any]] = {}
    for provider_id, provider_cfg in providers.items():
        if not isinstance(provider_cfg, dict):
            continue
        provider_type = str(provider_cfg.get("type") or "").strip()
        if not provider_type:
            continue
        normalized[str(provider_id)] = {**provider_cfg, "type": provider_type}

    default_provider_id = str(bundle.get("default_provider_id") or "").strip()
    if default_provider_id not in normalized and normalized:
        default_provider_id = next(iter(normalized.keys()))

    return {
        "default_provider_id": default_provider_id or "groq",
        "providers": normalized,
    }


def load_provider_bundle() -> Dict[str, Any]:
    """Load provider bundle from defaults plus ``ACTIONPILOT_LLM_PROVIDERS_JSON``."""
    bundle = build_default_provider_bundle()
    env_payload = _parse_env_json("ACTIONPILOT_LLM_PROVIDERS_JSON")
    if env_payload:
        bundle = _deep_merge(bundle, env_payload)
    return _normalize_bundle(bundle)
