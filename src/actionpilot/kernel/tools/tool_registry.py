"""Tool definitions for ActionPilot.

Holds each tool's category, display name, aliases and JSON input schema, and
answers the lookups the executor, validator and prompts need.
"""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from actionpilot.domain.errors import ToolNotFoundError
from actionpilot.infrastructure.logging_setup import get_logger


ToolSpec = Dict[str, Any]


_FILTERS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "conditions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "field": {"type": "string"},
                    "operator": {"type": "string"},
                    "value": {},
                    "values": {"type": "array"},
                },
                "required": ["field", "operator"],
            },
        },
        "logic": {"type": "string"},
        "orderBy": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "field": {"type": "string"},
                    "direction": {"type": "string", "enum": ["ASC", "DESC"]},
                },
                "required": ["field"],
            },
        },
        "limit": {"type": "integer", "minimum": 1},
        "offset": {"type": "integer", "minimum": 0},
        "includeFields": {"type": "array", "items": {"type": "string"}},
        "timeFrame": {"type": "string"},
    },
}

_ENTITY_TYPES = ["Account", "Contact", "Lead", "Opportunity", "Campaign", "Case", "Task", "Event"]


# Built-in tool specifications with categories: Email, CRM, Calendar
_DEFAULT_TOOL_SPECS: Dict[str, ToolSpec] = {
    "fetch_emails": {
        "category": "Email",
        "display_name": "email fetching",
        "description": "Fetch emails from the user's inbox with optional filters.",
        "provider_config_key": "google-mail",
        "aliases": ["fetchEmails", "get_emails", "read_emails"],
        "parameters": {
            "type": "object",
            "properties": {
                "backfillPeriodMs": {"type": "integer", "minimum": 0},
                "filters": {
                    "type": "object",
                    "properties": {
                        "sender": {"type": ["string", "array"]},
                        "recipient": {"type": ["string", "array"]},
                        "dateRange": {
                            "type": "object",
                            "properties": {
                                "after": {"type": "string"},
                                "before": {"type": "string"},
                            },
                        },
                        "hasAttachment": {"type": "boolean"},
                        "labels": {"type": "array", "items": {"type": "string"}},
                        "includeBody": {"type": "boolean"},
                        "isRead": {"type": "boolean"},
                        "limit": {"type": "integer", "minimum": 1},
                        "offset": {"type": "integer", "minimum": 0},
                    },
                },
            },
        },
    },
    "send_email": {
        "category": "Email",
        "display_name": "email sending",
        "description": "Send an email on behalf of the user.",
        "provider_config_key": "google-mail",
        "aliases": ["sendEmail", "email_send"],
        "parameters": {
            "type": "object",
            "properties": {
                "to": {"type": "string", "minLength": 3},
                "subject": {"type": "string", "minLength": 1},
                "body": {"type": "string"},
                "cc": {"type": "array", "items": {"type": "string"}},
                "bcc": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["to", "subject", "body"],
        },
    },
    "fetch_entity": {
        "category": "CRM",
        "display_name": "CRM record lookup",
        "description": "Fetch CRM records by identifier or filters.",
        "provider_config_key": "salesforce",
        "aliases": ["fetchEntity", "searchContacts", "search_records"],
        "parameters": {
            "type": "object",
            "properties": {
                "operation": {"type": "string", "enum": ["fetch"]},
                "entityType": {"type": "string", "enum": _ENTITY_TYPES},
                "identifier": {"type": "string"},
                "identifierType": {"type": "string"},
                "filters": _FILTERS_SCHEMA,
                "fields": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["operation", "entityType"],
        },
    },
    "create_entity": {
        "category": "CRM",
        "display_name": "CRM record creation",
        "description": "Create one or more CRM records.",
        "provider_config_key": "salesforce",
        "aliases": ["createEntity"],
        "parameters": {
            "type": "object",
            "properties": {
                "operation": {"type": "string", "enum": ["create"]},
                "entityType": {"type": "string", "enum": _ENTITY_TYPES},
                "fields": {"type": "object"},
                "records": {"type": "array", "items": {"type": "object"}},
                "checkDuplicates": {"type": "boolean"},
            },
            "required": ["operation", "entityType"],
        },
    },
    "update_entity": {
        "category": "CRM",
        "display_name": "CRM record update",
        "description": "Update CRM records selected by identifier or filters.",
        "provider_config_key": "salesforce",
        "aliases": ["updateEntity", "updateSalesforceContact"],
        "parameters": {
            "type": "object",
            "properties": {
                "operation": {"type": "string", "enum": ["update"]},
                "entityType": {"type": "string", "enum": _ENTITY_TYPES},
                "identifier": {"type": "string"},
                "identifierType": {"type": "string"},
                "filters": _FILTERS_SCHEMA,
                "fields": {"type": "object", "minProperties": 1},
            },
            "required": ["operation", "entityType", "fields"],
        },
    },
    "create_calendar_event": {
        "category": "Calendar",
        "display_name": "calendar event creation",
        "description": "Create a calendar event and invite attendees.",
        "provider_config_key": "google-calendar",
        "aliases": ["createCalendarEvent", "schedule_meeting"],
        "parameters": {
            "type": "object",
            "properties": {
                "summary": {"type": "string", "minLength": 1},
                "start": {"type": "string"},
                "end": {"type": "string"},
                "attendees": {"type": "array", "items": {"type": "string"}},
                "description": {"type": "string"},
                "location": {"type": "string"},
            },
            "required": ["summary", "start", "end"],
        },
    },
}


def _normalize_spec(name: str, raw: Dict[str, Any], category: Optional[str] = None) -> ToolSpec:
    return {
        "name": name,
        "category": str(raw.get("category") or category or "General"),
        "display_name": str(raw.get("display_name") or name.replace("_", " ")),
        "description": str(raw.get("description") or ""),
        "provider_config_key": raw.get("provider_config_key") or raw.get("providerConfigKey"),
        "aliases": [str(alias) for alias in raw.get("aliases") or [] if str(alias or "").strip()],
        "parameters": raw.get("parameters"),
    }


def load_tool_specs(path: Path) -> Dict[str, ToolSpec]:
    """Load tool specs from a JSON file.

    Accepts either ``{"tools": [...]}`` or a category-keyed object
    ``{"Email": [...], "CRM": [...]}``.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    specs: Dict[str, ToolSpec] = {}
    if isinstance(data, dict) and isinstance(data.get("tools"), list):
        for item in data["tools"]:
            if isinstance(item, dict) and item.get("name"):
                specs[str(item["name"])] = _normalize_spec(str(item["name"]), item)
    elif isinstance(data, dict):
        for category, items in data.items():
            if not isinstance(items, list):
                continue
            for item in items:
                if isinstance(item, dict) and item.get("name"):
                    specs[str(item["name"])] = _normalize_spec(str(item["name"]), item, category)
    else:
        raise ValueError(f"invalid_tool_config_structure: {path}")
    return specs


class ToolRegistry:
    """Registry of tool definitions keyed by canonical name."""

    def __init__(
        self,
        specs: Optional[Dict[str, Dict[str, Any]]] = None,
        *,
        logger: Any = None,
    ):
        self._logger = logger or get_logger("tool_registry")
        source = _DEFAULT_TOOL_SPECS if specs is None else specs
        self._specs: Dict[str, ToolSpec] = {
            name: _normalize_spec(name, raw) for name, raw in source.items()
        }
        self._alias_index = self._build_alias_index()

    @classmethod
    def from_file(cls, path: Path, *, logger: Any = None) -> "ToolRegistry":
        registry = cls(specs={}, logger=logger)
        registry._specs = load_tool_specs(path)
        registry._alias_index = registry._build_alias_index()
        registry._logger.info("tool_config_loaded", path=str(path), tools=sorted(registry._specs))
        return registry

    def _build_alias_index(self) -> Dict[str, str]:
        """Build index of tool aliases to canonical names."""
        index: Dict[str, str] = {}
        for canonical, spec in self._specs.items():
            index[canonical.lower()] = canonical
            for alias in spec.get("aliases", []):
                index[alias.strip().lower()] = canonical
        return index

    def canonicalize(self, name: str) -> str:
        """Convert alias to canonical tool name, keeping unknown names."""
        cleaned = str(name or "").strip()
        if not cleaned:
            return ""
        return self._alias_index.get(cleaned.lower(), cleaned)

    def register(self, name: str, spec: Dict[str, Any]) -> None:
        self._specs[name] = _normalize_spec(name, spec)
        self._alias_index = self._build_alias_index()

    def tool_exists(self, name: str) -> bool:
        return self.canonicalize(name) in self._specs

    def get_tool_definition(self, name: str) -> Optional[ToolSpec]:
        spec = self._specs.get(self.canonicalize(name))
        return copy.deepcopy(spec) if spec else None

    def require_tool_definition(self, name: str) -> ToolSpec:
        spec = self.get_tool_definition(name)
        if spec is None:
            raise ToolNotFoundError(f"Unknown tool '{name}'. Allowed: {', '.join(self.supported_tool_names())}")
        return spec

    def get_tool_input_schema(self, name: str) -> Optional[Dict[str, Any]]:
        spec = self._specs.get(self.canonicalize(name))
        if not spec or not isinstance(spec.get("parameters"), dict):
            return None
        return copy.deepcopy(spec["parameters"])

    def get_display_name(self, name: str) -> str:
        spec = self._specs.get(self.canonicalize(name))
        if spec:
            return spec["display_name"]
        return str(name or "").replace("_", " ")

    def supported_tool_names(self) -> List[str]:
        return sorted(self._specs.keys())

    def tools_by_category(self, categories: Iterable[str]) -> List[ToolSpec]:
        wanted = {str(item).strip().lower() for item in categories if str(item or "").strip()}
        found = [
            copy.deepcopy(spec)
            for name, spec in sorted(self._specs.items())
            if spec["category"].lower() in wanted
        ]
        if not found:
            self._logger.warning("tool_categories_not_found", requested=sorted(wanted))
        return found

    def find_missing_required_params(self, name: str, args: Optional[Dict[str, Any]]) -> List[str]:
        schema = self.get_tool_input_schema(name) or {}
        values = args if isinstance(args, dict) else {}
        missing: List[str] = []
        for param in schema.get("required") or []:
            value = values.get(param)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(param)
        return missing

    def render_tool_contract_for_prompt(self, names: Optional[Iterable[str]] = None) -> str:
        """Render tool contracts as prompt text."""
        selected = (
            [self.canonicalize(name) for name in names]
            if names is not None
            else self.supported_tool_names()
        )
        lines: List[str] = ["Tool Contract (authoritative):"]
        for name in selected:
            spec = self._specs.get(name)
            if not spec:
                continue
            required = (spec.get("parameters") or {}).get("required") or []
            required_text = ", ".join(required) if required else "none"
            lines.append(
                f"- {name} [{spec['category']}]: {spec['description']} required={required_text}"
            )
        return "\n".join(lines)
