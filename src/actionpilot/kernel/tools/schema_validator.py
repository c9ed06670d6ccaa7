"""JSON schema check of tool arguments."""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from jsonschema import Draft7Validator

from actionpilot.domain.errors import ToolValidationError
from actionpilot.infrastructure.logging_setup import get_logger
from actionpilot.kernel.tools.tool_registry import ToolRegistry


def _field_name(error: Any) -> str:
    parts = [str(part) for part in error.absolute_path]
    if error.validator == "required" and isinstance(error.validator_value, list):
        # jsonschema reports missing properties on the parent object
        missing = str(error.message).split("'")
        if len(missing) >= 2:
            parts.append(missing[1])
    return ".".join(parts) if parts else "(root)"


class SchemaValidator:
    """Validate arguments against the schema registered for a tool."""

    def __init__(self, registry: ToolRegistry, *, logger: Any = None):
        self.registry = registry
        self._logger = logger or get_logger("schema_validator")
        self._validators: Dict[str, Draft7Validator] = {}

    def _validator_for(self, tool_name: str) -> Draft7Validator:
        canonical = self.registry.canonicalize(tool_name)
        cached = self._validators.get(canonical)
        if cached is not None:
            return cached
        schema = self.registry.get_tool_input_schema(canonical)
        if schema is None:
            raise ToolValidationError(f"No schema found for tool: {tool_name}")
        validator = Draft7Validator(schema)
        self._validators[canonical] = validator
        return validator

    def collect_errors(self, tool_name: str, args: Any) -> List[Tuple[str, str]]:
        validator = self._validator_for(tool_name)
        errors = sorted(validator.iter_errors(args), key=lambda err: list(map(str, err.absolute_path)))
        return [(_field_name(err), err.message) for err in errors]

    def validate(self, tool_name: str, args: Any) -> None:
        """Raise ``ToolValidationError`` with every violation aggregated."""
        errors = self.collect_errors(tool_name, args)
        if errors:
            message = "; ".join(f"{field} {reason}" for field, reason in errors)
            self._logger.warning("tool_args_invalid", tool=tool_name, errors=message)
            raise ToolValidationError(message, errors)
        self._logger.debug("tool_args_valid", tool=tool_name)
