"""Cross-step placeholder resolution.

Arguments may reference the payload of an earlier step with
``{{<step_id>[.result].<path>}}`` where ``<path>`` uses dots and ``[n]``
indexes, e.g. ``{{step_1.result.records[0].Id}}``. A string that is exactly
one placeholder takes the native value at the path; placeholders embedded in
longer text are replaced by the value's string form.
"""

from __future__ import annotations

import copy
import json
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, List, NamedTuple, Optional, Tuple, Union

from actionpilot.domain.run import Run
from actionpilot.infrastructure.logging_setup import get_logger

_WHOLE_VALUE_RE = re.compile(r"^\{\{([^{}]+)\}\}$")
_EMBEDDED_RE = re.compile(r"\{\{([^{}]+)\}\}")
_SEGMENT_RE = re.compile(r"\.?([^.\[\]]+)|\[(\w+)\]")

PathSegment = Union[str, int]


@dataclass(frozen=True)
class PlaceholderExpression:
    step_id: str
    path: Tuple[PathSegment, ...] = ()


@dataclass(frozen=True)
class Resolved:
    value: Any


@dataclass(frozen=True)
class Unresolved:
    text: str
    reason: str


LookupResult = Union[Resolved, Unresolved]


class Resolution(NamedTuple):
    arguments: Any
    any_resolved: bool
    unresolved: List[Unresolved]


@lru_cache(maxsize=512)
def parse_expression(expression: str) -> Optional[PlaceholderExpression]:
    """Parse the inside of ``{{...}}``; ``None`` when malformed."""
    text = str(expression or "").strip()
    if not text:
        return None

    segments: List[PathSegment] = []
    position = 0
    for match in _SEGMENT_RE.finditer(text):
        if match.start() != position:
            return None
        position = match.end()
        key, index = match.group(1), match.group(2)
        if index is not None:
            segments.append(int(index) if index.isdigit() else index)
        else:
            segments.append(key)
    if position != len(text) or not segments or not isinstance(segments[0], str):
        return None

    step_id, path = segments[0], segments[1:]
    if path and path[0] == "result":
        path = path[1:]
    return PlaceholderExpression(step_id=step_id, path=tuple(path))


_MISSING = object()


def _walk(value: Any, path: Tuple[PathSegment, ...]) -> Any:
    current = value
    for segment in path:
        if isinstance(current, dict):
            key = segment if isinstance(segment, str) else str(segment)
            if key not in current:
                return _MISSING
            current = current[key]
        elif isinstance(current, list):
            if isinstance(segment, str):
                if not segment.isdigit():
                    return _MISSING
                segment = int(segment)
            if segment >= len(current):
                return _MISSING
            current = current[segment]
        else:
            return _MISSING
    return current


def stringify(value: Any) -> str:
    """String form used when a placeholder is embedded in longer text."""
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, dict, list)) or value is None:
        return json.dumps(value, separators=(",", ":"))
    return str(value)


class PlaceholderResolver:
    """Resolve placeholders in a step's argument tree against a run."""

    def __init__(self, *, logger: Any = None):
        self._logger = logger or get_logger("placeholder_resolver")

    def lookup(self, text: str, expression: str, run: Run) -> LookupResult:
        parsed = parse_expression(expression)
        if parsed is None:
            return Unresolved(text, "malformed placeholder")

        step = run.get_step(parsed.step_id)
        if step is None:
            return Unresolved(text, f"step '{parsed.step_id}' not found")
        if step.result is None or step.result.payload is None:
            return Unresolved(text, f"step '{parsed.step_id}' has no result")

        value = _walk(step.result.payload, parsed.path)
        if value is _MISSING:
            return Unresolved(text, "path not found in result")
        return Resolved(value)

    def resolve(self, arguments: Any, run: Run) -> Resolution:
        """Return a resolved copy of ``arguments``; the input is not mutated."""
        unresolved: List[Unresolved] = []
        resolved_count = 0

        def _substitute_string(text: str) -> Any:
            nonlocal resolved_count
            whole = _WHOLE_VALUE_RE.match(text)
            if whole:
                result = self.lookup(text, whole.group(1), run)
                if isinstance(result, Resolved):
                    resolved_count += 1
                    return copy.deepcopy(result.value)
                unresolved.append(result)
                return text

            def _replace(match: "re.Match[str]") -> str:
                nonlocal resolved_count
                result = self.lookup(match.group(0), match.group(1), run)
                if isinstance(result, Resolved):
                    resolved_count += 1
                    return stringify(result.value)
                unresolved.append(result)
                return match.group(0)

            return _EMBEDDED_RE.sub(_replace, text)

        def _visit(node: Any) -> Any:
            if isinstance(node, str):
                return _substitute_string(node)
            if isinstance(node, dict):
                return {key: _visit(value) for key, value in node.items()}
            if isinstance(node, list):
                return [_visit(item) for item in node]
            return node

        resolved = _visit(arguments)
        for item in unresolved:
            self._logger.warning(
                "placeholder_unresolved",
                run_id=run.id,
                placeholder=item.text,
                reason=item.reason,
            )
        return Resolution(resolved, resolved_count > 0, unresolved)
