"""``{{dotted.path}}`` interpolation for action templates.

Invariants:
- Unresolvable placeholders are returned verbatim so broken templates stay visible.
- Parameter maps are walked with explicit depth and cycle guards.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from typing import Any

from app.core.config import settings
from app.services.automation_errors import RuleValidationError

PLACEHOLDER_RE = re.compile(r"\{\{(.*?)\}\}")

_MISSING = object()


def _resolve(path: str, context: Mapping[str, Any]) -> Any:
    current: Any = context
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return _MISSING
            current = current[segment]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def stringify(value: Any) -> str:
    """Render a context leaf as human-readable text."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return str(value)


def interpolate(template: str, context: Mapping[str, Any]) -> str:
    """Replace each ``{{path}}`` span with the value found in ``context``."""

    def _replace(match: re.Match[str]) -> str:
        value = _resolve(match.group(1).strip(), context)
        if value is _MISSING or value is None:
            return match.group(0)
        return stringify(value)

    return PLACEHOLDER_RE.sub(_replace, template)


def _interpolate_value(value: Any, context: Mapping[str, Any], depth: int, seen: set[int], max_depth: int) -> Any:
    if isinstance(value, str):
        return interpolate(value, context)
    if not isinstance(value, (Mapping, list, tuple)):
        return value
    if depth >= max_depth:
        raise RuleValidationError(f"parameters_too_deep:{max_depth}")
    marker = id(value)
    if marker in seen:
        raise RuleValidationError("parameters_cycle_detected")
    seen.add(marker)
    try:
        if isinstance(value, Mapping):
            return {
                key: _interpolate_value(item, context, depth + 1, seen, max_depth)
                for key, item in value.items()
            }
        return [_interpolate_value(item, context, depth + 1, seen, max_depth) for item in value]
    finally:
        seen.discard(marker)


def interpolate_params(
    params: Mapping[str, Any],
    context: Mapping[str, Any],
    *,
    max_depth: int | None = None,
) -> dict[str, Any]:
    """Interpolate every string leaf of a nested parameter map."""
    limit = max_depth if max_depth is not None else settings.automation_template_max_depth
    return _interpolate_value(params, context, 0, set(), limit)
