"""
Argument alignment against a capability's declared JSON input schema.

The planner is an LLM, so the argument names it produces drift: it says
``query`` where a capability declares ``question``, or hands back a bare
string.  Alignment is a fixed, ordered policy:

1. each required field that is missing or empty takes over the first
   non-empty candidate in ``alias_candidates(field)`` (the alias key is
   renamed, not copied);
2. keys the schema does not declare are dropped, unless the schema sets
   ``additionalProperties: true`` (a schema without ``properties``
   accepts everything);
3. whatever required field is still missing is reported as an issue.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

ALIAS_CANDIDATES: tuple[str, ...] = ("query", "input", "prompt", "question", "text", "value")


@dataclass(slots=True)
class AlignmentResult:
    args: dict[str, Any]
    issues: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues


def alias_candidates(required_field: str) -> list[str]:
    """Lookup order for a required field: its own name first, then the shared aliases."""
    ordered = [required_field]
    ordered.extend(name for name in ALIAS_CANDIDATES if name != required_field)
    return ordered


def is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) > 0
    return True


def normalize_arguments(raw: Any) -> dict[str, Any]:
    """Coerce whatever the planner produced into an argument map."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {"input": raw}
        if isinstance(parsed, dict):
            return parsed
        return {"input": raw}
    return {"value": raw}


def align_arguments(schema: dict[str, Any] | None, args: dict[str, Any]) -> AlignmentResult:
    schema = schema or {}
    properties = schema.get("properties")
    required: list[str] = list(schema.get("required") or [])

    working = dict(args)
    for name in required:
        if is_present(working.get(name)):
            continue
        alias = find_alias(name, working)
        if alias is not None:
            working[name] = working.pop(alias)

    if isinstance(properties, dict) and schema.get("additionalProperties") is not True:
        working = {key: value for key, value in working.items() if key in properties}

    issues = [
        f"Missing required field: {name}" for name in required if not is_present(working.get(name))
    ]
    return AlignmentResult(args=working, issues=issues)


def find_alias(required_field: str, args: dict[str, Any]) -> str | None:
    for candidate in alias_candidates(required_field)[1:]:
        if is_present(args.get(candidate)):
            return candidate
    return None
