from __future__ import annotations

import json
import re
from typing import Any

from pydantic import ValidationError

from core.errors import MalformedOutputError
from .schema import ScriptOutput, ScriptPlan


_FENCE_RE = re.compile(r"^\s*```(?:json|JSON)?\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


def strip_fences(text: str) -> str:
    match = _FENCE_RE.match(text or "")
    if match:
        return match.group(1).strip()
    return (text or "").strip()


def load_json(text: str) -> Any:
    try:
        return json.loads(strip_fences(text))
    except json.JSONDecodeError as exc:
        raise MalformedOutputError(f"invalid_json: {exc}") from exc


def parse_plans(text: str) -> list[ScriptPlan]:
    data = load_json(text)
    if isinstance(data, dict):
        # json_object mode makes some providers wrap the array
        data = data.get("plans")
    if not isinstance(data, list):
        raise MalformedOutputError("invalid_plans: response is not an array")
    try:
        return [ScriptPlan.model_validate(item) for item in data]
    except ValidationError as exc:
        raise MalformedOutputError(f"invalid_plans: {_short_errors(exc)}") from exc


def parse_script_output(text: str) -> ScriptOutput:
    data = load_json(text)
    if isinstance(data, list) and len(data) == 1:
        data = data[0]
    if not isinstance(data, dict):
        raise MalformedOutputError("invalid_script: response is not an object")
    try:
        return ScriptOutput.model_validate(data)
    except ValidationError as exc:
        raise MalformedOutputError(f"invalid_script: {_short_errors(exc)}") from exc


def _short_errors(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors()[:5]:
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)
