"""Strict parsing of oracle answers. Anything off-shape fails closed."""

from __future__ import annotations

import json
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import PlanParseError
from .models import Action, Plan


def strip_code_fence(raw: Optional[str]) -> str:
    """Remove a surrounding markdown code block, nothing else."""
    text = str(raw or "").strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def _load_object(raw: Optional[str]) -> dict:
    text = strip_code_fence(raw)
    if not text:
        raise PlanParseError("empty response from oracle", raw or "")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise PlanParseError(f"response is not JSON: {exc}", raw or "") from exc
    if not isinstance(data, dict):
        raise PlanParseError("response is not a JSON object", raw or "")
    return data


def parse_plan(raw: Optional[str]) -> Plan:
    """Parse {"actions": [...], "required_permissions": [...]} or raise PlanParseError."""
    data = _load_object(raw)
    try:
        return Plan.model_validate(data)
    except ValidationError as exc:
        raise PlanParseError(f"plan does not match schema: {exc}", raw or "") from exc


class _AlternativeAnswer(BaseModel):
    model_config = ConfigDict(extra="forbid")

    alternative: Optional[Action] = None
    reason: str = ""


def parse_alternative(raw: Optional[str]) -> tuple[Optional[Action], str]:
    """Parse a recovery answer. Raises PlanParseError on any shape mismatch."""
    data = _load_object(raw)
    try:
        answer = _AlternativeAnswer.model_validate(data)
    except ValidationError as exc:
        raise PlanParseError(f"alternative does not match schema: {exc}", raw or "") from exc
    return answer.alternative, answer.reason


def parse_object(raw: Optional[str], model: type[BaseModel]) -> Any:
    data = _load_object(raw)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise PlanParseError(f"response does not match {model.__name__}: {exc}", raw or "") from exc
