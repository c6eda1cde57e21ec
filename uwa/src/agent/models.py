"""
Agent data models

Actions, plans, page snapshots and execution results exchanged between the
orchestrator, the planning oracle and the environment collaborators.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from uwa.src.permissions.models import PermissionKind


class ActionType(str, Enum):
    """Directive types the environment understands."""

    NAVIGATE = "NAVIGATE"
    READ = "READ"
    CLICK = "CLICK"
    TYPE = "TYPE"
    SUBMIT_FORM = "SUBMIT_FORM"


_ACTION_ALIASES = {"READ_PAGE": "READ"}
_NEEDS_SELECTOR = {ActionType.CLICK, ActionType.TYPE}
MUTATING_ACTIONS = frozenset({ActionType.TYPE, ActionType.SUBMIT_FORM})


class Action(BaseModel):
    """
    Single directive. Immutable once issued; a retry builds a new instance.

    Example:
    {"type": "TYPE", "selector": "input[name='q']", "value": "AI"}
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: ActionType = Field(..., description="Action type")
    selector: Optional[str] = Field(default=None, description="Target CSS selector")
    value: Optional[str] = Field(default=None, description="Text to type")
    url: Optional[str] = Field(default=None, description="Navigation target")
    label: Optional[str] = Field(default=None, description="Field label hint")
    name: Optional[str] = Field(default=None, description="Field name hint")
    reason: Optional[str] = Field(default=None, description="Oracle rationale")

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            upper = value.strip().upper()
            return _ACTION_ALIASES.get(upper, upper)
        return value

    @model_validator(mode="after")
    def _check_targets(self) -> "Action":
        if self.type is ActionType.NAVIGATE and not (self.url or "").strip():
            raise ValueError("NAVIGATE requires url")
        if self.type in _NEEDS_SELECTOR and not (self.selector or "").strip():
            raise ValueError(f"{self.type.value} requires selector")
        return self

    def describe(self) -> str:
        target = self.url if self.type is ActionType.NAVIGATE else (self.selector or "-")
        return f"{self.type.value} {target}"


class Plan(BaseModel):
    """Oracle's action batch for one round."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    actions: Tuple[Action, ...] = Field(..., description="Ordered actions")
    required_permissions: Tuple[PermissionKind, ...] = Field(
        default=(), description="Permissions the plan needs"
    )

    @field_validator("required_permissions", mode="before")
    @classmethod
    def _normalize_permissions(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return tuple(v.strip().upper() if isinstance(v, str) else v for v in value)
        return value

    @property
    def is_empty(self) -> bool:
        return not self.actions

    @property
    def is_pure_navigation(self) -> bool:
        return bool(self.actions) and all(a.type is ActionType.NAVIGATE for a in self.actions)

    def with_actions(self, actions: List[Action]) -> "Plan":
        return self.model_copy(update={"actions": tuple(actions)})


class Location(BaseModel):
    """Handle of the tab/context the session drives."""

    tab_id: str = ""
    url: str = ""


class PageSnapshot(BaseModel):
    """Structured page read produced once per round."""

    model_config = ConfigDict(extra="ignore")

    url: str = ""
    title: str = ""
    buttons: List[Dict[str, Any]] = Field(default_factory=list)
    forms: List[Dict[str, Any]] = Field(default_factory=list)
    links: List[Dict[str, Any]] = Field(default_factory=list)
    inputs: List[Dict[str, Any]] = Field(default_factory=list)
    text: List[str] = Field(default_factory=list)
    full_text: str = ""

    def counts(self) -> Dict[str, int]:
        return {
            "buttons": len(self.buttons),
            "forms": len(self.forms),
            "links": len(self.links),
            "inputs": len(self.inputs),
        }

    def for_prompt(self, link_limit: int = 20, text_limit: int = 50) -> Dict[str, Any]:
        return {
            "url": self.url,
            "inputs": [
                {k: i.get(k) for k in ("selector", "type", "label", "placeholder", "name")}
                for i in self.inputs
            ],
            "buttons": [{k: b.get(k) for k in ("selector", "text")} for b in self.buttons],
            "forms": [{k: f.get(k) for k in ("selector", "inputs")} for f in self.forms],
            "links": [
                {k: l.get(k) for k in ("selector", "text", "href")}
                for l in self.links[:link_limit]
            ],
            "important_text": self.text[:text_limit],
        }


class AttemptRecord(BaseModel):
    attempt: int
    action: Action
    success: bool
    error: Optional[str] = None


class ExecutionResult(BaseModel):
    """
    Outcome for one plan index. attempts keeps the action -> alternative trail.
    """

    index: int
    action: Action = Field(..., description="Last action attempted for this index")
    original_action: Action
    success: bool
    payload: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    attempts: List[AttemptRecord] = Field(default_factory=list)

    @property
    def outcome(self) -> str:
        return "success" if self.success else "failure"


class SessionEvent(BaseModel):
    """Observer-facing record emitted at every phase transition."""

    node: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)
