"""Permission kinds, rules and check outcomes."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional


class PermissionKind(str, Enum):
    """Fine-grained permission categories declared by a plan."""

    READ_PAGE = "READ_PAGE"
    OPEN_TAB = "OPEN_TAB"
    FILL_FORM = "FILL_FORM"
    SUBMIT_ACTION = "SUBMIT_ACTION"
    MCP_TOOL_CALL = "MCP_TOOL_CALL"


# Read-class kinds never prompt.
READ_CLASS_KINDS = frozenset({PermissionKind.READ_PAGE})

# Why the operator is asked when no rule settles a kind.
APPROVAL_REASONS: Dict[PermissionKind, str] = {
    PermissionKind.OPEN_TAB: "ask_once",
    PermissionKind.FILL_FORM: "confirm",
    PermissionKind.SUBMIT_ACTION: "always_confirm",
    PermissionKind.MCP_TOOL_CALL: "confirm",
}


class RuleEffect(str, Enum):
    ALWAYS = "always"
    ONCE = "once"
    DENY = "deny"


class GrantMode(str, Enum):
    ONCE = "once"
    ALWAYS = "always"


class PermissionDecision(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"
    REQUIRES_APPROVAL = "requires_approval"


@dataclass(slots=True)
class PermissionRule:
    kind: str
    pattern: str
    effect: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "PermissionRule":
        return cls(
            kind=str(raw.get("kind") or ""),
            pattern=str(raw.get("pattern") or "*"),
            effect=str(raw.get("effect") or RuleEffect.ONCE.value),
        )


@dataclass(slots=True)
class TaskGrant:
    key: str
    granted_at: float
    task_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"granted_at": self.granted_at, "task_id": self.task_id}


@dataclass(frozen=True, slots=True)
class PermissionCheck:
    """Result of PermissionLedger.check; source tells rule-based grants from the bypass."""

    decision: PermissionDecision
    reason: str
    source: str

    @property
    def allowed(self) -> bool:
        return self.decision is PermissionDecision.ALLOWED

    @property
    def denied(self) -> bool:
        return self.decision is PermissionDecision.DENIED

    @property
    def requires_approval(self) -> bool:
        return self.decision is PermissionDecision.REQUIRES_APPROVAL
