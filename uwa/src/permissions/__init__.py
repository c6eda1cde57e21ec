"""Permission ledger and rule types."""

from .ledger import PermissionLedger, grant_key, pattern_matches
from .models import (
    GrantMode,
    PermissionCheck,
    PermissionDecision,
    PermissionKind,
    PermissionRule,
    RuleEffect,
    TaskGrant,
)

__all__ = [
    "PermissionLedger",
    "grant_key",
    "pattern_matches",
    "GrantMode",
    "PermissionCheck",
    "PermissionDecision",
    "PermissionKind",
    "PermissionRule",
    "RuleEffect",
    "TaskGrant",
]
