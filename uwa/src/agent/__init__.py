"""
Web agent core

Supervised multi-round loop: observe the page, ask the planning oracle for
the next batch of actions, gate them through capability tiers and
permissions, execute them with bounded per-action recovery.
"""

from .errors import (
    AgentError,
    EnvironmentUnavailableError,
    PermissionDeniedError,
    PlanParseError,
    SessionAlreadyRunningError,
)
from .models import Action, ActionType, ExecutionResult, Location, PageSnapshot, Plan, SessionEvent
from .oracle import OpenAIPlanningClient, PlanningClient, PlanningOracle
from .orchestrator import SessionOrchestrator
from .session import SessionHandle, SessionOutcome, SessionStatus

__all__ = [
    "Action",
    "ActionType",
    "AgentError",
    "EnvironmentUnavailableError",
    "ExecutionResult",
    "Location",
    "OpenAIPlanningClient",
    "PageSnapshot",
    "PermissionDeniedError",
    "Plan",
    "PlanParseError",
    "PlanningClient",
    "PlanningOracle",
    "SessionAlreadyRunningError",
    "SessionEvent",
    "SessionHandle",
    "SessionOrchestrator",
    "SessionOutcome",
    "SessionStatus",
]
