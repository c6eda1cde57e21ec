"""Exception types surfaced by the session orchestrator."""
from __future__ import annotations


class AgentError(Exception):
    """Base class for agent failures."""


class SessionAlreadyRunningError(AgentError):
    """start() was called while another session is active."""


class PlanParseError(AgentError):
    """Oracle output did not match the documented plan shape."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class EnvironmentUnavailableError(AgentError):
    """No active tab, or the page snapshot stayed unreachable after its retries."""


class PermissionDeniedError(AgentError):
    """A permission required by the plan resolved to not allowed."""

    def __init__(self, kind: str, reason: str = "denied") -> None:
        super().__init__(f"Permission {kind} was not granted ({reason})")
        self.kind = kind
        self.reason = reason
