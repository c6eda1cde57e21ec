"""UWA package root exposing the session orchestrator and its collaborators."""

from uwa.src.agent import SessionOrchestrator, SessionStatus
from uwa.src.capabilities import CapabilityTierGate
from uwa.src.memory import WorkflowMemory
from uwa.src.permissions import PermissionLedger
from uwa.src.store import InMemoryStore, JsonFileStore

__all__ = [
    "CapabilityTierGate",
    "InMemoryStore",
    "JsonFileStore",
    "PermissionLedger",
    "SessionOrchestrator",
    "SessionStatus",
    "WorkflowMemory",
]
