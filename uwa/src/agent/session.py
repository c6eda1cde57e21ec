"""Session state, round context and the deltas stages hand back to the orchestrator."""
from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .models import ExecutionResult, Location, PageSnapshot


class SessionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"


TERMINAL_STATUSES = frozenset({SessionStatus.STOPPED, SessionStatus.COMPLETED})


def allocate_session_id() -> str:
    return f"task_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True, slots=True)
class RoundContext:
    """Everything the plan stage may read for one round. Rebuilt every round."""

    goal: str
    round_index: int
    location: Optional[Location]
    snapshot: Optional[PageSnapshot]
    memories: Tuple[Dict[str, Any], ...] = ()
    suggestions: Tuple[str, ...] = ()
    tools: Tuple[Dict[str, Any], ...] = ()
    previous_results: Tuple[Dict[str, Any], ...] = ()


@dataclass(frozen=True, slots=True)
class SessionDelta:
    """Changes a stage asks the orchestrator to apply."""

    location: Optional[Location] = None
    snapshot: Optional[PageSnapshot] = None
    results: Tuple[ExecutionResult, ...] = ()
    advance_round: bool = False


@dataclass(slots=True)
class Session:
    """One run. Owned by the orchestrator; signals only touch the flags."""

    goal: str
    session_id: str = field(default_factory=allocate_session_id)
    started_at: float = field(default_factory=time.time)
    status: SessionStatus = SessionStatus.RUNNING
    round_index: int = 0
    location: Optional[Location] = None
    snapshot: Optional[PageSnapshot] = None
    results: List[ExecutionResult] = field(default_factory=list)
    memories: Tuple[Dict[str, Any], ...] = ()
    suggestions: Tuple[str, ...] = ()
    profile: Dict[str, Any] = field(default_factory=dict)
    stop_requested: bool = False
    pause_requested: bool = False
    error: Optional[str] = None

    @property
    def task_id(self) -> str:
        return self.session_id

    def apply(self, delta: SessionDelta) -> None:
        if delta.location is not None:
            self.location = delta.location
        if delta.snapshot is not None:
            self.snapshot = delta.snapshot
        if delta.results:
            self.results.extend(delta.results)
        if delta.advance_round:
            self.round_index += 1

    def round_context(self, tools: Tuple[Dict[str, Any], ...] = ()) -> RoundContext:
        return RoundContext(
            goal=self.goal,
            round_index=self.round_index,
            location=self.location,
            snapshot=self.snapshot,
            memories=self.memories,
            suggestions=self.suggestions,
            tools=tools,
            previous_results=tuple(
                {
                    "index": r.index,
                    "action": r.action.describe(),
                    "outcome": r.outcome,
                    "error": r.error,
                }
                for r in self.results
            ),
        )


@dataclass(slots=True)
class SessionOutcome:
    session_id: str
    status: SessionStatus
    results: List[ExecutionResult]
    rounds: int
    error: Optional[str] = None

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def total_count(self) -> int:
        return len(self.results)


class SessionHandle:
    """Returned by start(); observers await wait() for the final outcome."""

    def __init__(self, session_id: str, goal: str, task: "asyncio.Task[SessionOutcome]") -> None:
        self.session_id = session_id
        self.goal = goal
        self._task = task

    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> SessionOutcome:
        return await asyncio.shield(self._task)
