"""Interfaces of the environment collaborators the orchestrator drives."""
from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, runtime_checkable

from uwa.src.agent.models import Action, Location, PageSnapshot


@runtime_checkable
class PageReader(Protocol):
    async def current_location(self) -> Optional[Location]:
        """Active tab, or None when there is nothing to drive."""
        ...

    async def snapshot(self, location: Location) -> PageSnapshot:
        ...


@runtime_checkable
class ActionRunner(Protocol):
    async def run(self, action: Action, location: Location) -> Dict[str, Any]:
        """Perform one in-page action. Returns {"success": bool, "error"?: str, ...}."""
        ...

    async def navigate(self, url: str, location: Location) -> Location:
        ...

    async def status(self, location: Location) -> str:
        """Load state of the tab: "loading" or "complete"."""
        ...
