"""Uniform execute() over the environment collaborators."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from uwa.src.environment.base import ActionRunner, PageReader
from uwa.src.utils.config import AgentConfig

from .models import Action, ActionType, Location, PageSnapshot

logger = logging.getLogger("uwa.adapter")


@dataclass(slots=True)
class AdapterOutcome:
    success: bool
    payload: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    location: Optional[Location] = None
    snapshot: Optional[PageSnapshot] = None


class ActionExecutionAdapter:
    """
    NAVIGATE goes through runner.navigate and waits (bounded) for the tab to
    report "complete"; READ re-reads the page; everything else is forwarded
    verbatim to runner.run. Collaborator exceptions become failed outcomes.
    """

    def __init__(self, reader: PageReader, runner: ActionRunner, config: Optional[AgentConfig] = None) -> None:
        self.reader = reader
        self.runner = runner
        self.config = config or AgentConfig()

    async def execute(self, action: Action, location: Location) -> AdapterOutcome:
        try:
            if action.type is ActionType.NAVIGATE:
                return await self._navigate(action, location)
            if action.type is ActionType.READ:
                snapshot = await self.reader.snapshot(location)
                return AdapterOutcome(True, {"read": snapshot.counts()}, snapshot=snapshot)
            result = await self.runner.run(action, location)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.info("%s failed: %s", action.describe(), exc)
            return AdapterOutcome(False, error=str(exc) or exc.__class__.__name__)

        result = dict(result or {})
        if not result.get("success"):
            return AdapterOutcome(False, result, error=str(result.get("error") or "Action failed"))
        return AdapterOutcome(True, result)

    async def _navigate(self, action: Action, location: Location) -> AdapterOutcome:
        target = await self.runner.navigate(action.url or "", location)
        await asyncio.sleep(self.config.navigation_settle_seconds)
        loaded = await self.wait_until_loaded(target)
        if not loaded:
            logger.warning("page %s did not report loaded after polling", target.url)
        return AdapterOutcome(True, {"url": target.url, "loaded": loaded}, location=target)

    async def wait_until_loaded(self, location: Location) -> bool:
        for attempt in range(self.config.navigation_poll_attempts + 1):
            try:
                status = await self.runner.status(location)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # A failed poll counts as still loading.
                logger.debug("status poll %d for %s failed: %s", attempt, location.url, exc)
                status = "loading"
            if status == "complete":
                return True
            if attempt < self.config.navigation_poll_attempts:
                await asyncio.sleep(self.config.navigation_poll_interval)
        return False
