"""HTTP client for the environment host's /execute endpoint."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import requests

from uwa.src.agent.errors import EnvironmentUnavailableError
from uwa.src.agent.models import Action, Location, PageSnapshot
from uwa.src.utils.config import HostConfig

logger = logging.getLogger("uwa.environment")


class HostEnvironment:
    """PageReader and ActionRunner backed by a running environment host."""

    def __init__(self, config: Optional[HostConfig] = None) -> None:
        self.config = config or HostConfig()
        self.host_url = self.config.host_url.rstrip("/")
        self.session_id = self.config.session_id

    def _post(self, path: str, action: str, params: Dict[str, Any]) -> Dict[str, Any]:
        payload = {"action": action, "params": {"session_id": self.session_id, **params}}
        try:
            response = requests.post(
                f"{self.host_url}{path}",
                json=payload,
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as exc:
            raise EnvironmentUnavailableError(f"environment host unreachable: {exc}") from exc
        try:
            data = response.json()
        except ValueError:
            data = {"error": response.text or "invalid_json_response"}
        if response.status_code >= 400:
            detail = data.get("detail") or data.get("error") or response.reason
            raise EnvironmentUnavailableError(f"HTTP {response.status_code} - {detail}")
        return data

    async def _call(self, action: str, **params: Any) -> Dict[str, Any]:
        return await asyncio.to_thread(self._post, "/execute", action, params)

    async def current_location(self) -> Optional[Location]:
        data = await self._call("current_location")
        if not data.get("tab_id"):
            return None
        return Location(tab_id=str(data["tab_id"]), url=data.get("url") or "")

    async def snapshot(self, location: Location) -> PageSnapshot:
        data = await self._call("snapshot", tab_id=location.tab_id)
        if data.get("error"):
            raise EnvironmentUnavailableError(str(data["error"]))
        return PageSnapshot.model_validate(data)

    async def run(self, action: Action, location: Location) -> Dict[str, Any]:
        return await self._call(
            "run_action",
            tab_id=location.tab_id,
            action=action.model_dump(mode="json", exclude_none=True),
        )

    async def navigate(self, url: str, location: Location) -> Location:
        data = await self._call("navigate", tab_id=location.tab_id, url=url)
        return Location(tab_id=str(data.get("tab_id") or location.tab_id), url=data.get("url") or url)

    async def status(self, location: Location) -> str:
        data = await self._call("status", tab_id=location.tab_id)
        return str(data.get("status") or "loading")

    async def close(self) -> None:
        try:
            await asyncio.to_thread(self._post, "/close_session", "close_session", {})
        except EnvironmentUnavailableError as exc:
            logger.warning("close_session failed: %s", exc)
