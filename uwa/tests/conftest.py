import asyncio
import json
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import pytest

from uwa.src.agent.models import Action, Location, PageSnapshot
from uwa.src.agent.orchestrator import SessionOrchestrator
from uwa.src.capabilities.tiers import CapabilityTierGate
from uwa.src.memory.store import WorkflowMemory
from uwa.src.permissions.ledger import PermissionLedger
from uwa.src.store.kv_store import InMemoryStore
from uwa.src.utils.config import AgentConfig

EXAMPLE_URL = "https://example.com/"


def plan_json(*actions: Dict[str, Any], permissions: Optional[List[str]] = None) -> str:
    return json.dumps({"actions": list(actions), "required_permissions": permissions or []})


class FakeClient:
    """Routes on the system prompt: tier advisor, recovery agent, or planner."""

    def __init__(
        self,
        plans: Optional[List[str]] = None,
        alternatives: Optional[List[str]] = None,
        tier_answer: str = '{"recommended_tier": 1, "reason": "test"}',
    ) -> None:
        self.plans = list(plans or [plan_json()])
        self.alternatives = list(alternatives or [])
        self.tier_answer = tier_answer
        self.plan_calls: List[str] = []
        self.retry_calls: List[str] = []

    async def complete(self, system_prompt: str, user_content: str) -> str:
        if "capability tier advisor" in system_prompt:
            return self.tier_answer
        if "recovery agent" in system_prompt:
            self.retry_calls.append(user_content)
            if self.alternatives:
                return self.alternatives.pop(0) if len(self.alternatives) > 1 else self.alternatives[0]
            return '{"alternative": null, "reason": "nothing else to try"}'
        self.plan_calls.append(user_content)
        return self.plans.pop(0) if len(self.plans) > 1 else self.plans[0]


class FakeEnvironment:
    """In-memory page: records every call, fails selectors listed in failures."""

    def __init__(self, url: str = EXAMPLE_URL, *, has_tab: bool = True) -> None:
        self.location = Location(tab_id="tab-1", url=url) if has_tab else None
        self.failures: Dict[str, str] = {}
        self.snapshot_errors: List[Exception] = []
        self.statuses: List[Any] = []
        self.runs: List[Action] = []
        self.navigations: List[str] = []
        self.on_run: Optional[Callable[[Action], None]] = None

    async def current_location(self) -> Optional[Location]:
        return self.location

    async def snapshot(self, location: Location) -> PageSnapshot:
        if self.snapshot_errors:
            raise self.snapshot_errors.pop(0)
        return PageSnapshot(
            url=location.url,
            title="Example",
            inputs=[{"selector": "#email", "type": "email", "label": "Email"}],
            buttons=[{"selector": "#send", "text": "Send"}],
        )

    async def run(self, action: Action, location: Location) -> Dict[str, Any]:
        self.runs.append(action)
        if self.on_run is not None:
            self.on_run(action)
        error = self.failures.get(action.selector or "")
        if error:
            return {"success": False, "error": error}
        return {"success": True, "action": action.type.value.lower()}

    async def navigate(self, url: str, location: Location) -> Location:
        self.navigations.append(url)
        self.location = Location(tab_id=location.tab_id, url=url)
        return self.location

    async def status(self, location: Location) -> str:
        if self.statuses:
            status = self.statuses.pop(0)
            if isinstance(status, Exception):
                raise status
            return status
        return "complete"


def fast_config(**overrides: Any) -> AgentConfig:
    values = dict(
        max_rounds=5,
        max_attempts_per_action=5,
        snapshot_attempts=3,
        snapshot_retry_delay=0.0,
        navigation_settle_seconds=0.0,
        navigation_poll_interval=0.0,
        navigation_poll_attempts=3,
        grant_sweep_interval=0.0,
        memory_enabled=False,
    )
    values.update(overrides)
    return AgentConfig(**values)


@pytest.fixture
def make_agent():
    """Build an orchestrator over fakes; returns a namespace with every collaborator."""

    def _make(
        client: FakeClient,
        env: Optional[FakeEnvironment] = None,
        *,
        tier: int = 3,
        trust: bool = False,
        auto_fill: Optional[bool] = True,
        memory: bool = False,
        store: Optional[InMemoryStore] = None,
        **config: Any,
    ) -> SimpleNamespace:
        store = store if store is not None else InMemoryStore()
        env = env or FakeEnvironment()
        ledger = PermissionLedger(store)
        ledger.set_trust_mode(trust)
        gate = CapabilityTierGate(store, default_tier=tier)
        workflow_memory = WorkflowMemory(store, enabled=memory)
        orchestrator = SessionOrchestrator(
            client=client,
            reader=env,
            runner=env,
            ledger=ledger,
            gate=gate,
            store=store,
            memory=workflow_memory,
            config=fast_config(**config),
            auto_fill=auto_fill,
        )
        events: List[Any] = []
        orchestrator.on_event(events.append)
        return SimpleNamespace(
            orchestrator=orchestrator,
            env=env,
            client=client,
            ledger=ledger,
            gate=gate,
            store=store,
            memory=workflow_memory,
            events=events,
        )

    return _make


def run(coro):
    return asyncio.run(coro)
