"""
Capability Tier Gate

Tier 1: Core AI & tooling (LLM access, external tools, no browser authority)
Tier 2: Browser context (read page, navigate, no mutation)
Tier 3: Full automation (forms, multi-tab, cross-site workflows)

One gate per process. The active tier changes only through an approved
upgrade (or an explicit set_tier) and is persisted in the key-value store.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from uwa.src.agent.approvals import ApprovalBroker
from uwa.src.agent.errors import PlanParseError
from uwa.src.agent.models import Action, ActionType, MUTATING_ACTIONS
from uwa.src.agent.parsing import parse_object
from uwa.src.agent.prompts import TIER_PROMPT
from uwa.src.store.kv_store import KeyValueStore

logger = logging.getLogger("uwa.tiers")

TIER_KEY = "uwa_capability_tier"
TIER_STATS_KEY = "uwa_tier_stats"
UPGRADE_REQUEST = "tier_upgrade"

Publisher = Callable[[str, str, Dict[str, Any]], Any]


@dataclass(frozen=True, slots=True)
class TierDefinition:
    level: int
    name: str
    description: str
    capabilities: Tuple[str, ...]
    permissions: Tuple[str, ...]
    restrictions: Tuple[str, ...] = ()

    def restricts(self, flag: str) -> bool:
        return flag in self.restrictions

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


TIERS: Dict[int, TierDefinition] = {
    1: TierDefinition(
        level=1,
        name="Core AI & Tooling",
        description="LLM access and external tool calling without browser authority",
        capabilities=("llm_access", "mcp_tools", "structured_output", "text_generation"),
        permissions=(),
        restrictions=("no_dom_access", "no_navigation", "no_user_data"),
    ),
    2: TierDefinition(
        level=2,
        name="Browser Context",
        description="Read page content and navigate, limited interaction",
        capabilities=("llm_access", "mcp_tools", "read_page", "navigate", "extract_data", "search"),
        permissions=("READ_PAGE", "NAVIGATE"),
        restrictions=("read_only", "no_form_submission", "no_cross_site"),
    ),
    3: TierDefinition(
        level=3,
        name="Full Automation",
        description="Complete browser automation with multi-site coordination",
        capabilities=(
            "llm_access",
            "mcp_tools",
            "read_page",
            "navigate",
            "fill_forms",
            "submit_forms",
            "multi_tab",
            "cross_site",
            "memory_access",
            "voice_interface",
        ),
        permissions=("READ_PAGE", "NAVIGATE", "FILL_FORM", "SUBMIT_ACTION", "OPEN_TAB", "ACCESS_MEMORY"),
    ),
}

SAFE_DEFAULT_TIER = 2
ENVIRONMENT_ACTIONS = frozenset(ActionType)


@dataclass(frozen=True, slots=True)
class TierCheck:
    allowed: bool
    reason: str = ""
    required_tier: Optional[int] = None


@dataclass(slots=True)
class TierChange:
    from_tier: int
    to_tier: int
    timestamp: float = field(default_factory=time.time)


class TierRecommendation(BaseModel):
    recommended_tier: int = Field(..., ge=1, le=3)
    reason: str = ""
    required_capabilities: List[str] = Field(default_factory=list)
    risks: List[str] = Field(default_factory=list)

    @field_validator("recommended_tier", mode="before")
    @classmethod
    def _reject_bool(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("recommended_tier must be 1, 2 or 3")
        return value


def default_recommendation() -> TierRecommendation:
    return TierRecommendation(
        recommended_tier=SAFE_DEFAULT_TIER,
        reason="Default recommendation for general browsing tasks",
        required_capabilities=["read_page", "navigate"],
        risks=[],
    )


class CapabilityTierGate:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        default_tier: int = 3,
        publish: Optional[Publisher] = None,
    ) -> None:
        self.store = store
        self.publish = publish
        self._lock = threading.Lock()
        self._upgrade_lock: Optional[asyncio.Lock] = None
        self._responses = ApprovalBroker()
        self._history: List[TierChange] = []
        stored = store.get(TIER_KEY)
        level = stored if stored in TIERS else default_tier
        if level not in TIERS:
            raise ValueError(f"Invalid tier level: {level}")
        self._tier = TIERS[level]

    # -- state -------------------------------------------------------

    @property
    def tier(self) -> TierDefinition:
        with self._lock:
            return self._tier

    @property
    def level(self) -> int:
        return self.tier.level

    @property
    def history(self) -> List[TierChange]:
        with self._lock:
            return list(self._history)

    def set_tier(self, level: int) -> TierDefinition:
        if level not in TIERS:
            raise ValueError(f"Invalid tier level: {level}")
        with self._lock:
            previous = self._tier.level
            self._tier = TIERS[level]
            self._history.append(TierChange(from_tier=previous, to_tier=level))
            self.store.set(TIER_KEY, level)
        logger.info("capability tier %d -> %d", previous, level)
        return TIERS[level]

    def is_capability_allowed(self, capability: str) -> bool:
        return capability in self.tier.capabilities

    # -- checks ------------------------------------------------------

    def check_action(self, action: Action, context: Optional[Mapping[str, Any]] = None) -> TierCheck:
        tier = self.tier
        context = context or {}
        if tier.level == 1 and action.type in ENVIRONMENT_ACTIONS:
            return TierCheck(False, "Browser actions not allowed in Tier 1", 2)
        if tier.level == 2 and action.type in MUTATING_ACTIONS:
            return TierCheck(False, "Form interaction not allowed in Tier 2", 3)
        if tier.restricts("no_cross_site") and context.get("cross_site"):
            return TierCheck(False, "Cross-site workflows not allowed in current tier", 3)
        return TierCheck(True)

    # -- upgrade handshake --------------------------------------------

    def _emit(self, node: str, message: str, data: Dict[str, Any]) -> None:
        if self.publish is not None:
            self.publish(node, message, data)

    async def request_upgrade(self, required_tier: int, reason: str) -> bool:
        """
        Ask the operator for required_tier and wait for the answer.

        Requests are serialized; a second caller waits until the first is
        answered and then re-evaluates against the tier that resulted.
        """
        if required_tier not in TIERS:
            raise ValueError(f"Invalid tier level: {required_tier}")
        if self._upgrade_lock is None:
            self._upgrade_lock = asyncio.Lock()
        async with self._upgrade_lock:
            if self.level >= required_tier:
                return True
            self._bump_stat("upgrades_requested")
            request = self._responses.open(
                UPGRADE_REQUEST,
                {"current_tier": self.level, "required_tier": required_tier, "reason": reason},
                on_approve=lambda _value: self.set_tier(required_tier),
            )
            self._emit(
                "tier",
                "upgrade_request",
                {
                    "request_id": request.request_id,
                    "current_tier": self.level,
                    "required_tier": required_tier,
                    "reason": reason,
                    "timestamp": time.time(),
                },
            )
            approved = bool(await self._responses.wait(request))
            if approved:
                self._bump_stat("upgrades_approved")
            self._emit("tier", "upgrade_response", {"approved": approved, "tier": self.level})
            return approved

    def respond_upgrade(self, approved: bool, request_id: Optional[str] = None) -> bool:
        """Operator answer to the pending upgrade. False when nothing is pending."""
        return self._responses.resolve(approved, request_id=request_id)

    def cancel_pending(self) -> None:
        self._responses.cancel_all()

    # -- advisory ----------------------------------------------------

    async def recommend(self, goal: str, client: Any) -> TierRecommendation:
        """Advisory only; never raises and never changes the active tier."""
        try:
            raw = await client.complete(TIER_PROMPT, f"User goal: {goal}")
            return parse_object(raw, TierRecommendation)
        except PlanParseError as exc:
            logger.warning("tier recommendation unparseable, using default: %s", exc)
        except Exception as exc:
            logger.warning("tier recommendation failed, using default: %s", exc)
        return default_recommendation()

    # -- statistics --------------------------------------------------

    def _bump_stat(self, key: str) -> None:
        with self._lock:
            stats = self.statistics()
            stats[key] = int(stats.get(key, 0)) + 1
            self.store.set(TIER_STATS_KEY, stats)

    def statistics(self) -> Dict[str, int]:
        stats = self.store.get(TIER_STATS_KEY) or {}
        base = {
            "tier1_usage": 0,
            "tier2_usage": 0,
            "tier3_usage": 0,
            "upgrades_requested": 0,
            "upgrades_approved": 0,
        }
        base.update({k: int(v) for k, v in stats.items()})
        return base

    def log_usage(self) -> None:
        self._bump_stat(f"tier{self.level}_usage")

    def export_config(self) -> Dict[str, Any]:
        return {
            "current_tier": self.tier.to_dict(),
            "history": [asdict(change) for change in self.history],
            "tiers": {level: tier.to_dict() for level, tier in TIERS.items()},
        }
