import asyncio

from uwa.src.agent.models import Action
from uwa.src.capabilities.tiers import SAFE_DEFAULT_TIER, CapabilityTierGate
from uwa.src.store.kv_store import InMemoryStore


class _TierClient:
    def __init__(self, answer=None, error=None):
        self.answer = answer
        self.error = error

    async def complete(self, system_prompt, user_content):
        if self.error:
            raise self.error
        return self.answer


def _action(kind, **kwargs):
    return Action(type=kind, **kwargs)


def test_tier_one_blocks_every_browser_action():
    gate = CapabilityTierGate(InMemoryStore(), default_tier=1)
    check = gate.check_action(_action("READ"))
    assert not check.allowed
    assert check.required_tier == 2


def test_tier_two_blocks_mutation_and_cross_site():
    gate = CapabilityTierGate(InMemoryStore(), default_tier=2)
    assert gate.check_action(_action("CLICK", selector="#a")).allowed
    assert gate.check_action(_action("NAVIGATE", url="https://example.com")).allowed

    typed = gate.check_action(_action("TYPE", selector="#q", value="x"))
    assert not typed.allowed and typed.required_tier == 3
    assert typed.reason == "Form interaction not allowed in Tier 2"
    assert not gate.check_action(_action("SUBMIT_FORM")).allowed

    cross = gate.check_action(_action("CLICK", selector="#a"), {"cross_site": True})
    assert not cross.allowed and cross.required_tier == 3


def test_tier_three_allows_everything():
    gate = CapabilityTierGate(InMemoryStore(), default_tier=3)
    assert gate.check_action(_action("SUBMIT_FORM"), {"cross_site": True}).allowed


def test_tier_is_persisted():
    store = InMemoryStore()
    CapabilityTierGate(store, default_tier=3).set_tier(2)
    assert CapabilityTierGate(store, default_tier=3).level == 2


def test_upgrade_waits_for_operator_and_records_history():
    gate = CapabilityTierGate(InMemoryStore(), default_tier=2)
    requests = []
    gate.publish = lambda node, message, data: requests.append((message, data))

    async def scenario():
        pending = asyncio.create_task(gate.request_upgrade(3, "needs forms"))
        await asyncio.sleep(0)
        assert gate.level == 2
        assert gate.respond_upgrade(True)
        return await pending

    assert asyncio.run(scenario()) is True
    assert gate.level == 3
    assert [(c.from_tier, c.to_tier) for c in gate.history] == [(2, 3)]
    assert requests[0][0] == "upgrade_request"
    assert requests[0][1]["required_tier"] == 3
    stats = gate.statistics()
    assert stats["upgrades_requested"] == 1
    assert stats["upgrades_approved"] == 1


def test_denied_upgrade_keeps_tier():
    gate = CapabilityTierGate(InMemoryStore(), default_tier=1)

    async def scenario():
        pending = asyncio.create_task(gate.request_upgrade(2, "read"))
        await asyncio.sleep(0)
        gate.respond_upgrade(False)
        return await pending

    assert asyncio.run(scenario()) is False
    assert gate.level == 1
    assert gate.history == []


def test_upgrades_are_serialized():
    gate = CapabilityTierGate(InMemoryStore(), default_tier=1)
    opened = []
    gate.publish = lambda node, message, data: opened.append(data.get("required_tier")) if message == "upgrade_request" else None

    async def scenario():
        first = asyncio.create_task(gate.request_upgrade(3, "forms"))
        second = asyncio.create_task(gate.request_upgrade(2, "read"))
        await asyncio.sleep(0)
        assert opened == [3]
        gate.respond_upgrade(True)
        return await first, await second

    assert asyncio.run(scenario()) == (True, True)
    assert opened == [3]


def test_no_response_without_pending_upgrade():
    gate = CapabilityTierGate(InMemoryStore())
    assert gate.respond_upgrade(True) is False


def test_recommend_parses_answer():
    gate = CapabilityTierGate(InMemoryStore())
    client = _TierClient('{"recommended_tier": 3, "reason": "forms", "risks": ["payment"]}')
    rec = asyncio.run(gate.recommend("buy shoes", client))
    assert rec.recommended_tier == 3
    assert rec.risks == ["payment"]


def test_recommend_falls_back_to_safe_default():
    gate = CapabilityTierGate(InMemoryStore(), default_tier=3)
    for client in (_TierClient("no idea"), _TierClient('{"recommended_tier": 7}'), _TierClient(error=RuntimeError("down"))):
        rec = asyncio.run(gate.recommend("anything", client))
        assert rec.recommended_tier == SAFE_DEFAULT_TIER
        assert rec.required_capabilities == ["read_page", "navigate"]
    assert gate.level == 3


def test_usage_and_export():
    gate = CapabilityTierGate(InMemoryStore(), default_tier=2)
    gate.log_usage()
    gate.log_usage()
    assert gate.statistics()["tier2_usage"] == 2

    exported = gate.export_config()
    assert exported["current_tier"]["level"] == 2
    assert sorted(exported["tiers"]) == [1, 2, 3]
    assert "no_form_submission" in exported["tiers"][2]["restrictions"]
