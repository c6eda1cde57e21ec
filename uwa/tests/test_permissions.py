from uwa.src.permissions.ledger import AUDIT_LIMIT, PermissionLedger, grant_key, pattern_matches
from uwa.src.permissions.models import GrantMode, PermissionDecision, PermissionKind
from uwa.src.store.kv_store import InMemoryStore

URL = "https://shop.example.com/checkout"


class _Clock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _ledger(clock=None) -> PermissionLedger:
    return PermissionLedger(InMemoryStore(), clock=clock or _Clock())


def test_read_page_is_always_allowed():
    ledger = _ledger()
    check = ledger.check(PermissionKind.READ_PAGE, {"url": URL})
    assert check.allowed
    assert check.source == "auto"


def test_unknown_rule_requires_approval_with_reason():
    ledger = _ledger()
    check = ledger.check(PermissionKind.SUBMIT_ACTION, {"url": URL})
    assert check.decision is PermissionDecision.REQUIRES_APPROVAL
    assert check.reason == "always_confirm"


def test_deny_and_always_rules():
    ledger = _ledger()
    ledger.deny(PermissionKind.FILL_FORM, {"url": URL})
    assert ledger.check(PermissionKind.FILL_FORM, {"url": URL}).denied

    ledger.grant(PermissionKind.FILL_FORM, {"url": URL}, GrantMode.ALWAYS)
    check = ledger.check(PermissionKind.FILL_FORM, {"url": URL})
    assert check.allowed
    assert check.source == "rule"


def test_grant_deny_grant_leaves_exactly_one_rule():
    ledger = _ledger()
    ctx = {"url": URL}
    ledger.grant(PermissionKind.OPEN_TAB, ctx, GrantMode.ALWAYS)
    ledger.deny(PermissionKind.OPEN_TAB, ctx)
    ledger.grant(PermissionKind.OPEN_TAB, ctx, GrantMode.ONCE)

    rules = [r for r in ledger.rules() if r.kind == "OPEN_TAB" and r.pattern == URL]
    assert len(rules) == 1
    assert rules[0].effect == "once"


def test_once_grant_allows_until_retention_expires():
    clock = _Clock()
    ledger = _ledger(clock)
    ctx = {"url": URL, "task_id": "task_1"}
    ledger.grant(PermissionKind.FILL_FORM, ctx, GrantMode.ONCE)

    check = ledger.check(PermissionKind.FILL_FORM, ctx)
    assert check.allowed
    assert check.source == "task_grant"

    clock.now += 3600
    assert ledger.check(PermissionKind.FILL_FORM, ctx).requires_approval


def test_expire_task_grants_is_idempotent():
    clock = _Clock()
    ledger = _ledger(clock)
    ledger.grant(PermissionKind.FILL_FORM, {"url": URL, "task_id": "a"}, GrantMode.ONCE)
    ledger.grant(PermissionKind.OPEN_TAB, {"url": URL, "task_id": "b"}, GrantMode.ONCE)

    assert ledger.expire_task_grants("a") == 1
    after_first = ledger.task_grants()
    assert ledger.expire_task_grants("a") == 0
    assert ledger.task_grants() == after_first
    assert list(after_first) == [grant_key(PermissionKind.OPEN_TAB, URL)]

    clock.now += 4000
    assert ledger.expire_task_grants() == 1
    assert ledger.task_grants() == {}


def test_revoke_removes_url_and_wildcard_rules():
    ledger = _ledger()
    ledger.grant(PermissionKind.MCP_TOOL_CALL, {"url": URL}, GrantMode.ALWAYS)
    ledger.grant(PermissionKind.MCP_TOOL_CALL, {}, GrantMode.ALWAYS)
    ledger.grant(PermissionKind.MCP_TOOL_CALL, {"url": "https://other.example/"}, GrantMode.ALWAYS)

    ledger.revoke(PermissionKind.MCP_TOOL_CALL, {"url": URL})

    assert [r.pattern for r in ledger.rules()] == ["https://other.example/"]


def test_trust_mode_bypasses_deny_rules_and_is_audited():
    store = InMemoryStore()
    ledger = PermissionLedger(store)
    ledger.deny(PermissionKind.SUBMIT_ACTION, {"url": URL})
    ledger.set_trust_mode(True)

    check = ledger.check(PermissionKind.SUBMIT_ACTION, {"url": URL})

    assert check.allowed
    assert check.source == "bypass"
    assert store.get("uwa_permission_audit")[-1]["source"] == "bypass"


def test_unpersisted_trust_mode_stays_on_the_instance():
    store = InMemoryStore()
    ledger = PermissionLedger(store)
    ledger.set_trust_mode(True, persist=False)

    assert ledger.trust_mode is True
    assert ledger.check(PermissionKind.SUBMIT_ACTION, {"url": URL}).source == "bypass"
    assert store.get("uwa_trust_mode") is None
    assert PermissionLedger(store).trust_mode is False


def test_audit_log_is_capped():
    store = InMemoryStore()
    ledger = PermissionLedger(store)
    for _ in range(AUDIT_LIMIT + 20):
        ledger.check(PermissionKind.READ_PAGE, {"url": URL})
    assert len(store.get("uwa_permission_audit")) == AUDIT_LIMIT


def test_glob_patterns_and_exact_precedence():
    assert pattern_matches("*", URL)
    assert pattern_matches("https://shop.example.com/*", URL)
    assert not pattern_matches("https://other.example/*", URL)

    ledger = _ledger()
    ledger.grant(PermissionKind.FILL_FORM, {"url": "https://shop.example.com/*"}, GrantMode.ALWAYS)
    assert ledger.check(PermissionKind.FILL_FORM, {"url": URL}).allowed

    ledger.deny(PermissionKind.FILL_FORM, {"url": URL})
    assert ledger.check(PermissionKind.FILL_FORM, {"url": URL}).denied
