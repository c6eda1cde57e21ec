"""
Permission Ledger

Persists URL-scoped permission rules and task-scoped grants, and answers
whether a permission is currently allowed. One ledger per process; every
read-modify-write of the stored document happens under a single lock so the
background grant sweep and the live session never interleave.
"""
from __future__ import annotations

import fnmatch
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from uwa.src.store.kv_store import KeyValueStore

from .models import (
    APPROVAL_REASONS,
    READ_CLASS_KINDS,
    GrantMode,
    PermissionCheck,
    PermissionDecision,
    PermissionKind,
    PermissionRule,
    RuleEffect,
    TaskGrant,
)

logger = logging.getLogger("uwa.permissions")

PERMISSIONS_KEY = "uwa_permissions"
AUDIT_KEY = "uwa_permission_audit"
TRUST_MODE_KEY = "uwa_trust_mode"

DEFAULT_RETENTION_SECONDS = 3600.0
AUDIT_LIMIT = 500
WILDCARD = "*"


def _kind_value(kind: PermissionKind | str) -> str:
    if isinstance(kind, PermissionKind):
        return kind.value
    return str(kind or "").strip().upper()


def _context_url(context: Optional[Mapping[str, Any]]) -> str:
    url = (context or {}).get("url")
    return str(url) if url else WILDCARD


def _context_task(context: Optional[Mapping[str, Any]]) -> Optional[str]:
    task_id = (context or {}).get("task_id")
    return str(task_id) if task_id else None


def grant_key(kind: PermissionKind | str, url: str) -> str:
    return f"{_kind_value(kind)}:{url or WILDCARD}"


def pattern_matches(pattern: str, url: str) -> bool:
    if pattern == WILDCARD:
        return True
    if pattern == url:
        return True
    return fnmatch.fnmatchcase(url, pattern)


class PermissionLedger:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.retention_seconds = float(retention_seconds)
        self._clock = clock
        self._lock = threading.RLock()
        self._trust_override: Optional[bool] = None

    # -- persistence -------------------------------------------------

    def _load(self) -> Tuple[List[PermissionRule], Dict[str, TaskGrant]]:
        raw = self.store.get(PERMISSIONS_KEY) or {}
        rules = [
            PermissionRule.from_dict(item)
            for item in raw.get("rules", [])
            if isinstance(item, dict)
        ]
        grants: Dict[str, TaskGrant] = {}
        for key, value in (raw.get("task_grants") or {}).items():
            if isinstance(value, dict):
                grants[key] = TaskGrant(
                    key=key,
                    granted_at=float(value.get("granted_at") or 0.0),
                    task_id=value.get("task_id"),
                )
            else:
                grants[key] = TaskGrant(key=key, granted_at=float(value or 0.0))
        return rules, grants

    def _save(self, rules: List[PermissionRule], grants: Dict[str, TaskGrant]) -> None:
        self.store.set(
            PERMISSIONS_KEY,
            {
                "rules": [rule.to_dict() for rule in rules],
                "task_grants": {key: grant.to_dict() for key, grant in grants.items()},
            },
        )

    def _audit(self, kind: str, url: str, check: PermissionCheck) -> None:
        entries = list(self.store.get(AUDIT_KEY) or [])
        entries.append(
            {
                "kind": kind,
                "url": url,
                "decision": check.decision.value,
                "reason": check.reason,
                "source": check.source,
                "timestamp": self._clock(),
            }
        )
        self.store.set(AUDIT_KEY, entries[-AUDIT_LIMIT:])

    # -- trust mode --------------------------------------------------

    @property
    def trust_mode(self) -> bool:
        if self._trust_override is not None:
            return self._trust_override
        return bool(self.store.get(TRUST_MODE_KEY, False))

    def set_trust_mode(self, enabled: bool, *, persist: bool = True) -> None:
        """With persist=False the switch lives on this instance only and the stored value is untouched."""
        with self._lock:
            if persist:
                self.store.set(TRUST_MODE_KEY, bool(enabled))
                self._trust_override = None
            else:
                self._trust_override = bool(enabled)
        logger.warning("trust mode %s", "enabled" if enabled else "disabled")

    # -- queries -----------------------------------------------------

    def _is_live(self, grant: Optional[TaskGrant]) -> bool:
        if grant is None:
            return False
        return (self._clock() - grant.granted_at) < self.retention_seconds

    @staticmethod
    def _matching_rule(rules: List[PermissionRule], kind: str, url: str) -> Optional[PermissionRule]:
        exact = next((r for r in rules if r.kind == kind and r.pattern == url), None)
        if exact is not None:
            return exact
        return next((r for r in rules if r.kind == kind and pattern_matches(r.pattern, url)), None)

    def check(self, kind: PermissionKind | str, context: Optional[Mapping[str, Any]] = None) -> PermissionCheck:
        kind_value = _kind_value(kind)
        url = _context_url(context)
        with self._lock:
            result = self._evaluate(kind_value, url)
            self._audit(kind_value, url, result)
        if result.source == "bypass":
            logger.warning("permission %s for %s allowed by trust-mode bypass", kind_value, url)
        else:
            logger.info(
                "permission %s for %s -> %s (%s/%s)",
                kind_value,
                url,
                result.decision.value,
                result.source,
                result.reason,
            )
        return result

    def _evaluate(self, kind: str, url: str) -> PermissionCheck:
        if self.trust_mode:
            return PermissionCheck(PermissionDecision.ALLOWED, "trust_mode", "bypass")

        if kind in {k.value for k in READ_CLASS_KINDS}:
            return PermissionCheck(PermissionDecision.ALLOWED, "auto", "auto")

        rules, grants = self._load()
        rule = self._matching_rule(rules, kind, url)
        if rule is not None:
            if rule.effect == RuleEffect.DENY.value:
                return PermissionCheck(PermissionDecision.DENIED, "denied", "rule")
            if rule.effect == RuleEffect.ALWAYS.value:
                return PermissionCheck(PermissionDecision.ALLOWED, "always", "rule")
            if rule.effect == RuleEffect.ONCE.value and self._is_live(grants.get(grant_key(kind, url))):
                return PermissionCheck(PermissionDecision.ALLOWED, "once", "task_grant")

        try:
            reason = APPROVAL_REASONS[PermissionKind(kind)]
        except (KeyError, ValueError):
            reason = "unknown"
        return PermissionCheck(PermissionDecision.REQUIRES_APPROVAL, reason, "default")

    def rules(self) -> List[PermissionRule]:
        with self._lock:
            rules, _ = self._load()
        return rules

    def task_grants(self) -> Dict[str, TaskGrant]:
        with self._lock:
            _, grants = self._load()
        return grants

    # -- mutations ---------------------------------------------------

    @staticmethod
    def _replace_rule(rules: List[PermissionRule], kind: str, pattern: str, effect: RuleEffect) -> List[PermissionRule]:
        kept = [r for r in rules if not (r.kind == kind and r.pattern == pattern)]
        kept.append(PermissionRule(kind=kind, pattern=pattern, effect=effect.value))
        return kept

    def grant(
        self,
        kind: PermissionKind | str,
        context: Optional[Mapping[str, Any]] = None,
        mode: GrantMode | str = GrantMode.ONCE,
    ) -> None:
        kind_value = _kind_value(kind)
        url = _context_url(context)
        mode = GrantMode(mode)
        with self._lock:
            rules, grants = self._load()
            if mode is GrantMode.ALWAYS:
                rules = self._replace_rule(rules, kind_value, url, RuleEffect.ALWAYS)
            else:
                key = grant_key(kind_value, url)
                grants[key] = TaskGrant(key=key, granted_at=self._clock(), task_id=_context_task(context))
                rules = self._replace_rule(rules, kind_value, url, RuleEffect.ONCE)
            self._save(rules, grants)
        logger.info("granted %s for %s (%s)", kind_value, url, mode.value)

    def deny(self, kind: PermissionKind | str, context: Optional[Mapping[str, Any]] = None) -> None:
        kind_value = _kind_value(kind)
        url = _context_url(context)
        with self._lock:
            rules, grants = self._load()
            rules = self._replace_rule(rules, kind_value, url, RuleEffect.DENY)
            self._save(rules, grants)
        logger.info("denied %s for %s", kind_value, url)

    def revoke(self, kind: PermissionKind | str, context: Optional[Mapping[str, Any]] = None) -> None:
        kind_value = _kind_value(kind)
        url = _context_url(context)
        with self._lock:
            rules, grants = self._load()
            rules = [
                r for r in rules
                if not (r.kind == kind_value and r.pattern in {url, WILDCARD})
            ]
            grants.pop(grant_key(kind_value, url), None)
            grants.pop(grant_key(kind_value, WILDCARD), None)
            self._save(rules, grants)
        logger.info("revoked %s for %s", kind_value, url)

    def expire_task_grants(self, task_id: Optional[str] = None) -> int:
        """Drop grants past the retention window, plus every grant owned by task_id."""
        with self._lock:
            rules, grants = self._load()
            kept = {
                key: grant
                for key, grant in grants.items()
                if self._is_live(grant) and not (task_id and grant.task_id == task_id)
            }
            dropped = len(grants) - len(kept)
            if dropped:
                self._save(rules, kept)
        if dropped:
            logger.info("expired %d task grant(s)", dropped)
        return dropped
