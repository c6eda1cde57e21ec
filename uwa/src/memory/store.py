"""Workflow memory kept in the key-value store, ranked for prompt-time hints."""
from __future__ import annotations

import logging
import re
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import urlparse

from uwa.src.store.kv_store import KeyValueStore

logger = logging.getLogger("uwa.memory")

MEMORY_KEY = "uwa_memory"
RETENTION_SECONDS = 90 * 24 * 60 * 60
MAX_MEMORIES = 1000


def _tokenize(text: str) -> set[str]:
    return {tok for tok in re.findall(r"[A-Za-z0-9_]+", (text or "").lower()) if len(tok) > 3}


def _overlap_score(left: set[str], right: set[str]) -> float:
    if not left or not right:
        return 0.0
    return float(len(left & right)) / float(len(left | right) or 1)


def _domain(url: Optional[str]) -> str:
    if not url:
        return ""
    host = urlparse(url).hostname or ""
    return host[4:] if host.startswith("www.") else host


def is_similar_goal(left: str, right: str) -> bool:
    a = re.sub(r"[^\w\s]", "", (left or "").lower()).strip()
    b = re.sub(r"[^\w\s]", "", (right or "").lower()).strip()
    if not a or not b:
        return False
    if a in b or b in a:
        return True
    return len(_tokenize(a) & _tokenize(b)) >= 2


class WorkflowMemory:
    """
    Local memory of past workflows and preferences.

    Everything here is advisory: storage failures are logged and surface as
    empty results so the session never stops because of memory.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.enabled = bool(enabled)
        self.clock = clock
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Any]:
        data = self.store.get(MEMORY_KEY) or {}
        return {
            "memories": list(data.get("memories") or []),
            "profile": dict(data.get("profile") or {}),
            "version": data.get("version", 1),
        }

    def store_entry(self, memory: Dict[str, Any]) -> Dict[str, Any]:
        now = self.clock()
        entry = {
            **memory,
            "id": f"mem_{int(now * 1000)}_{uuid.uuid4().hex[:9]}",
            "timestamp": now,
            "expires": now + RETENTION_SECONDS,
        }
        with self._lock:
            data = self._load()
            memories = [m for m in data["memories"] if m.get("expires", 0) > now]
            memories.append(entry)
            if len(memories) > MAX_MEMORIES:
                memories.sort(key=lambda m: m.get("timestamp", 0), reverse=True)
                memories = memories[:MAX_MEMORIES]
            data["memories"] = memories
            self.store.set(MEMORY_KEY, data)
        return entry

    def _score(self, memory: Dict[str, Any], goal_tokens: set[str], domain: str) -> float:
        score = 1.3 * _overlap_score(goal_tokens, _tokenize(str(memory.get("goal") or "")))
        if domain and _domain(memory.get("url")) == domain:
            score += 1.0
        if memory.get("success"):
            score += 0.4
        return score

    def retrieve(self, goal: str, url: Optional[str] = None, limit: int = 10) -> Dict[str, Any]:
        empty: Dict[str, Any] = {"relevant_memories": [], "user_profile": {}, "suggestions": []}
        if not self.enabled:
            return empty
        try:
            data = self._load()
        except Exception:
            logger.exception("memory load failed")
            return empty

        now = self.clock()
        domain = _domain(url)
        relevant = [
            m
            for m in data["memories"]
            if m.get("expires", 0) > now
            and (
                (domain and _domain(m.get("url")) == domain)
                or (goal and m.get("goal") and is_similar_goal(goal, m["goal"]))
            )
        ]
        goal_tokens = _tokenize(goal)
        relevant.sort(key=lambda m: self._score(m, goal_tokens, domain), reverse=True)
        relevant = relevant[:limit]
        suggestions = [
            f"Previously completed '{m.get('goal')}' with: " + ", ".join(m.get("steps") or [])
            for m in relevant
            if m.get("type") == "workflow" and m.get("success") and m.get("steps")
        ]
        return {
            "relevant_memories": relevant,
            "user_profile": data["profile"],
            "suggestions": suggestions[:3],
        }

    def learn_workflow(
        self,
        *,
        goal: str,
        steps: Sequence[str],
        outcome: str,
        duration: float,
        success: bool,
        url: Optional[str],
    ) -> Optional[Dict[str, Any]]:
        if not self.enabled:
            return None
        try:
            return self.store_entry(
                {
                    "type": "workflow",
                    "goal": goal,
                    "steps": list(steps),
                    "outcome": outcome,
                    "duration": duration,
                    "success": success,
                    "url": url,
                }
            )
        except Exception:
            logger.exception("failed to learn workflow for %r", goal)
            return None

    def learn_preference(self, key: str, value: Any, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.store_entry(
            {"type": "preference", "key": key, "value": value, "context": context or {}, "confidence": 1.0}
        )

    def preferences(self) -> Dict[str, Dict[str, Any]]:
        aggregated: Dict[str, Dict[str, Any]] = {}
        for pref in self._load()["memories"]:
            if pref.get("type") != "preference":
                continue
            current = aggregated.get(pref["key"])
            if current is None:
                aggregated[pref["key"]] = {"value": pref.get("value"), "confidence": pref.get("confidence", 1.0), "count": 1}
            else:
                current["count"] += 1
                current["confidence"] = min(1.0, current["confidence"] + 0.1)
        return aggregated

    def update_profile(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            data = self._load()
            data["profile"] = {**data["profile"], **updates, "updated": self.clock()}
            self.store.set(MEMORY_KEY, data)
            return data["profile"]

    def clear_old(self, days: int = 30) -> int:
        cutoff = self.clock() - days * 24 * 60 * 60
        with self._lock:
            data = self._load()
            data["memories"] = [m for m in data["memories"] if m.get("timestamp", 0) > cutoff]
            self.store.set(MEMORY_KEY, data)
            return len(data["memories"])

    def clear_all(self) -> None:
        with self._lock:
            self.store.set(MEMORY_KEY, {"memories": [], "profile": {}, "version": 1})

    def all(self) -> List[Dict[str, Any]]:
        return self._load()["memories"]
