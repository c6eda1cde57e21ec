"""
Per-action retry and recovery.

One chain per plan index: the original action and every substituted
alternative share one attempt ceiling. The coordinator never raises; an
oracle failure while proposing simply ends the chain.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .adapter import AdapterOutcome
from .models import Action, ActionType, AttemptRecord, ExecutionResult, PageSnapshot
from .parsing import parse_alternative
from .prompts import RETRY_PROMPT

logger = logging.getLogger("uwa.retry")

ALTERNATIVE_TYPES = frozenset({ActionType.TYPE, ActionType.CLICK, ActionType.NAVIGATE})

Publisher = Callable[[str, str, Dict[str, Any]], Any]


class RetryCoordinator:
    def __init__(
        self,
        client: Any,
        *,
        gate: Any = None,
        max_attempts: int = 5,
        publish: Optional[Publisher] = None,
    ) -> None:
        self.client = client
        self.gate = gate
        self.max_attempts = max(1, int(max_attempts))
        self.publish = publish

    def _emit(self, message: str, data: Dict[str, Any]) -> None:
        if self.publish is not None:
            self.publish("retry", message, data)

    async def propose(
        self,
        failed_action: Action,
        error: str,
        goal: str,
        snapshot: Optional[PageSnapshot],
    ) -> Optional[Action]:
        """Exactly one substitute action, or None."""
        page = json.dumps(snapshot.for_prompt() if snapshot else {}, ensure_ascii=False)[:3000]
        content = (
            f"Failed action: {failed_action.model_dump_json(exclude_none=True)}\n"
            f"Error: {error}\n"
            f"Goal: {goal}\n"
            f"Page data: {page}"
        )
        try:
            raw = await self.client.complete(RETRY_PROMPT, content)
            alternative, reason = parse_alternative(raw)
        except Exception as exc:
            logger.warning("no alternative for %s: %s", failed_action.describe(), exc)
            return None

        if alternative is None:
            logger.info("oracle offered no alternative for %s (%s)", failed_action.describe(), reason)
            return None
        if alternative.type not in ALTERNATIVE_TYPES:
            logger.info("discarding %s alternative", alternative.type.value)
            return None
        if self.gate is not None:
            check = self.gate.check_action(alternative, {})
            if not check.allowed:
                logger.info("alternative %s blocked by tier: %s", alternative.describe(), check.reason)
                return None
        return alternative

    async def run_chain(
        self,
        index: int,
        action: Action,
        execute: Callable[[Action], Awaitable[AdapterOutcome]],
        *,
        goal: str,
        snapshot: Callable[[], Optional[PageSnapshot]],
        should_stop: Callable[[], bool] = lambda: False,
    ) -> ExecutionResult:
        attempts: List[AttemptRecord] = []
        current = action
        outcome: Optional[AdapterOutcome] = None
        error: Optional[str] = None

        while True:
            outcome = await execute(current)
            attempts.append(
                AttemptRecord(attempt=len(attempts) + 1, action=current, success=outcome.success, error=outcome.error)
            )
            if outcome.success:
                error = None
                break
            error = outcome.error or "Action failed"
            self._emit(
                "action_failed",
                {"index": index, "action": current.describe(), "error": error, "attempt": len(attempts)},
            )
            if len(attempts) >= self.max_attempts:
                logger.info("index %d exhausted %d attempts", index, len(attempts))
                break
            if should_stop():
                break
            alternative = await self.propose(current, error, goal, snapshot())
            if alternative is None or should_stop():
                break
            self._emit(
                "alternative",
                {"index": index, "from": current.describe(), "to": alternative.describe()},
            )
            current = alternative

        success = bool(outcome and outcome.success and error is None)
        return ExecutionResult(
            index=index,
            action=current,
            original_action=action,
            success=success,
            payload=dict(outcome.payload) if outcome and success else {},
            error=None if success else error,
            attempts=attempts,
        )
