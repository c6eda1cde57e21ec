"""
Session orchestrator

Owns the single live session of the process and runs its bounded round
loop: observe -> plan -> authorize -> (navigate | execute with retry).
Operator signals (pause, resume, stop, approve, deny, form selection,
upgrade answers) only flip flags or resolve pending requests; the loop
samples them at the top of every round and before every action.
"""
from __future__ import annotations

import asyncio
import logging
import time
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from uwa.src.capabilities.tiers import CapabilityTierGate
from uwa.src.environment.base import ActionRunner, PageReader
from uwa.src.memory.store import WorkflowMemory
from uwa.src.permissions.ledger import PermissionLedger
from uwa.src.permissions.models import GrantMode, PermissionKind
from uwa.src.store.kv_store import KeyValueStore
from uwa.src.utils.config import CONFIG, AgentConfig

from .adapter import ActionExecutionAdapter, AdapterOutcome
from .approvals import ApprovalBroker
from .errors import (
    AgentError,
    EnvironmentUnavailableError,
    PermissionDeniedError,
    PlanParseError,
    SessionAlreadyRunningError,
)
from .events import EventBus, EventListener
from .forms import AUTO_FILL_KEY, PROFILE_KEY, inject_profile, replace_type_actions
from .models import Action, ActionType, Location, Plan
from .oracle import PlanningClient, PlanningOracle
from .retry import RetryCoordinator
from .session import (
    Session,
    SessionDelta,
    SessionHandle,
    SessionOutcome,
    SessionStatus,
)

logger = logging.getLogger("uwa.orchestrator")

PERMISSION_REQUEST = "permission"
FORM_REQUEST = "form_choices"


class SessionOrchestrator:
    def __init__(
        self,
        *,
        client: PlanningClient,
        reader: PageReader,
        runner: ActionRunner,
        ledger: PermissionLedger,
        gate: CapabilityTierGate,
        store: Optional[KeyValueStore] = None,
        memory: Optional[WorkflowMemory] = None,
        config: Optional[AgentConfig] = None,
        tools: Sequence[Dict[str, Any]] = (),
        auto_fill: Optional[bool] = None,
    ) -> None:
        self.config = config or CONFIG.agent
        self.client = client
        self.reader = reader
        self.ledger = ledger
        self.gate = gate
        self.store = store if store is not None else ledger.store
        self.memory = memory
        self.tools = tuple(dict(t) for t in tools)
        self._auto_fill = auto_fill

        self.events = EventBus()
        if gate.publish is None:
            gate.publish = self.events.emit
        self.oracle = PlanningOracle(client)
        self.adapter = ActionExecutionAdapter(reader, runner, self.config)
        self.retry = RetryCoordinator(
            client,
            gate=gate,
            max_attempts=self.config.max_attempts_per_action,
            publish=self.events.emit,
        )

        self._session: Optional[Session] = None
        self._task: Optional["asyncio.Task[SessionOutcome]"] = None
        self._sweeper: Optional["asyncio.Task[None]"] = None
        self._approvals = ApprovalBroker(latch=True)
        self._resume: Optional[asyncio.Event] = None

    # ------------------------------------------------------------------
    # Operator surface
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._session is not None

    def start(self, goal: str) -> SessionHandle:
        """
        Begin a session in the background and return its handle.

        Must be called from inside the event loop. Raises
        SessionAlreadyRunningError without touching the live session.
        """
        if self._session is not None:
            raise SessionAlreadyRunningError(
                f"session {self._session.session_id} is already running"
            )
        goal = (goal or "").strip()
        if not goal:
            raise ValueError("goal must not be empty")

        loop = asyncio.get_running_loop()
        session = Session(goal=goal)
        self._session = session
        self._approvals = ApprovalBroker(latch=True)
        self._resume = asyncio.Event()
        self._resume.set()
        self._task = loop.create_task(self._run(session), name=f"uwa-{session.session_id}")
        if self.config.grant_sweep_interval > 0:
            self._sweeper = loop.create_task(self._sweep_grants(), name="uwa-grant-sweeper")
        logger.info("session %s started: %s", session.session_id, goal)
        return SessionHandle(session.session_id, goal, self._task)

    def pause(self) -> bool:
        session = self._session
        if session is None or session.stop_requested:
            return False
        session.pause_requested = True
        if self._resume is not None:
            self._resume.clear()
        self.events.emit("system", "pause_requested", {"session_id": session.session_id})
        return True

    def resume(self) -> bool:
        session = self._session
        if session is None:
            return False
        session.pause_requested = False
        if self._resume is not None:
            self._resume.set()
        return True

    def stop(self) -> bool:
        """Latch the stop flag and release every wait the loop may be parked on."""
        session = self._session
        if session is None:
            return False
        session.stop_requested = True
        session.pause_requested = False
        if self._resume is not None:
            self._resume.set()
        self._approvals.cancel_all()
        self.gate.cancel_pending()
        self.events.emit("system", "stop_requested", {"session_id": session.session_id})
        return True

    def approve(self, mode: GrantMode | str = GrantMode.ONCE, request_id: Optional[str] = None) -> bool:
        if self._session is None:
            return False
        return self._approvals.resolve(
            True, GrantMode(mode), kind=PERMISSION_REQUEST, request_id=request_id
        )

    def deny(self, request_id: Optional[str] = None) -> bool:
        if self._session is None:
            return False
        return self._approvals.resolve(False, kind=PERMISSION_REQUEST, request_id=request_id)

    def select_forms(self, actions: Optional[Iterable[Any]], request_id: Optional[str] = None) -> bool:
        """Operator's TYPE selection; None or [] drops every TYPE action of the round."""
        if self._session is None:
            return False
        selected = [a if isinstance(a, Action) else Action.model_validate(a) for a in (actions or [])]
        return self._approvals.resolve(True, selected, kind=FORM_REQUEST, request_id=request_id)

    def approve_upgrade(self) -> bool:
        return self.gate.respond_upgrade(True)

    def deny_upgrade(self) -> bool:
        return self.gate.respond_upgrade(False)

    def on_event(self, listener: EventListener) -> Callable[[], None]:
        return self.events.subscribe(listener)

    def state(self) -> Dict[str, Any]:
        session = self._session
        if session is None:
            return {"status": SessionStatus.IDLE.value}
        pending = self._approvals.pending
        return {
            "status": session.status.value,
            "session_id": session.session_id,
            "goal": session.goal,
            "round": session.round_index,
            "results": len(session.results),
            "url": session.location.url if session.location else None,
            "pending": pending.kind if pending else None,
            "tier": self.gate.level,
        }

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run(self, session: Session) -> SessionOutcome:
        try:
            await self._prepare(session)
            await self._loop(session)
        except asyncio.CancelledError:
            session.stop_requested = True
            self._finalize(session)
            raise
        except AgentError as exc:
            session.error = str(exc)
        except Exception as exc:
            logger.exception("session %s crashed", session.session_id)
            session.error = f"Unexpected error: {exc}"
        return self._finalize(session)

    async def _checkpoint(self, session: Session) -> bool:
        """False once stop is observed. Parks here while paused."""
        while session.pause_requested and not session.stop_requested:
            if session.status is not SessionStatus.PAUSED:
                session.status = SessionStatus.PAUSED
                self.events.emit("system", "paused", {"round": session.round_index})
            if self._resume is None:
                raise AgentError("pause requested without a live session")
            await self._resume.wait()
        if session.stop_requested:
            return False
        if session.status is SessionStatus.PAUSED:
            self.events.emit("system", "resumed", {"round": session.round_index})
        session.status = SessionStatus.RUNNING
        return True

    async def _prepare(self, session: Session) -> None:
        self.events.emit("agent", "active", {"session_id": session.session_id, "goal": session.goal})
        session.location = await self._locate()

        recommendation = await self.gate.recommend(session.goal, self.client)
        self.events.emit(
            "tier",
            "recommended",
            {"tier": recommendation.recommended_tier, "reason": recommendation.reason, "risks": recommendation.risks},
        )
        if self.gate.level < recommendation.recommended_tier and not session.stop_requested:
            upgraded = await self.gate.request_upgrade(recommendation.recommended_tier, recommendation.reason)
            if not upgraded:
                self.events.emit("tier", "upgrade_denied", {"message": "continuing with limited capabilities"})

        profile = dict(self.store.get(PROFILE_KEY) or {})
        if self.memory is not None and self.memory.enabled:
            self.events.emit("memory", "loading", {})
            recalled = self.memory.retrieve(session.goal, session.location.url)
            session.memories = tuple(recalled["relevant_memories"])
            session.suggestions = tuple(recalled["suggestions"])
            profile = {**profile, **recalled["user_profile"]}
            if session.suggestions:
                self.events.emit("memory", "suggestions", {"suggestions": list(session.suggestions)})
        session.profile = profile

    async def _loop(self, session: Session) -> None:
        while session.round_index < self.config.max_rounds:
            if not await self._checkpoint(session):
                return
            finished = await self._round(session)
            session.apply(SessionDelta(advance_round=True))
            if finished:
                return
        self.events.emit("system", "round_budget_exhausted", {"rounds": session.round_index})

    async def _round(self, session: Session) -> bool:
        """One round. True when the session should end normally."""
        await self._observe(session)
        if not await self._checkpoint(session):
            return True

        plan = await self._plan(session)
        if plan.is_empty:
            self.events.emit("planner", "goal_satisfied", {"round": session.round_index + 1})
            return True
        if not await self._checkpoint(session):
            return True

        plan = await self._authorize_tiers(session, plan)
        if session.stop_requested:
            return True
        await self._authorize_permissions(session, plan)
        if session.stop_requested:
            return True

        if plan.is_empty:
            self.events.emit("planner", "no_authorized_actions", {"round": session.round_index + 1})
            return True

        if plan.is_pure_navigation:
            await self._navigate(session, plan.actions)
            return False

        actions = await self._fill_forms(session, list(plan.actions))
        await self._execute(session, actions)
        return False

    # -- observe ---------------------------------------------------------

    async def _locate(self) -> Location:
        location = await self.reader.current_location()
        if location is None:
            raise EnvironmentUnavailableError("No active tab")
        return location

    async def _observe(self, session: Session) -> None:
        attempts = max(1, self.config.snapshot_attempts)
        last_error: Optional[BaseException] = None
        for attempt in range(1, attempts + 1):
            try:
                location = await self.reader.current_location()
                snapshot = await self.reader.snapshot(location) if location is not None else None
            except Exception as exc:
                last_error = exc
            else:
                if location is None or snapshot is None:
                    raise EnvironmentUnavailableError("No active tab")
                session.apply(SessionDelta(location=location, snapshot=snapshot))
                self.events.emit("reader", "page_extracted", {"url": location.url, **snapshot.counts()})
                return
            logger.warning("snapshot attempt %d/%d failed: %s", attempt, attempts, last_error)
            if attempt < attempts:
                await asyncio.sleep(self.config.snapshot_retry_delay)
        raise EnvironmentUnavailableError(f"Page snapshot unreachable: {last_error}")

    # -- plan ------------------------------------------------------------

    async def _plan(self, session: Session) -> Plan:
        self.events.emit("planner", "planning", {"round": session.round_index + 1})
        try:
            plan = await self.oracle.plan(session.round_context(self.tools))
        except PlanParseError:
            raise
        except Exception as exc:
            raise AgentError(f"Planning oracle failed: {exc}") from exc
        self.events.emit(
            "planner",
            "plan",
            {
                "actions": [a.model_dump(mode="json", exclude_none=True) for a in plan.actions],
                "required_permissions": [p.value for p in plan.required_permissions],
            },
        )
        return plan

    # -- authorize -------------------------------------------------------

    async def _authorize_tiers(self, session: Session, plan: Plan) -> Plan:
        context = {"url": session.location.url if session.location else ""}
        kept: List[Action] = []
        for action in plan.actions:
            check = self.gate.check_action(action, context)
            if not check.allowed and check.required_tier is not None:
                self.events.emit(
                    "tier",
                    "action_blocked",
                    {"action": action.type.value, "reason": check.reason, "required_tier": check.required_tier},
                )
                if await self.gate.request_upgrade(check.required_tier, check.reason):
                    check = self.gate.check_action(action, context)
                if session.stop_requested:
                    return plan.with_actions(kept)
            if check.allowed:
                kept.append(action)
            else:
                self.events.emit("tier", "action_dropped", {"action": action.describe(), "reason": check.reason})
        return plan.with_actions(kept)

    async def _authorize_permissions(self, session: Session, plan: Plan) -> None:
        context = {
            "url": session.location.url if session.location else "",
            "task_id": session.task_id,
        }
        for kind in plan.required_permissions:
            check = self.ledger.check(kind, context)
            if check.allowed:
                continue
            if check.denied:
                raise PermissionDeniedError(kind.value, check.reason)
            approved = await self._request_permission(session, kind, context, check.reason)
            if session.stop_requested:
                return
            if not approved:
                raise PermissionDeniedError(kind.value, "operator denied")

    async def _request_permission(
        self,
        session: Session,
        kind: PermissionKind,
        context: Dict[str, Any],
        reason: str,
    ) -> bool:
        request = self._approvals.open(
            PERMISSION_REQUEST,
            {"permission": kind.value, "url": context["url"], "reason": reason},
            on_approve=lambda mode: self.ledger.grant(kind, context, mode or GrantMode.ONCE),
        )
        self.events.emit(
            "permission",
            "request",
            {"request_id": request.request_id, "permission": kind.value, "url": context["url"], "reason": reason},
        )
        try:
            approved = bool(await self._approvals.wait(request))
        except Exception as exc:
            logger.error("permission grant for %s failed: %s", kind.value, exc)
            approved = False
        self.events.emit("permission", "response", {"permission": kind.value, "approved": approved})
        return approved

    # -- navigate --------------------------------------------------------

    async def _navigate(self, session: Session, actions: Sequence[Action]) -> None:
        for action in actions:
            if not await self._checkpoint(session):
                return
            self.events.emit("navigator", "navigating", {"url": action.url})
            outcome = await self._execute_action(session, action)
            if not outcome.success:
                self.events.emit("navigator", "failed", {"url": action.url, "error": outcome.error})
                return
            self.events.emit("navigator", "navigated", dict(outcome.payload))

    # -- forms -----------------------------------------------------------

    def _auto_fill_enabled(self) -> bool:
        if self._auto_fill is not None:
            return self._auto_fill
        return bool(self.store.get(AUTO_FILL_KEY, False))

    async def _fill_forms(self, session: Session, actions: List[Action]) -> List[Action]:
        type_actions = [a for a in actions if a.type is ActionType.TYPE]
        if not type_actions:
            return actions
        if self.ledger.trust_mode or self._auto_fill_enabled():
            return inject_profile(actions, session.profile)

        request = self._approvals.open(FORM_REQUEST, {"count": len(type_actions)}, negative=None)
        self.events.emit(
            "agent",
            "form_choices",
            {
                "request_id": request.request_id,
                "actions": [a.model_dump(mode="json", exclude_none=True) for a in type_actions],
                "forms": session.snapshot.forms if session.snapshot else [],
            },
        )
        choice = await self._approvals.wait(request)
        selected = inject_profile(choice or [], session.profile)
        return replace_type_actions(actions, selected)

    # -- execute ---------------------------------------------------------

    async def _execute_action(self, session: Session, action: Action) -> AdapterOutcome:
        if session.location is None:
            raise EnvironmentUnavailableError("No active tab")
        outcome = await self.adapter.execute(action, session.location)
        if outcome.location is not None or outcome.snapshot is not None:
            session.apply(SessionDelta(location=outcome.location, snapshot=outcome.snapshot))
        return outcome

    async def _execute(self, session: Session, actions: Sequence[Action]) -> None:
        self.events.emit("executor", "executing", {"count": len(actions)})
        for index, action in enumerate(actions):
            if not await self._checkpoint(session):
                return
            self.events.emit("executor", "action", {"index": index, "action": action.model_dump(mode="json", exclude_none=True)})
            result = await self.retry.run_chain(
                index,
                action,
                partial(self._execute_action, session),
                goal=session.goal,
                snapshot=lambda: session.snapshot,
                should_stop=lambda: session.stop_requested,
            )
            session.apply(SessionDelta(results=(result,)))
            self.events.emit(
                "executor",
                "done" if result.success else "failed",
                {"index": index, "action": result.action.describe(), "error": result.error, "attempts": len(result.attempts)},
            )

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _finalize(self, session: Session) -> SessionOutcome:
        if session.stop_requested or session.error:
            session.status = SessionStatus.STOPPED
        else:
            session.status = SessionStatus.COMPLETED
        outcome = SessionOutcome(
            session_id=session.session_id,
            status=session.status,
            results=list(session.results),
            rounds=session.round_index,
            error=session.error,
        )

        if self.memory is not None and not session.stop_requested and session.error is None:
            self.memory.learn_workflow(
                goal=session.goal,
                steps=[r.action.describe() for r in session.results],
                outcome="success" if all(r.success for r in session.results) else "partial",
                duration=time.time() - session.started_at,
                success=all(r.success for r in session.results),
                url=session.location.url if session.location else None,
            )
        try:
            self.gate.log_usage()
        except Exception:
            logger.exception("failed to record tier usage")
        try:
            self.ledger.expire_task_grants(session.task_id)
        except Exception:
            logger.exception("failed to release task grants for %s", session.session_id)

        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None
        self._approvals.cancel_all()
        self.gate.cancel_pending()
        self._session = None
        self._resume = None

        if session.error:
            logger.error("session %s ended with error: %s", session.session_id, session.error)
            self.events.emit("system", "error", {"session_id": session.session_id, "error": session.error})
        else:
            logger.info(
                "session %s %s: %d/%d actions succeeded",
                session.session_id,
                session.status.value,
                outcome.success_count,
                outcome.total_count,
            )
            self.events.emit(
                "system",
                "complete",
                {
                    "session_id": session.session_id,
                    "status": session.status.value,
                    "success_count": outcome.success_count,
                    "total_count": outcome.total_count,
                    "rounds": outcome.rounds,
                    "results": [r.model_dump(mode="json") for r in session.results],
                },
            )
        return outcome

    async def _sweep_grants(self) -> None:
        interval = self.config.grant_sweep_interval
        while True:
            await asyncio.sleep(interval)
            try:
                await asyncio.to_thread(self.ledger.expire_task_grants)
            except Exception:
                logger.exception("task grant sweep failed")
