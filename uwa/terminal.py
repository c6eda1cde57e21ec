"""Terminal operator console: prints the event stream and answers prompts from stdin."""
from __future__ import annotations

import asyncio
import json
import sys
from typing import Any, Callable, Optional, TextIO

from uwa.src.agent.models import SessionEvent
from uwa.src.agent.orchestrator import SessionOrchestrator
from uwa.src.agent.session import SessionOutcome

PROMPT_EVENTS = {
    ("permission", "request"),
    ("agent", "form_choices"),
    ("tier", "upgrade_request"),
}


def format_event(event: SessionEvent) -> str:
    data = {k: v for k, v in event.data.items() if k != "results"}
    detail = f" {json.dumps(data, ensure_ascii=False, default=str)}" if data else ""
    return f"[{event.node}] {event.message}{detail}"


class TerminalConsole:
    """
    Bridges one orchestrator to a terminal. Listener callbacks only enqueue;
    stdin reads run on a worker thread so the event loop never blocks on them.
    """

    def __init__(
        self,
        orchestrator: SessionOrchestrator,
        *,
        out: TextIO = sys.stdout,
        reader: Callable[[str], str] = input,
    ) -> None:
        self.orchestrator = orchestrator
        self.out = out
        self.reader = reader
        self._prompts: "asyncio.Queue[Optional[SessionEvent]]" = asyncio.Queue()
        self._unsubscribe = orchestrator.on_event(self._on_event)

    def _on_event(self, event: SessionEvent) -> None:
        print(format_event(event), file=self.out, flush=True)
        if (event.node, event.message) in PROMPT_EVENTS:
            self._prompts.put_nowait(event)

    async def _ask(self, question: str) -> str:
        return await asyncio.to_thread(self.reader, question)

    async def _ask_yes_no(self, question: str) -> bool:
        answer = (await self._ask(f"{question} [y/N] ")).strip().lower()
        return answer in {"y", "yes"}

    async def _answer(self, event: SessionEvent) -> None:
        # Only stdin reads leave the loop; resolutions stay on it.
        data = event.data
        if event.message == "request":
            question = f"Allow {data.get('permission')} on {data.get('url')}?"
            if not await self._ask_yes_no(question):
                self.orchestrator.deny(request_id=data.get("request_id"))
                return
            mode = "always" if await self._ask_yes_no("Remember for this site?") else "once"
            self.orchestrator.approve(mode, request_id=data.get("request_id"))
        elif event.message == "upgrade_request":
            question = f"Upgrade capability tier {data.get('current_tier')} -> {data.get('required_tier')} ({data.get('reason')})?"
            if await self._ask_yes_no(question):
                self.orchestrator.approve_upgrade()
            else:
                self.orchestrator.deny_upgrade()
        elif event.message == "form_choices":
            actions = list(data.get("actions") or [])
            selected: list[dict[str, Any]] = []
            for action in actions:
                value = await self._ask(f"Value for {action.get('selector')} [{action.get('value') or ''}] (- to skip): ")
                if value.strip() == "-":
                    continue
                selected.append({**action, "value": value or action.get("value") or ""})
            self.orchestrator.select_forms(selected, request_id=data.get("request_id"))

    async def _serve_prompts(self) -> None:
        while True:
            event = await self._prompts.get()
            if event is None:
                return
            await self._answer(event)

    async def run(self, goal: str) -> SessionOutcome:
        handle = self.orchestrator.start(goal)
        prompts = asyncio.create_task(self._serve_prompts())
        try:
            return await handle.wait()
        finally:
            self._prompts.put_nowait(None)
            prompts.cancel()
            self._unsubscribe()


def print_summary(outcome: SessionOutcome, out: TextIO = sys.stdout) -> None:
    print("", file=out)
    print(f"Session {outcome.session_id}: {outcome.status.value}", file=out)
    print(f"  rounds:  {outcome.rounds}", file=out)
    print(f"  actions: {outcome.success_count}/{outcome.total_count} succeeded", file=out)
    for result in outcome.results:
        mark = "ok" if result.success else "FAIL"
        line = f"  [{mark}] #{result.index} {result.action.describe()}"
        if result.error:
            line += f" ({result.error})"
        print(line, file=out)
    if outcome.error:
        print(f"  error:   {outcome.error}", file=out)
