import asyncio
import io

from conftest import FakeClient, plan_json, run
from uwa.src.agent.models import SessionEvent
from uwa.src.agent.session import SessionStatus
from uwa.terminal import TerminalConsole, format_event


class _Orchestrator:
    def __init__(self):
        self.calls = []
        self.listener = None

    def on_event(self, listener):
        self.listener = listener
        return lambda: None

    def approve(self, mode, request_id=None):
        self.calls.append(("approve", mode, request_id))

    def deny(self, request_id=None):
        self.calls.append(("deny", request_id))

    def approve_upgrade(self):
        self.calls.append(("approve_upgrade",))

    def deny_upgrade(self):
        self.calls.append(("deny_upgrade",))

    def select_forms(self, actions, request_id=None):
        self.calls.append(("select_forms", actions, request_id))


def _reader(answers):
    replies = iter(answers)
    return lambda prompt: next(replies)


def _console(answers):
    orchestrator = _Orchestrator()
    console = TerminalConsole(orchestrator, out=io.StringIO(), reader=_reader(answers))
    return console, orchestrator


def test_format_event_hides_results():
    event = SessionEvent(node="system", message="complete", data={"total_count": 1, "results": [{"x": 1}]})
    assert format_event(event) == '[system] complete {"total_count": 1}'


def test_permission_prompt_answers():
    console, orchestrator = _console(["y", "n", "n"])
    event = SessionEvent(node="permission", message="request", data={"permission": "FILL_FORM", "request_id": "r1"})

    async def scenario():
        await console._answer(event)
        await console._answer(event)

    run(scenario())
    assert orchestrator.calls == [("approve", "once", "r1"), ("deny", "r1")]


def test_upgrade_and_form_prompts():
    console, orchestrator = _console(["yes", "typed", "-"])

    async def scenario():
        await console._answer(SessionEvent(node="tier", message="upgrade_request", data={"required_tier": 3}))
        await console._answer(
            SessionEvent(
                node="agent",
                message="form_choices",
                data={
                    "request_id": "f1",
                    "actions": [
                        {"type": "TYPE", "selector": "#a", "value": "x"},
                        {"type": "TYPE", "selector": "#b", "value": "y"},
                    ],
                },
            )
        )

    run(scenario())
    assert orchestrator.calls[0] == ("approve_upgrade",)
    assert orchestrator.calls[1] == ("select_forms", [{"type": "TYPE", "selector": "#a", "value": "typed"}], "f1")


def test_console_resolves_requests_on_the_event_loop(make_agent):
    client = FakeClient([plan_json({"type": "CLICK", "selector": "#send"}, permissions=["FILL_FORM"]), plan_json()])
    agent = make_agent(client)
    out = io.StringIO()
    console = TerminalConsole(agent.orchestrator, out=out, reader=_reader(["y", "n"]))

    async def scenario():
        return await asyncio.wait_for(console.run("send"), timeout=5)

    # Debug mode raises on future resolution from a foreign thread.
    outcome = asyncio.run(scenario(), debug=True)

    assert outcome.status is SessionStatus.COMPLETED
    assert outcome.success_count == 1
    assert [r.effect for r in agent.ledger.rules()] == ["once"]
    assert "[permission] response" in out.getvalue()
