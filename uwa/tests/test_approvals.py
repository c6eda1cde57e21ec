import asyncio

from uwa.src.agent.approvals import ApprovalBroker


def test_first_resolution_wins_and_stale_ids_are_ignored():
    async def scenario():
        broker = ApprovalBroker()
        first = broker.open("permission", {})
        assert broker.resolve(True, request_id=first.request_id)
        assert await broker.wait(first) is True

        second = broker.open("permission", {})
        assert broker.resolve(False, request_id=first.request_id) is False
        assert not second.future.done()
        broker.resolve(False)
        return await broker.wait(second)

    assert asyncio.run(scenario()) is False


def test_latched_answer_answers_next_request_of_that_kind():
    async def scenario():
        broker = ApprovalBroker(latch=True)
        assert broker.resolve(True, "always", kind="permission")
        form = broker.open("form_choices", {}, negative=None)
        assert not form.future.done()
        request = broker.open("permission", {})
        return await broker.wait(request)

    assert asyncio.run(scenario()) == "always"


def test_on_approve_runs_before_waiter_wakes():
    granted = []

    async def scenario():
        broker = ApprovalBroker()
        request = broker.open("permission", {}, on_approve=granted.append)
        broker.resolve(True, "once")
        assert granted == ["once"]
        return await broker.wait(request)

    assert asyncio.run(scenario()) == "once"


def test_cancel_all_resolves_negatively():
    async def scenario():
        broker = ApprovalBroker(latch=True)
        request = broker.open("form_choices", {}, negative=None)
        broker.cancel_all()
        return await broker.wait(request), broker.pending

    assert asyncio.run(scenario()) == (None, None)
