from uwa.src.memory import store as memory_module
from uwa.src.memory.store import RETENTION_SECONDS, WorkflowMemory, is_similar_goal
from uwa.src.store.kv_store import InMemoryStore


class _Clock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def _learn(memory, goal, url, success=True):
    return memory.learn_workflow(
        goal=goal, steps=["CLICK #go"], outcome="success", duration=1.0, success=success, url=url
    )


def test_similar_goals():
    assert is_similar_goal("Book a flight to Boston", "book flight to boston tomorrow")
    assert is_similar_goal("search shoes", "search shoes")
    assert not is_similar_goal("order pizza", "renew passport")


def test_retrieve_ranks_same_domain_and_goal():
    memory = WorkflowMemory(InMemoryStore(), clock=_Clock())
    _learn(memory, "renew passport online", "https://gov.example/renew")
    _learn(memory, "search running shoes size", "https://www.shop.example/")
    _learn(memory, "unrelated thing", "https://elsewhere.example/")

    recalled = memory.retrieve("search running shoes", "https://shop.example/catalog")

    goals = [m["goal"] for m in recalled["relevant_memories"]]
    assert goals == ["search running shoes size"]
    assert recalled["suggestions"] == ["Previously completed 'search running shoes size' with: CLICK #go"]


def test_expired_memories_are_not_recalled():
    clock = _Clock()
    memory = WorkflowMemory(InMemoryStore(), clock=clock)
    _learn(memory, "search running shoes", "https://shop.example/")
    clock.now += RETENTION_SECONDS + 1
    assert memory.retrieve("search running shoes", "https://shop.example/")["relevant_memories"] == []


def test_memory_is_capped(monkeypatch):
    monkeypatch.setattr(memory_module, "MAX_MEMORIES", 3)
    clock = _Clock()
    memory = WorkflowMemory(InMemoryStore(), clock=clock)
    for i in range(5):
        clock.now += 1
        _learn(memory, f"goal {i}", None)
    assert [m["goal"] for m in memory.all()] == ["goal 4", "goal 3", "goal 2"]


def test_disabled_memory_is_inert():
    memory = WorkflowMemory(InMemoryStore(), enabled=False)
    assert _learn(memory, "anything", None) is None
    assert memory.retrieve("anything")["relevant_memories"] == []


def test_preferences_and_profile():
    memory = WorkflowMemory(InMemoryStore(), clock=_Clock())
    memory.learn_preference("budget", "under 300")
    memory.learn_preference("budget", "under 300")
    assert memory.preferences()["budget"]["count"] == 2

    memory.update_profile({"email": "me@example.com"})
    assert memory.retrieve("x")["user_profile"]["email"] == "me@example.com"
