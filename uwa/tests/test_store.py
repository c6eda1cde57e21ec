from uwa.src.store.kv_store import InMemoryStore, JsonFileStore


def test_json_store_round_trip(tmp_path):
    store = JsonFileStore(tmp_path / "state")
    assert store.get("missing", 7) == 7
    store.set("uwa_capability_tier", 2)
    store.set("uwa_permissions", {"rules": [], "task_grants": {}})

    reopened = JsonFileStore(tmp_path / "state")
    assert reopened.get("uwa_capability_tier") == 2
    assert reopened.get("uwa_permissions") == {"rules": [], "task_grants": {}}


def test_json_store_recovers_from_corrupt_file(tmp_path):
    store = JsonFileStore(tmp_path)
    store.path.write_text("{not json", encoding="utf-8")
    assert store.get("anything") is None
    store.set("k", "v")
    assert store.get("k") == "v"


def test_in_memory_store_copies_values():
    store = InMemoryStore()
    value = {"a": [1]}
    store.set("k", value)
    value["a"].append(2)
    assert store.get("k") == {"a": [1]}
