from functools import partial

import pytest

from conftest import FakeClient, FakeEnvironment, fast_config, plan_json
from uwa import main as cli
from uwa.src.agent.forms import AUTO_FILL_KEY, PROFILE_KEY
from uwa.src.permissions.ledger import PermissionLedger
from uwa.src.store.kv_store import JsonFileStore
from uwa.src.utils.config import AppConfig, HostConfig, LLMConfig
from uwa.terminal import TerminalConsole

TYPE_EMAIL = {"type": "TYPE", "selector": "#email", "value": "typed@example.com"}


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    env = FakeEnvironment()

    def _client(config):
        return FakeClient([plan_json(TYPE_EMAIL, permissions=["FILL_FORM"]), plan_json()])

    config = AppConfig(llm=LLMConfig(api_key="test-key"), host=HostConfig(), agent=fast_config(state_dir=tmp_path))
    monkeypatch.setattr(cli, "CONFIG", config)
    monkeypatch.setattr(cli, "OpenAIPlanningClient", _client)
    monkeypatch.setattr(cli, "HostEnvironment", lambda host: env)
    monkeypatch.setattr(cli, "TerminalConsole", partial(TerminalConsole, reader=lambda prompt: "n"))
    return env, JsonFileStore(tmp_path)


def test_trust_flag_applies_to_one_run_only(cli_env):
    env, store = cli_env
    store.set(PROFILE_KEY, {"email": "profile@example.com"})

    assert cli.main(["fill the form", "--trust"]) == 0
    assert [a.value for a in env.runs] == ["profile@example.com"]
    assert store.get("uwa_permission_audit")[-1]["source"] == "bypass"
    assert PermissionLedger(store).trust_mode is False

    # Without the flag the next run asks again; the console answers "n".
    env.runs.clear()
    assert cli.main(["fill the form"]) == 1
    assert env.runs == []


def test_auto_fill_flag_is_not_stored(cli_env):
    env, store = cli_env
    store.set(PROFILE_KEY, {"email": "profile@example.com"})
    PermissionLedger(store).grant("FILL_FORM", {"url": env.location.url}, "always")

    assert cli.main(["fill the form", "--auto-fill"]) == 0
    assert [a.value for a in env.runs] == ["profile@example.com"]
    assert store.get(AUTO_FILL_KEY) is None


def test_trust_flag_is_not_stored_when_startup_fails(tmp_path, monkeypatch):
    config = AppConfig(llm=LLMConfig(api_key=None), host=HostConfig(), agent=fast_config(state_dir=tmp_path))
    monkeypatch.setattr(cli, "CONFIG", config)

    assert cli.main(["goal", "--trust"]) == 2
    assert PermissionLedger(JsonFileStore(tmp_path)).trust_mode is False
