"""Configuration helpers for UWA services."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class LLMConfig:
    """Settings for the planning oracle."""

    api_key: Optional[str] = os.getenv("OPENAI_API_KEY")
    base_url: Optional[str] = os.getenv("UWA_LLM_API_URL")
    model: str = os.getenv("UWA_LLM_MODEL", "gpt-4o-mini")
    temperature: float = _env_float("UWA_LLM_TEMPERATURE", 0.3)
    max_tokens: int = _env_int("UWA_LLM_MAX_TOKENS", 4096)
    timeout: float = _env_float("UWA_LLM_TIMEOUT", 60.0)


@dataclass(slots=True)
class HostConfig:
    """Connection details for the Playwright environment host."""

    host_url: str = os.getenv("UWA_HOST_URL", "http://localhost:8001")
    request_timeout: int = _env_int("UWA_HOST_TIMEOUT", 45)
    session_id: str = os.getenv("UWA_HOST_SESSION", "default")


@dataclass(slots=True)
class AgentConfig:
    """Loop budgets and timing for the session orchestrator."""

    max_rounds: int = _env_int("UWA_MAX_ROUNDS", 5)
    max_attempts_per_action: int = _env_int("UWA_MAX_ATTEMPTS", 5)
    snapshot_attempts: int = 3
    snapshot_retry_delay: float = 1.0
    navigation_settle_seconds: float = _env_float("UWA_NAV_SETTLE", 1.0)
    navigation_poll_interval: float = 0.5
    navigation_poll_attempts: int = 10
    grant_retention_seconds: float = 3600.0
    grant_sweep_interval: float = _env_float("UWA_GRANT_SWEEP_INTERVAL", 300.0)
    default_tier: int = _env_int("UWA_DEFAULT_TIER", 3)
    memory_enabled: bool = _env_bool("UWA_MEMORY_ENABLED", True)
    state_dir: Path = Path(os.getenv("UWA_STATE_DIR") or (Path.home() / ".uwa"))


@dataclass(slots=True)
class AppConfig:
    """Aggregated configuration for the agent."""

    llm: LLMConfig = field(default_factory=LLMConfig)
    host: HostConfig = field(default_factory=HostConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)


CONFIG = AppConfig()
