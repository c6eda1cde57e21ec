"""Utility exports for UWA."""
from uwa.src.utils.config import CONFIG, AgentConfig, AppConfig, HostConfig, LLMConfig

__all__ = [
    "CONFIG",
    "AgentConfig",
    "AppConfig",
    "HostConfig",
    "LLMConfig",
]
