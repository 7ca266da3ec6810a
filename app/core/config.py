"""Runtime configuration for the agent orchestration core."""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache


@dataclasses.dataclass(frozen=True)
class OrchestrationSettings:
    """Tunables read from the environment.

    ``negative_threshold`` is the sentiment score at or below which a
    conversation is considered high risk when the template has escalation
    enabled.
    """

    default_timezone: str = "America/New_York"
    max_message_length: int = 5000
    default_max_messages: int = 10
    negative_threshold: float = -0.5
    top_tags: int = 10


@lru_cache(maxsize=1)
def get_settings() -> OrchestrationSettings:
    """Load settings from the environment with defaults for development."""

    return OrchestrationSettings(
        default_timezone=os.getenv("AGENT_DEFAULT_TIMEZONE", "America/New_York"),
        max_message_length=int(os.getenv("AGENT_MAX_MESSAGE_LENGTH", "5000")),
        default_max_messages=int(os.getenv("AGENT_DEFAULT_MAX_MESSAGES", "10")),
        negative_threshold=float(os.getenv("AGENT_NEGATIVE_THRESHOLD", "-0.5")),
        top_tags=int(os.getenv("AGENT_TOP_TAGS", "10")),
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_settings.cache_clear()


__all__ = ["OrchestrationSettings", "get_settings", "reset_settings_cache"]
