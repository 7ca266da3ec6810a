"""Tests for environment-driven orchestration settings."""

import pytest
from app.core.config import OrchestrationSettings, get_settings, reset_settings_cache

_VARS = (
    "AGENT_DEFAULT_TIMEZONE",
    "AGENT_MAX_MESSAGE_LENGTH",
    "AGENT_DEFAULT_MAX_MESSAGES",
    "AGENT_NEGATIVE_THRESHOLD",
    "AGENT_TOP_TAGS",
)


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)
    reset_settings_cache()
    yield
    reset_settings_cache()


def test_defaults_without_environment():
    assert get_settings() == OrchestrationSettings()


def test_environment_overrides_after_reset(monkeypatch):
    assert get_settings().default_max_messages == 10

    monkeypatch.setenv("AGENT_DEFAULT_TIMEZONE", "Europe/Berlin")
    monkeypatch.setenv("AGENT_MAX_MESSAGE_LENGTH", "2000")
    monkeypatch.setenv("AGENT_DEFAULT_MAX_MESSAGES", "8")
    monkeypatch.setenv("AGENT_NEGATIVE_THRESHOLD", "-0.7")
    monkeypatch.setenv("AGENT_TOP_TAGS", "5")

    # Cached until reset.
    assert get_settings().default_max_messages == 10

    reset_settings_cache()
    settings = get_settings()

    assert settings == OrchestrationSettings(
        default_timezone="Europe/Berlin",
        max_message_length=2000,
        default_max_messages=8,
        negative_threshold=-0.7,
        top_tags=5,
    )
    assert get_settings() is settings
