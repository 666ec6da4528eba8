"""Configuration boundary tests: streaming options and provider settings."""

from __future__ import annotations

import pytest

from relay.config import ProviderSettings, StreamingOptions
from relay.errors import ConfigurationError
from relay.retry import RetryPolicy

pytestmark = pytest.mark.unit


def test_defaults_match_documented_limits() -> None:
    options = StreamingOptions()
    assert options.max_conversation_turns == 5
    assert options.retry == RetryPolicy(max_attempts=3, initial_delay_s=2.0, backoff_multiplier=2.0)
    assert options.enable_performance_monitoring is True


def test_from_env_reads_relay_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RELAY_MAX_RETRIES", "5")
    monkeypatch.setenv("RELAY_INITIAL_RETRY_DELAY_SECONDS", "0.5")
    monkeypatch.setenv("RELAY_RETRY_BACKOFF_FACTOR", "3")
    monkeypatch.setenv("RELAY_MAX_CONVERSATION_TURNS", "2")
    monkeypatch.setenv("RELAY_ENABLE_PERFORMANCE_MONITORING", "false")

    options = StreamingOptions.from_env()

    assert options.retry.max_attempts == 5
    assert options.retry.initial_delay_s == 0.5
    assert options.retry.backoff_multiplier == 3.0
    assert options.max_conversation_turns == 2
    assert options.enable_performance_monitoring is False


def test_explicit_overrides_win_over_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RELAY_MAX_CONVERSATION_TURNS", "2")
    options = StreamingOptions.from_env(max_conversation_turns=4)
    assert options.max_conversation_turns == 4


def test_non_numeric_env_value_raises_clear_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RELAY_MAX_RETRIES", "lots")
    with pytest.raises(ConfigurationError, match="RELAY_MAX_RETRIES") as exc:
        StreamingOptions.from_env()
    assert exc.value.hint is not None


def test_invalid_retry_env_surfaces_as_configuration_error(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("RELAY_MAX_RETRIES", "0")
    with pytest.raises(ConfigurationError, match="max_attempts"):
        StreamingOptions.from_env()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_conversation_turns": 0},
        {"notification_batch_size": 0},
        {"registry_sweep_interval_s": -1.0},
    ],
)
def test_options_reject_invalid_values(kwargs: dict[str, float]) -> None:
    with pytest.raises(ConfigurationError):
        StreamingOptions(**kwargs)


def test_options_are_frozen() -> None:
    options = StreamingOptions()
    with pytest.raises(AttributeError):
        options.max_conversation_turns = 10  # type: ignore[misc]


def test_base_url_env_variable_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    settings = ProviderSettings()
    assert settings.base_url("grok") == "https://api.x.ai/v1"

    monkeypatch.setenv("RELAY_GROK_BASE_URL", "https://gateway.internal/grok")
    assert settings.base_url("grok") == "https://gateway.internal/grok"
    assert settings.base_url("unknown") is None


def test_provider_settings_redact_headers() -> None:
    settings = ProviderSettings(extra_headers={"X-Gateway-Token": "secret-token"})
    assert "secret-token" not in str(settings)
    assert "secret-token" not in repr(settings)
    assert "[REDACTED]" in repr(settings)


def test_provider_settings_reject_non_positive_timeout() -> None:
    with pytest.raises(ConfigurationError, match="timeout_s"):
        ProviderSettings(timeout_s=0)
