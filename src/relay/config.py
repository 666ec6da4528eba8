"""Configuration: frozen streaming options and provider endpoints."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Any

from dotenv import load_dotenv

from relay.errors import ConfigurationError
from relay.retry import RetryPolicy

load_dotenv()

_ENV_PREFIX = "RELAY_"


def _env_float(name: str) -> float | None:
    raw = os.environ.get(_ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"{_ENV_PREFIX}{name} must be a number, got {raw!r}",
            hint="Unset the variable to use the default.",
        ) from e


def _env_bool(name: str) -> bool | None:
    raw = os.environ.get(_ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return None
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class StreamingOptions:
    """Immutable knobs for streaming, retries and background sweeps.

    Example:
        options = StreamingOptions(max_conversation_turns=3)
        # or, honouring RELAY_* variables from the environment / .env
        options = StreamingOptions.from_env()
    """

    retry: RetryPolicy = field(default_factory=RetryPolicy)
    #: Safety valve against runaway tool-calling loops.
    max_conversation_turns: int = 5
    notification_batch_size: int = 10
    notification_batch_interval_s: float = 0.05
    enable_performance_monitoring: bool = True
    registry_sweep_interval_s: float = 300.0
    metrics_summary_interval_s: float = 60.0
    stale_metrics_after_s: float = 120.0

    def __post_init__(self) -> None:
        """Validate numeric fields early for clear errors."""
        if self.max_conversation_turns < 1:
            raise ConfigurationError(
                f"max_conversation_turns must be ≥ 1, got {self.max_conversation_turns}",
                hint="Each tool round trip uses one turn.",
            )
        if self.notification_batch_size < 1:
            raise ConfigurationError(
                f"notification_batch_size must be ≥ 1, got {self.notification_batch_size}",
                hint="Use 1 to publish every chunk immediately.",
            )
        for name in (
            "notification_batch_interval_s",
            "registry_sweep_interval_s",
            "metrics_summary_interval_s",
            "stale_metrics_after_s",
        ):
            value = getattr(self, name)
            if value < 0:
                raise ConfigurationError(f"{name} must be ≥ 0, got {value}")

    @classmethod
    def from_env(cls, **overrides: Any) -> StreamingOptions:
        """Build options from ``RELAY_*`` environment variables.

        Explicit keyword overrides win over the environment.
        """
        retry_kwargs: dict[str, Any] = {}
        max_retries = _env_float("MAX_RETRIES")
        if max_retries is not None:
            retry_kwargs["max_attempts"] = int(max_retries)
        initial = _env_float("INITIAL_RETRY_DELAY_SECONDS")
        if initial is not None:
            retry_kwargs["initial_delay_s"] = initial
        factor = _env_float("RETRY_BACKOFF_FACTOR")
        if factor is not None:
            retry_kwargs["backoff_multiplier"] = factor

        kwargs: dict[str, Any] = {}
        if retry_kwargs:
            try:
                kwargs["retry"] = RetryPolicy(**retry_kwargs)
            except ValueError as e:
                raise ConfigurationError(str(e)) from e
        turns = _env_float("MAX_CONVERSATION_TURNS")
        if turns is not None:
            kwargs["max_conversation_turns"] = int(turns)
        batch = _env_float("NOTIFICATION_BATCH_SIZE")
        if batch is not None:
            kwargs["notification_batch_size"] = int(batch)
        monitoring = _env_bool("ENABLE_PERFORMANCE_MONITORING")
        if monitoring is not None:
            kwargs["enable_performance_monitoring"] = monitoring

        kwargs.update(overrides)
        return cls(**kwargs)


# OpenAI-compatible chat endpoints.
_DEFAULT_BASE_URLS: dict[str, str] = {
    "deepseek": "https://api.deepseek.com/v1",
    "grok": "https://api.x.ai/v1",
    "qwen": "https://dashscope-intl.aliyuncs.com/compatible-mode/v1",
    "imagen": "https://generativelanguage.googleapis.com/v1beta/models",
    "aimlflux": "https://api.aimlapi.com/v1/images/generations",
}


@dataclass(frozen=True)
class ProviderSettings:
    """Endpoints and transport settings for provider clients.

    API keys are not stored here: they come from the key manager per attempt.
    """

    base_urls: dict[str, str] = field(default_factory=lambda: dict(_DEFAULT_BASE_URLS))
    timeout_s: float = 120.0
    #: Extra headers sent by the image client (e.g. a gateway token).
    extra_headers: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate transport settings."""
        if self.timeout_s <= 0:
            raise ConfigurationError(
                f"timeout_s must be > 0, got {self.timeout_s}",
                hint="Streaming responses can be long; 120s is a sane default.",
            )

    def base_url(self, provider: str) -> str | None:
        """Return the endpoint for *provider*; ``RELAY_<NAME>_BASE_URL`` wins."""
        return os.environ.get(
            f"{_ENV_PREFIX}{provider.upper()}_BASE_URL"
        ) or self.base_urls.get(provider)

    def __str__(self) -> str:
        """Return a representation with header values redacted."""
        headers = {k: "[REDACTED]" for k in self.extra_headers}
        return (
            f"ProviderSettings(base_urls={self.base_urls!r}, "
            f"timeout_s={self.timeout_s!r}, extra_headers={headers!r})"
        )

    __repr__ = __str__
