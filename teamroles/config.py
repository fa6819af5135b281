"""
Runtime configuration, read from the environment.

One Settings object is built per process (get_settings) and handed to the
container; tests build their own with keyword overrides.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any


def _env_str(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    return float(raw) if raw else default


def _env_api_key() -> str:
    # ORACLE_API_KEY wins; the other two are accepted for OpenRouter / OpenAI setups.
    for name in ("ORACLE_API_KEY", "OPENROUTER_API_KEY", "OPENAI_API_KEY"):
        value = os.environ.get(name, "").strip()
        if value:
            return value
    return ""


@dataclass(frozen=True)
class Settings:
    """All tunables for the pipeline, oracle transport and HTTP layer."""

    oracle_api_key: str = ""
    oracle_base_url: str = "https://openrouter.ai/api/v1"
    oracle_model: str = "anthropic/claude-3.5-sonnet"
    oracle_timeout: float = 60.0

    roster_size: int = 10
    max_tags: int = 10
    default_max_rosters: int = 10

    max_concurrency: int = 10
    max_retries: int = 3
    retry_base_delay: float = 1.0
    group_pause: float = 0.5
    repass_jitter: float = 2.0

    max_batch_rosters: int = 100
    max_bulk_submissions: int = 500

    log_level: str = "INFO"
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            oracle_api_key=_env_api_key(),
            oracle_base_url=_env_str("ORACLE_BASE_URL", cls.oracle_base_url),
            oracle_model=_env_str("ORACLE_MODEL", cls.oracle_model),
            oracle_timeout=_env_float("ORACLE_TIMEOUT", cls.oracle_timeout),
            roster_size=_env_int("ROSTER_SIZE", cls.roster_size),
            max_tags=_env_int("MAX_TAGS", cls.max_tags),
            default_max_rosters=_env_int("DEFAULT_MAX_ROSTERS", cls.default_max_rosters),
            max_concurrency=_env_int("MAX_CONCURRENCY", cls.max_concurrency),
            max_retries=_env_int("MAX_RETRIES", cls.max_retries),
            retry_base_delay=_env_float("RETRY_BASE_DELAY", cls.retry_base_delay),
            group_pause=_env_float("GROUP_PAUSE", cls.group_pause),
            repass_jitter=_env_float("REPASS_JITTER", cls.repass_jitter),
            max_batch_rosters=_env_int("MAX_BATCH_ROSTERS", cls.max_batch_rosters),
            max_bulk_submissions=_env_int("MAX_BULK_SUBMISSIONS", cls.max_bulk_submissions),
            log_level=_env_str("LOG_LEVEL", cls.log_level).upper(),
            cors_origins=[o.strip() for o in _env_str("CORS_ORIGINS", "*").split(",") if o.strip()],
        )

    def with_overrides(self, **overrides: Any) -> Settings:
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Process-wide settings, read from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
