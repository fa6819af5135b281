"""
Tests for environment configuration and JSON log formatting.
"""
from __future__ import annotations

import json
import logging
import sys

from teamroles.config import Settings
from teamroles.logging_config import JSONFormatter, configure_logging


def test_settings_from_env(monkeypatch):
    monkeypatch.delenv("ORACLE_API_KEY", raising=False)
    monkeypatch.setenv("OPENROUTER_API_KEY", "or-key")
    monkeypatch.setenv("MAX_RETRIES", "5")
    monkeypatch.setenv("GROUP_PAUSE", "0.1")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test")
    settings = Settings.from_env()
    assert settings.oracle_api_key == "or-key"
    assert settings.max_retries == 5
    assert settings.group_pause == 0.1
    assert settings.log_level == "DEBUG"
    assert settings.cors_origins == ["http://a.test", "http://b.test"]
    assert settings.roster_size == 10


def test_oracle_api_key_takes_precedence(monkeypatch):
    monkeypatch.setenv("ORACLE_API_KEY", "primary")
    monkeypatch.setenv("OPENAI_API_KEY", "fallback")
    assert Settings.from_env().oracle_api_key == "primary"


def test_with_overrides_returns_a_copy():
    base = Settings()
    tuned = base.with_overrides(max_concurrency=3)
    assert tuned.max_concurrency == 3
    assert base.max_concurrency == 10


def test_json_formatter_includes_context_fields():
    record = logging.LogRecord("teamroles.test", logging.WARNING, __file__, 1, "Scoring %s", ("r1",), None)
    record.roster_id = "r1"
    data = json.loads(JSONFormatter().format(record))
    assert data["level"] == "WARNING"
    assert data["message"] == "Scoring r1"
    assert data["roster_id"] == "r1"
    assert "session_id" not in data


def test_json_formatter_reports_exceptions():
    try:
        raise ValueError("boom")
    except ValueError:
        record = logging.LogRecord("teamroles", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
    data = json.loads(JSONFormatter().format(record))
    assert data["error"] == "boom"
    assert data["error_type"] == "ValueError"


def test_configure_logging_is_idempotent():
    logger = configure_logging("WARNING")
    configure_logging("WARNING")
    handlers = [h for h in logger.handlers if isinstance(h.formatter, JSONFormatter)]
    assert len(handlers) == 1
    assert logger.level == logging.WARNING
