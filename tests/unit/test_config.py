"""Unit tests for core configuration."""

import pytest
from pydantic import ValidationError

from httpflow.core.config import Settings, settings


def test_settings_initialization():
    """Test settings are initialized properly."""
    assert settings.APP_NAME == "httpflow"
    assert settings.MACHINE_ID
    assert settings.MAX_ATTEMPTS >= 1


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("HTTPFLOW_MAX_ATTEMPTS", "4")
    monkeypatch.setenv("HTTPFLOW_LOG_LEVEL", "debug")
    monkeypatch.setenv("HTTPFLOW_DISPATCH_TIMEOUT_S", "2.5")

    cfg = Settings()
    assert cfg.MAX_ATTEMPTS == 4
    assert cfg.LOG_LEVEL == "DEBUG"
    assert cfg.DISPATCH_TIMEOUT_S == 2.5


def test_settings_reject_invalid_values(monkeypatch):
    monkeypatch.setenv("HTTPFLOW_MAX_ATTEMPTS", "0")
    with pytest.raises(ValidationError):
        Settings()


def test_settings_reject_unknown_log_level():
    with pytest.raises(ValidationError):
        Settings(LOG_LEVEL="chatty")


def test_retry_config_from_settings():
    cfg = Settings(MAX_ATTEMPTS=3, RETRY_INITIAL_DELAY=0.1, RETRY_MAX_DELAY=1.0, RETRY_JITTER=False)
    retry = cfg.retry_config()
    assert retry.max_attempts == 3
    assert retry.initial_delay == 0.1
    assert retry.max_delay == 1.0
    assert retry.jitter is False
