"""Tests for environment-driven runtime settings."""

import logging

import pytest

from screenflow.config import (
    RuntimeSettings,
    get_fetch_timeout,
    get_log_level,
    get_max_action_depth,
)

ENV_VARS = (
    "SCREENFLOW_MAX_ACTION_DEPTH",
    "SCREENFLOW_DATE_FORMAT",
    "SCREENFLOW_LOG_LEVEL",
    "SCREENFLOW_FETCH_TIMEOUT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = RuntimeSettings.from_env()
    assert settings == RuntimeSettings()
    assert settings.max_action_depth == 32
    assert settings.date_format == "dd MMM yyyy"
    assert settings.log_level == "INFO"
    assert settings.fetch_timeout == 30.0


@pytest.mark.parametrize(
    "value,expected",
    [("10", 10), ("5000", 1000), ("0", 1), ("-3", 1), ("deep", 32)],
)
def test_max_action_depth_is_clamped(monkeypatch, value, expected):
    monkeypatch.setenv("SCREENFLOW_MAX_ACTION_DEPTH", value)
    assert get_max_action_depth() == expected


@pytest.mark.parametrize(
    "value,expected",
    [("12.5", 12.5), ("0.1", 1.0), ("10000", 600.0), ("soon", 30.0)],
)
def test_fetch_timeout_is_clamped(monkeypatch, value, expected):
    monkeypatch.setenv("SCREENFLOW_FETCH_TIMEOUT", value)
    assert get_fetch_timeout() == expected


def test_log_level(monkeypatch, caplog):
    monkeypatch.setenv("SCREENFLOW_LOG_LEVEL", "debug")
    assert get_log_level() == "DEBUG"

    monkeypatch.setenv("SCREENFLOW_LOG_LEVEL", "loud")
    with caplog.at_level(logging.WARNING, logger="screenflow.config"):
        assert get_log_level() == "INFO"
    assert "Invalid SCREENFLOW_LOG_LEVEL 'LOUD'" in caplog.text


def test_from_env_reads_everything(monkeypatch):
    monkeypatch.setenv("SCREENFLOW_MAX_ACTION_DEPTH", "4")
    monkeypatch.setenv("SCREENFLOW_DATE_FORMAT", "yyyy-MM-dd")
    monkeypatch.setenv("SCREENFLOW_LOG_LEVEL", "error")
    monkeypatch.setenv("SCREENFLOW_FETCH_TIMEOUT", "5")

    assert RuntimeSettings.from_env() == RuntimeSettings(
        max_action_depth=4, date_format="yyyy-MM-dd", log_level="ERROR", fetch_timeout=5.0
    )
