"""Tests for Settings configuration and logging setup."""

import logging

import pytest
from pydantic import ValidationError

from cadence.config import Settings
from cadence.log import LOG_FORMAT, configure_logging


class TestDefaults:
    def test_scheduler_timezone(self):
        assert Settings().scheduler_timezone == "UTC"

    def test_sweep_interval(self):
        assert Settings().scheduler_sweep_interval_seconds == 60.0

    def test_monitor_delay(self):
        assert Settings().scheduler_monitor_delay_seconds == 5.0

    def test_retention_days(self):
        assert Settings().scheduler_retention_days == 30

    def test_log_level(self):
        assert Settings().log_level == "INFO"


class TestOverrides:
    def test_init_values_win(self):
        s = Settings(scheduler_timezone="Europe/Berlin", scheduler_retention_days=7)
        assert s.scheduler_timezone == "Europe/Berlin"
        assert s.scheduler_retention_days == 7

    def test_env_ignored_under_pytest(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SCHEDULER_TIMEZONE", "Asia/Tokyo")
        assert Settings().scheduler_timezone == "UTC"

    def test_rejects_non_positive_sweep_interval(self):
        with pytest.raises(ValidationError):
            Settings(scheduler_sweep_interval_seconds=0)


class TestConfigureLogging:
    def test_uses_given_level(self, monkeypatch: pytest.MonkeyPatch):
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kw: calls.append(kw))
        configure_logging("debug")
        assert calls == [{"format": LOG_FORMAT, "level": logging.DEBUG}]

    def test_defaults_to_settings(self, monkeypatch: pytest.MonkeyPatch):
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kw: calls.append(kw))
        monkeypatch.setattr("cadence.config.settings.log_level", "WARNING")
        configure_logging()
        assert calls[0]["level"] == logging.WARNING
