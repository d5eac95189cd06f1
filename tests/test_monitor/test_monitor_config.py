"""Tests for MonitorConfig."""

import pytest
from pydantic import ValidationError

from src.monitor.config import MonitorConfig


class TestMonitorConfig:
    """Defaults, environment overrides and validation."""

    def test_defaults(self):
        config = MonitorConfig()
        assert config.check_interval_minutes == 5
        assert config.check_interval_seconds == 300.0
        assert config.concurrency == 5
        assert config.source_delay_min_seconds == 2.0
        assert config.source_delay_max_seconds == 3.0
        assert config.circuit_failure_threshold == 5
        assert config.circuit_reset_timeout_seconds == 1800.0
        assert config.duplicate_scan_limit == 4
        assert not config.active_hours_configured

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("MONITOR_CONCURRENCY", "3")
        monkeypatch.setenv("MONITOR_ACTIVE_HOURS_START", "22")
        monkeypatch.setenv("MONITOR_ACTIVE_HOURS_END", "6")

        config = MonitorConfig()

        assert config.concurrency == 3
        assert config.active_hours_configured

    def test_concurrency_bounds(self):
        with pytest.raises(ValidationError):
            MonitorConfig(concurrency=0)

    def test_delay_range_must_be_ordered(self):
        with pytest.raises(ValidationError):
            MonitorConfig(source_delay_min_seconds=3.0, source_delay_max_seconds=2.0)

    def test_active_hours_need_both_bounds(self):
        with pytest.raises(ValidationError):
            MonitorConfig(active_hours_start=9)

    def test_hour_range(self):
        with pytest.raises(ValidationError):
            MonitorConfig(active_hours_start=24, active_hours_end=6)

    def test_unknown_timezone(self):
        with pytest.raises(ValidationError):
            MonitorConfig(active_hours_timezone="Mars/Olympus_Mons")
