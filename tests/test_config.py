"""Tests for Settings configuration model."""

from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from taskpilot.config import Settings


class TestDefaults:
    def test_default_data_dir(self):
        s = Settings()
        assert s.data_dir == Path("data")

    def test_default_scheduler_timezone(self):
        s = Settings()
        assert s.scheduler_timezone == "Asia/Shanghai"

    def test_default_retention(self):
        s = Settings()
        assert s.execution_retention_days == 30
        assert s.get_execution_retention() == timedelta(days=30)

    def test_dispatch_disabled_by_default(self):
        s = Settings()
        assert s.dispatch_url == ""
        assert s.dispatch_timeout_seconds == 30.0


class TestOverrides:
    def test_custom_data_dir(self):
        s = Settings(data_dir=Path("/srv/tasks"))
        assert s.data_dir == Path("/srv/tasks")

    def test_custom_retention(self):
        s = Settings(execution_retention_days=7)
        assert s.get_execution_retention() == timedelta(days=7)

    def test_retention_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(execution_retention_days=0)

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(dispatch_timeout_seconds=0)


class TestExtraForbidden:
    def test_unknown_env_var_raises(self):
        with pytest.raises(ValueError, match="extra_forbidden"):
            Settings(**{"nonexistent_field": "value"})
