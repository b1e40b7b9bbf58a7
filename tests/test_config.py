"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from build_handoff.config import Settings, get_settings, print_settings_json


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.store_backend == "filesystem"
        assert settings.log_backend == "file"
        assert settings.poll_interval == 60.0
        assert settings.wait_timeout is None
        assert settings.wait_max_attempts is None
        assert settings.halt_grace_delay == 30.0
        assert settings.reboot_delay == 5.0
        assert settings.metadata_endpoint == "http://169.254.169.254"
        assert settings.boot_log_path == Path("/var/log/cloud-init-output.log")
        assert settings.log_level == "INFO"

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "HANDOFF_BUCKET": "aaos-run-42",
                "HANDOFF_STORE_BACKEND": "http",
                "HANDOFF_STORE_ENDPOINT": "http://store.internal",
                "HANDOFF_POLL_INTERVAL": "15",
                "HANDOFF_WAIT_MAX_ATTEMPTS": "40",
                "HANDOFF_LOG_LEVEL": "DEBUG",
            },
        ):
            settings = Settings(_env_file=None)
            assert settings.bucket == "aaos-run-42"
            assert settings.store_backend == "http"
            assert settings.store_endpoint == "http://store.internal"
            assert settings.poll_interval == 15.0
            assert settings.wait_max_attempts == 40
            assert settings.log_level == "DEBUG"

    def test_store_root_from_env(self) -> None:
        """Store root should be configurable via env."""
        with patch.dict(os.environ, {"HANDOFF_STORE_ROOT": "/mnt/shared"}):
            settings = Settings(_env_file=None)
            assert settings.store_root == Path("/mnt/shared")

    def test_rejects_non_positive_interval(self) -> None:
        """A zero poll interval would spin; it is rejected."""
        with patch.dict(os.environ, {"HANDOFF_POLL_INTERVAL": "0"}):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_rejects_unknown_backend(self) -> None:
        with patch.dict(os.environ, {"HANDOFF_STORE_BACKEND": "s3"}):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)


class TestGetSettings:
    """Test get_settings function."""

    def test_get_settings_returns_settings(self) -> None:
        """get_settings should return a Settings instance."""
        settings = get_settings()
        assert isinstance(settings, Settings)


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_print_settings_json(self) -> None:
        """print_settings_json should return valid JSON."""
        settings = Settings(_env_file=None)
        parsed = json.loads(print_settings_json(settings))

        assert "bucket" in parsed
        assert "store_backend" in parsed
        assert "poll_interval" in parsed
        assert "log_group" in parsed

    def test_print_settings_json_default(self) -> None:
        """print_settings_json without args should use default settings."""
        parsed = json.loads(print_settings_json())
        assert "bucket" in parsed
