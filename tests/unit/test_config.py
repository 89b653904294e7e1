"""Tests for configuration loading and management."""

import pytest

from calendar_sync.config import ConfigurationError, load_settings, resolve_config_path
from calendar_sync.models.settings import LogFormat, MappingSource, StopMode


@pytest.fixture
def config_file(tmp_path):
    """Write a settings.yaml and return its path."""
    path = tmp_path / "settings.yaml"
    path.write_text(
        "webhook_url: https://sync.example.com/webhook\n"
        "mapping_source: sheet\n"
        "spreadsheet_id: sheet-123\n"
        "stop_mode: mark_stopped\n"
        "renewal_threshold_ms: 43200000\n"
    )
    return path


class TestConfigurationLoading:
    """Test basic configuration loading."""

    def test_loads_yaml_file(self, config_file):
        settings = load_settings(str(config_file), environ={})

        assert settings.webhook_url == "https://sync.example.com/webhook"
        assert settings.mapping_source == MappingSource.SHEET
        assert settings.stop_mode == StopMode.MARK_STOPPED
        assert settings.renewal_threshold_ms == 43_200_000

    def test_defaults(self, config_file):
        settings = load_settings(str(config_file), environ={})

        assert settings.port == 8080
        assert settings.dedup_ttl_ms == 300_000
        assert settings.firestore_collection == "watchChannels"
        assert settings.retry_max_attempts == 5
        assert settings.retry_delay_ms == 30_000
        assert settings.json_logs is True

    def test_environment_overrides_file(self, config_file):
        environ = {"PORT": "9090", "LOG_FORMAT": "console", "FIRESTORE_ENABLED": "false"}

        settings = load_settings(str(config_file), environ=environ)

        assert settings.port == 9090
        assert settings.log_format == LogFormat.CONSOLE
        assert settings.json_logs is False
        assert settings.firestore_enabled is False

    def test_environment_only(self, tmp_path):
        environ = {
            "CONFIG_PATH": str(tmp_path / "absent.yaml"),
            "MAPPING_SOURCE": "file",
            "MAPPINGS_PATH": "/etc/calendar-sync/mappings.yaml",
        }

        settings = load_settings(environ=environ)

        assert settings.mapping_source == MappingSource.FILE
        assert settings.mappings_path == "/etc/calendar-sync/mappings.yaml"


class TestConfigurationErrors:
    """Test invalid configuration handling."""

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_settings(str(tmp_path / "missing.yaml"), environ={})

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("port: [8080\n")

        with pytest.raises(ConfigurationError, match="parse"):
            load_settings(str(path), environ={})

    def test_non_mapping_yaml(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError):
            load_settings(str(path), environ={})

    def test_sheet_source_requires_spreadsheet_id(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("mapping_source: sheet\n")

        with pytest.raises(ConfigurationError, match="spreadsheet_id"):
            load_settings(str(path), environ={})

    def test_invalid_value(self, config_file):
        with pytest.raises(ConfigurationError):
            load_settings(str(config_file), environ={"PORT": "not-a-port"})


class TestConfigPathResolution:
    def test_argument_wins(self):
        assert str(resolve_config_path("a.yaml", {"CONFIG_PATH": "b.yaml"})) == "a.yaml"

    def test_environment(self):
        assert str(resolve_config_path(None, {"CONFIG_PATH": "b.yaml"})) == "b.yaml"

    def test_default(self):
        assert str(resolve_config_path(None, {})) == "config/settings.yaml"
