"""Tests for configuration module."""

import json
import os
import pytest
from unittest.mock import patch

from stagecoach.domain.errors import ConfigError
from stagecoach.infrastructure.config import (
    FleetConfig,
    HistoryConfig,
    RetryConfig,
    SSHConfig,
    StateConfig,
    TelemetryConfig,
    load_config,
)


class TestDefaultConfig:
    def test_defaults(self):
        config = load_config(path="/nonexistent/stagecoach.json")
        assert config.log_level == "WARNING"
        assert config.state.directory == ".stagecoach"
        assert config.fleet.targets == ()
        assert config.fleet.max_parallel == 0
        assert config.fleet.node_timeout_seconds == 1800.0
        assert config.ssh.user == "root"
        assert config.history.db_path == ".stagecoach/history.db"
        assert config.telemetry.endpoint == ""

    def test_all_sections_present(self):
        config = load_config(path="/nonexistent/stagecoach.json")
        assert isinstance(config.state, StateConfig)
        assert isinstance(config.fleet, FleetConfig)
        assert isinstance(config.retry, RetryConfig)
        assert isinstance(config.ssh, SSHConfig)
        assert isinstance(config.history, HistoryConfig)
        assert isinstance(config.telemetry, TelemetryConfig)


class TestFileConfig:
    def test_load_from_file(self, tmp_path):
        config_file = tmp_path / "stagecoach.json"
        config_file.write_text(json.dumps({
            "log_level": "DEBUG",
            "state": {"directory": "/var/lib/stagecoach"},
            "fleet": {"targets": ["10.0.0.1", "10.0.0.2"], "max_parallel": 5},
            "ssh": {"user": "deploy", "connect_timeout": 10},
            "telemetry": {"endpoint": "https://otel.example.com:4317"},
        }))

        config = load_config(path=str(config_file))
        assert config.log_level == "DEBUG"
        assert config.state.directory == "/var/lib/stagecoach"
        assert config.fleet.targets == ("10.0.0.1", "10.0.0.2")
        assert config.fleet.max_parallel == 5
        assert config.ssh.user == "deploy"
        assert config.ssh.connect_timeout == 10
        assert config.telemetry.endpoint == "https://otel.example.com:4317"

    def test_partial_config(self, tmp_path):
        config_file = tmp_path / "stagecoach.json"
        config_file.write_text(json.dumps({"retry": {"base_delay_seconds": 5}}))

        config = load_config(path=str(config_file))
        assert config.retry.base_delay_seconds == 5
        assert config.retry.max_delay_seconds == 30.0  # default preserved
        assert config.state.directory == ".stagecoach"  # default preserved

    def test_invalid_json_returns_defaults(self, tmp_path):
        config_file = tmp_path / "stagecoach.json"
        config_file.write_text("not valid json{{{")

        config = load_config(path=str(config_file))
        assert config.fleet.node_timeout_seconds == 1800.0

    def test_non_object_returns_defaults(self, tmp_path):
        config_file = tmp_path / "stagecoach.json"
        config_file.write_text("[1, 2, 3]")

        config = load_config(path=str(config_file))
        assert config.ssh.user == "root"

    def test_unknown_keys_ignored(self, tmp_path):
        config_file = tmp_path / "stagecoach.json"
        config_file.write_text(json.dumps({
            "ssh": {"user": "ops", "unknown_key": "ignored"},
        }))

        config = load_config(path=str(config_file))
        assert config.ssh.user == "ops"

    def test_section_must_be_object(self, tmp_path):
        config_file = tmp_path / "stagecoach.json"
        config_file.write_text(json.dumps({"fleet": "node1"}))

        with pytest.raises(ConfigError, match="FleetConfig"):
            load_config(path=str(config_file))


class TestEnvOverride:
    def test_env_overrides_file(self, tmp_path):
        config_file = tmp_path / "stagecoach.json"
        config_file.write_text(json.dumps({"fleet": {"max_parallel": 2}}))

        with patch.dict(os.environ, {"STAGECOACH_FLEET_MAX_PARALLEL": "8"}):
            config = load_config(path=str(config_file))

        assert config.fleet.max_parallel == 8

    def test_env_overrides_default(self):
        with patch.dict(os.environ, {"STAGECOACH_STATE_DIRECTORY": "/tmp/state"}):
            config = load_config(path="/nonexistent/stagecoach.json")

        assert config.state.directory == "/tmp/state"

    def test_env_fleet_targets_comma_separated(self):
        with patch.dict(os.environ, {"STAGECOACH_FLEET_TARGETS": "10.0.0.1, 10.0.0.2"}):
            config = load_config(path="/nonexistent/stagecoach.json")

        assert config.fleet.targets == ("10.0.0.1", "10.0.0.2")

    def test_env_float_and_bool_conversion(self):
        env = {
            "STAGECOACH_FLEET_NODE_TIMEOUT_SECONDS": "90.5",
            "STAGECOACH_TELEMETRY_INSECURE": "yes",
        }
        with patch.dict(os.environ, env):
            config = load_config(path="/nonexistent/stagecoach.json")

        assert config.fleet.node_timeout_seconds == 90.5
        assert config.telemetry.insecure is True

    def test_env_log_level(self):
        with patch.dict(os.environ, {"STAGECOACH_LOG_LEVEL": "INFO"}):
            config = load_config(path="/nonexistent/stagecoach.json")

        assert config.log_level == "INFO"

    def test_bad_number_raises(self):
        with patch.dict(os.environ, {"STAGECOACH_FLEET_MAX_PARALLEL": "lots"}):
            with pytest.raises(ConfigError, match="max_parallel"):
                load_config(path="/nonexistent/stagecoach.json")

    def test_custom_prefix(self):
        with patch.dict(os.environ, {"MYAPP_SSH_USER": "admin"}):
            config = load_config(path="/nonexistent/stagecoach.json", env_prefix="MYAPP")

        assert config.ssh.user == "admin"


class TestConfigImmutability:
    def test_frozen(self):
        config = load_config(path="/nonexistent/stagecoach.json")
        with pytest.raises(AttributeError):
            config.log_level = "DEBUG"

    def test_sub_config_frozen(self):
        config = load_config(path="/nonexistent/stagecoach.json")
        with pytest.raises(AttributeError):
            config.fleet.max_parallel = 99
