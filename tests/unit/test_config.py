"""Tests for run configuration."""

import pytest
from pydantic import ValidationError

from loadbench.config import RunSettings, load_settings
from loadbench.engine.report import OutputFormat
from loadbench.shared.errors import ConfigError


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)  # no stray .env
    for name in ("QPS", "CONNECTIONS", "OUTPUT_FORMAT", "SERVER", "INSECURE"):
        monkeypatch.delenv(f"LOADBENCH_{name}", raising=False)


class TestRunSettings:
    def test_default_settings(self):
        settings = RunSettings()
        assert settings.qps == 10
        assert settings.connections == 10
        assert settings.duration == 30.0
        assert settings.warmup == 10.0
        assert settings.port == 443
        assert settings.output_format is OutputFormat.PLAIN

    def test_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("LOADBENCH_QPS", "250")
        monkeypatch.setenv("LOADBENCH_SERVER", "dsm.example.com")
        monkeypatch.setenv("LOADBENCH_INSECURE", "true")
        settings = RunSettings()
        assert settings.qps == 250
        assert settings.server == "dsm.example.com"
        assert settings.insecure is True

    def test_output_format_alias(self):
        assert RunSettings(output_format="structured").output_format is OutputFormat.JSON

    def test_log_level_normalized(self):
        assert RunSettings(log_level="debug").log_level == "DEBUG"


class TestLoadSettings:
    def test_overrides_win_over_env(self, monkeypatch):
        monkeypatch.setenv("LOADBENCH_QPS", "250")
        assert load_settings(qps=40).qps == 40

    def test_none_overrides_are_ignored(self, monkeypatch):
        monkeypatch.setenv("LOADBENCH_CONNECTIONS", "3")
        settings = load_settings(connections=None, qps=None)
        assert settings.connections == 3
        assert settings.qps == 10

    @pytest.mark.parametrize(
        "overrides",
        [
            {"output_format": "xml"},
            {"qps": 0},
            {"connections": -1},
            {"duration": 0},
            {"warmup": -1},
            {"scheme": "ftp"},
            {"log_level": "chatty"},
        ],
    )
    def test_invalid_configuration(self, overrides):
        with pytest.raises(ConfigError):
            load_settings(**overrides)

    def test_unsupported_format_message(self):
        with pytest.raises(ConfigError, match="unsupported output format 'xml'"):
            load_settings(output_format="xml")


class TestTestConfig:
    def test_from_settings(self):
        settings = load_settings(
            server="dsm.example.com",
            port=8443,
            insecure=True,
            qps=100,
            connections=5,
            duration=60.0,
            warmup=0.0,
            create_session=True,
        )
        config = settings.to_test_config("version", resource={"kid": "abc"})
        assert config.test_name == "version"
        assert config.server_name == "dsm.example.com"
        assert config.server_port == 8443
        assert config.verify_tls is False
        assert config.target_qps == 100
        assert config.connections == 5
        assert config.test_duration == 60.0
        assert config.warmup_duration == 0.0
        assert config.create_session is True
        assert config.resource == {"kid": "abc"}

    def test_immutable(self, test_config):
        with pytest.raises(ValidationError):
            test_config.target_qps = 5
