"""Tests for configuration loading and the command line."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from lifx_homekit.config import build_parser, env_overrides, load_config, load_yaml, parse_cli
from lifx_homekit.structs import BridgeEnv


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the caller's LIFX_HOMEKIT_* variables out of these tests."""
    for name in list(os.environ):
        if name.startswith("LIFX_HOMEKIT_"):
            monkeypatch.delenv(name)


class TestDefaults:
    def test_defaults(self):
        config = BridgeEnv(pin="12345678")
        assert config.pin == "123-45-678"
        assert config.discovery_interval == 30
        assert config.timeout == 0
        assert config.hap_port_base == 51826
        assert config.fatal_transport_errors is False

    @pytest.mark.parametrize("field", ["discovery_interval", "poll_interval"])
    def test_intervals_must_be_positive(self, field: str):
        with pytest.raises(ValidationError):
            _ = BridgeEnv(pin="12345678", **{field: 0})

    def test_unknown_log_format(self):
        with pytest.raises(ValidationError):
            _ = BridgeEnv(log_format="xml")


class TestSources:
    def test_env_overrides(self):
        values = env_overrides({"LIFX_HOMEKIT_PIN": "11122333", "LIFX_HOMEKIT_DEBUG": "true", "OTHER": "x"})
        assert values == {"pin": "11122333", "debug": "true"}

    def test_empty_env_values_are_ignored(self):
        assert env_overrides({"LIFX_HOMEKIT_TIMEOUT": ""}) == {}

    def test_yaml_ignores_unknown_keys(self, tmp_path: Path):
        config_file = tmp_path / "bridge.yaml"
        _ = config_file.write_text("timeout: 4\nfavourite_colour: blue\n")
        assert load_yaml(config_file) == {"timeout": 4}

    def test_empty_yaml(self, tmp_path: Path):
        config_file = tmp_path / "bridge.yaml"
        _ = config_file.write_text("")
        assert load_yaml(config_file) == {}

    def test_precedence(self, tmp_path: Path):
        """Test that CLI beats YAML, which beats the environment."""
        config_file = tmp_path / "bridge.yaml"
        _ = config_file.write_text("timeout: 4\ndiscovery_interval: 60\n")
        environ = {
            "LIFX_HOMEKIT_PIN": "11122333",
            "LIFX_HOMEKIT_TIMEOUT": "1",
            "LIFX_HOMEKIT_DISCOVERY_INTERVAL": "10",
            "LIFX_HOMEKIT_POLL_INTERVAL": "2",
        }
        args = build_parser().parse_args(["--config", str(config_file), "--discovery-interval", "90"])

        config = load_config(args, environ)

        assert config.pin == "111-22-333"
        assert config.timeout == 4
        assert config.discovery_interval == 90
        assert config.poll_interval == 2

    def test_config_file_from_env(self, tmp_path: Path):
        config_file = tmp_path / "bridge.yaml"
        _ = config_file.write_text("hap_port_base: 52000\n")
        args = build_parser().parse_args([])

        config = load_config(args, {"LIFX_HOMEKIT_CONFIG_FILE": str(config_file), "LIFX_HOMEKIT_PIN": "12345678"})

        assert config.hap_port_base == 52000


class TestParseCli:
    def test_pin_is_normalised(self):
        config = parse_cli(["--pin", "87654321", "-D"])
        assert config.pin == "876-54-321"
        assert config.debug is True

    @pytest.mark.parametrize("pin", ["1234567", "123456789", "abcdefgh", "12-345-678"])
    def test_invalid_pin_exits_2(self, pin: str):
        with pytest.raises(SystemExit) as exc_info:
            _ = parse_cli(["--pin", pin])
        assert exc_info.value.code == 2

    def test_missing_pin_exits_2(self):
        with pytest.raises(SystemExit) as exc_info:
            _ = parse_cli([])
        assert exc_info.value.code == 2

    def test_invalid_env_pin_exits_2(self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]):
        monkeypatch.setenv("LIFX_HOMEKIT_PIN", "9876")
        with pytest.raises(SystemExit) as exc_info:
            _ = parse_cli([])
        assert exc_info.value.code == 2
        assert "9876" not in capsys.readouterr().err

    def test_missing_config_file_exits_2(self, tmp_path: Path):
        with pytest.raises(SystemExit) as exc_info:
            _ = parse_cli(["--pin", "12345678", "--config", str(tmp_path / "missing.yaml")])
        assert exc_info.value.code == 2

    def test_env_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("LIFX_HOMEKIT_PIN", "")
        monkeypatch.setenv("LIFX_HOMEKIT_METRICS_PORT", "")
        env_file = tmp_path / ".env"
        _ = env_file.write_text("LIFX_HOMEKIT_PIN=22233444\nLIFX_HOMEKIT_METRICS_PORT=9100\n")

        config = parse_cli(["--env", str(env_file)])

        assert config.pin == "222-33-444"
        assert config.metrics_port == 9100
