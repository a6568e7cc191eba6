"""Tests for YAML configuration loading and validation."""

import pytest

from pulse_bridge.config import AppConfig, SessionConfig, load_config, validate_config


def write_config(tmp_path, text):
    path = tmp_path / "pulse.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    """Loading from YAML."""

    def test_defaults_when_sections_missing(self, tmp_path):
        config = load_config(str(write_config(tmp_path, "session: {}\n")))
        assert config.session == SessionConfig()
        assert config.link.paired_devices == {}
        assert config.logging.mode == "regular"
        assert config.session.total_ticks == 20

    def test_full_config(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PULSE_WATCH_MAC", "AA:BB:CC:DD:EE:FF")
        path = write_config(tmp_path, """
link:
  adapter: hci1
  paired_devices:
    - address: "${PULSE_WATCH_MAC}"
      name: Watch
  vendor_payloads:
    "0x027D": 2
    76: 3
session:
  window_duration_sec: 30
  step_sec: 3
logging:
  dir: ./logs
  verbose_whitelist:
    progress: true
""")
        config = load_config(str(path))

        assert config.link.adapter == "hci1"
        assert config.link.paired_devices == {"AA:BB:CC:DD:EE:FF": "Watch"}
        assert config.link.vendor_payloads == {0x027D: 2, 76: 3}
        assert config.session.total_ticks == 10
        assert config.logging.verbose_whitelist == ["progress"]

    def test_unset_env_var_left_as_is(self, tmp_path, monkeypatch):
        monkeypatch.delenv("PULSE_MISSING_MAC", raising=False)
        path = write_config(tmp_path, """
link:
  paired_devices:
    - address: "${PULSE_MISSING_MAC}"
      name: Watch
""")
        config = load_config(str(path))
        assert config.link.paired_devices == {"${PULSE_MISSING_MAC}": "Watch"}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "absent.yaml"))

    def test_empty_file(self, tmp_path):
        with pytest.raises(ValueError):
            load_config(str(write_config(tmp_path, "")))


class TestValidateConfig:
    """Validation errors."""

    def test_default_config_is_valid(self, tmp_path):
        config = AppConfig()
        config.logging.dir = str(tmp_path / "logs")
        assert validate_config(config) == []
        assert (tmp_path / "logs").is_dir()

    @pytest.mark.parametrize("field,value,fragment", [
        ("step_sec", 0, "step_sec"),
        ("window_duration_sec", 61, "multiple"),
        ("discovery_timeout_sec", 0, "discovery_timeout_sec"),
        ("analysis_delay_sec", -1, "analysis_delay_sec"),
        ("default_bpm", 10, "default_bpm"),
    ])
    def test_session_errors(self, tmp_path, field, value, fragment):
        config = AppConfig()
        config.logging.dir = str(tmp_path)
        setattr(config.session, field, value)
        errors = validate_config(config)
        assert len(errors) == 1
        assert fragment in errors[0]

    def test_link_and_logging_errors(self, tmp_path):
        config = AppConfig()
        config.logging.dir = str(tmp_path)
        config.logging.mode = "chatty"
        config.link.vendor_payloads = {0x027D: -1}
        config.link.connect_timeout_sec = 0
        errors = validate_config(config)
        assert len(errors) == 3
        assert any("0x027D" in e for e in errors)
