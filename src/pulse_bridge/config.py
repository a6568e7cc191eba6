"""Configuration management for the Pulse Bridge."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .ble.hr_parse import is_valid_bpm


@dataclass
class LinkConfig:
    """Configuration for the heart-rate watch BLE link."""

    adapter: str = ""
    paired_devices: Dict[str, str] = None  # address -> display name
    vendor_payloads: Dict[int, int] = None  # company id -> BPM byte offset
    connect_timeout_sec: float = 20.0

    def __post_init__(self) -> None:
        if self.paired_devices is None:
            self.paired_devices = {}
        if self.vendor_payloads is None:
            self.vendor_payloads = {}


@dataclass
class SessionConfig:
    """Timing parameters for one acquisition session."""

    window_duration_sec: int = 60
    step_sec: int = 3
    discovery_timeout_sec: float = 60.0
    discovery_poll_sec: float = 0.5
    analysis_delay_sec: float = 1.5
    default_bpm: int = 72

    @property
    def total_ticks(self) -> int:
        return self.window_duration_sec // self.step_sec


@dataclass
class LoggingConfig:
    """Configuration for the NDJSON event log."""

    dir: str = "./logs"
    file_prefix: str = "pulse"
    mode: str = "regular"  # regular or verbose
    debug_dir: str = ""
    verbose_whitelist: List[str] = None

    def __post_init__(self) -> None:
        if self.verbose_whitelist is None:
            self.verbose_whitelist = []


@dataclass
class AppConfig:
    """Main application configuration."""

    link: LinkConfig = None
    session: SessionConfig = None
    logging: LoggingConfig = None

    def __post_init__(self) -> None:
        if self.link is None:
            self.link = LinkConfig()
        if self.session is None:
            self.session = SessionConfig()
        if self.logging is None:
            self.logging = LoggingConfig()


def load_config(config_path: str) -> AppConfig:
    """Load configuration from YAML file with environment variable support."""
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_file.open("r", encoding="utf-8") as f:
        raw_config = yaml.safe_load(f)

    if not raw_config:
        raise ValueError(f"Empty or invalid configuration file: {config_path}")

    _substitute_env_vars(raw_config)

    config = AppConfig()

    if "link" in raw_config:
        link_data = dict(raw_config["link"] or {})
        # Paired devices may be written as a list of {address, name} entries
        paired = link_data.get("paired_devices")
        if isinstance(paired, list):
            link_data["paired_devices"] = {
                entry["address"]: entry.get("name", "") for entry in paired
            }
        if link_data.get("vendor_payloads"):
            link_data["vendor_payloads"] = {
                _parse_int(key): int(value) for key, value in link_data["vendor_payloads"].items()
            }
        config.link = LinkConfig(**link_data)

    if "session" in raw_config:
        config.session = SessionConfig(**(raw_config["session"] or {}))

    if "logging" in raw_config:
        logging_data = dict(raw_config["logging"] or {})
        if isinstance(logging_data.get("verbose_whitelist"), dict):
            logging_data["verbose_whitelist"] = list(logging_data["verbose_whitelist"].keys())
        config.logging = LoggingConfig(**logging_data)

    return config


def _parse_int(value: Any) -> int:
    """Accept company ids written as ints or strings such as '0x027D'."""
    if isinstance(value, int):
        return value
    return int(str(value), 0)


def _substitute_env_vars(data: Any) -> None:
    """Recursively substitute environment variables in configuration data."""
    if isinstance(data, dict):
        for key, value in data.items():
            if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
                data[key] = os.getenv(value[2:-1], value)
            else:
                _substitute_env_vars(value)
    elif isinstance(data, list):
        for index, item in enumerate(data):
            if isinstance(item, str) and item.startswith("${") and item.endswith("}"):
                data[index] = os.getenv(item[2:-1], item)
            else:
                _substitute_env_vars(item)


def validate_config(config: AppConfig) -> List[str]:
    """Validate configuration and return list of validation errors."""
    errors = []

    for address in config.link.paired_devices:
        if not address:
            errors.append("Paired device address must not be empty")
    for company_id, offset in config.link.vendor_payloads.items():
        if offset < 0:
            errors.append(f"Vendor payload 0x{company_id:04X}: offset must be non-negative")
    if config.link.connect_timeout_sec <= 0:
        errors.append("Link connect_timeout_sec must be positive")

    session = config.session
    if session.step_sec <= 0:
        errors.append("Session step_sec must be positive")
    elif session.window_duration_sec <= 0 or session.window_duration_sec % session.step_sec:
        errors.append("Session window_duration_sec must be a positive multiple of step_sec")
    if session.discovery_timeout_sec <= 0:
        errors.append("Session discovery_timeout_sec must be positive")
    if session.discovery_poll_sec <= 0:
        errors.append("Session discovery_poll_sec must be positive")
    if session.analysis_delay_sec < 0:
        errors.append("Session analysis_delay_sec must not be negative")
    if not is_valid_bpm(session.default_bpm):
        errors.append(f"Session default_bpm out of range: {session.default_bpm}")

    if config.logging.mode not in ("regular", "verbose"):
        errors.append(f"Logging mode must be 'regular' or 'verbose', got {config.logging.mode!r}")

    paths = [("logging.dir", config.logging.dir)]
    if config.logging.debug_dir:
        paths.append(("logging.debug_dir", config.logging.debug_dir))
    for path_name, path_str in paths:
        path = Path(path_str)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            errors.append(f"Cannot create directory {path_name}: {path_str} - {e}")

    return errors
