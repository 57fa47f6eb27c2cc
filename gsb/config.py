"""Daemon configuration.

Settings come from, lowest to highest precedence: the BridgeConfig
defaults, an optional YAML file, and command-line overrides.

Example gsb.yaml:

    port: auto
    baud: 9600
    debounce_seconds: 300
    max_attempts: 5
    display_off_command: "xrandr --output HDMI-1 --off"
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Optional

import yaml

from .errors import ConfigError
from .power_action import DEFAULT_DISPLAY_ENV, DEFAULT_OFF_COMMAND, DEFAULT_ON_COMMAND

DEFAULT_BASE_DIR = "/tmp/gsb-session"


@dataclass
class BridgeConfig:
    """All daemon settings."""
    port: str = "auto"
    baud: int = 9600
    base_dir: str = DEFAULT_BASE_DIR
    debounce_seconds: float = 300.0
    max_attempts: int = 5
    retry_delay: float = 0.0
    display_on_command: str = DEFAULT_ON_COMMAND
    display_off_command: str = DEFAULT_OFF_COMMAND
    display_env: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_DISPLAY_ENV))
    action_timeout: float = 10.0
    failsafe_timeout: float = 5.0
    log_level: str = "INFO"

    @property
    def events_path(self) -> str:
        return os.path.join(self.base_dir, "events.jsonl")

    @property
    def status_path(self) -> str:
        return os.path.join(self.base_dir, "status.json")

    def validate(self) -> "BridgeConfig":
        """Raise ConfigError for out-of-range values; returns self."""
        if not self.port:
            raise ConfigError("port must not be empty")
        if self.baud <= 0:
            raise ConfigError(f"baud must be positive, got {self.baud}")
        if self.max_attempts < 1:
            raise ConfigError(f"max_attempts must be at least 1, got {self.max_attempts}")
        for name in ("debounce_seconds", "retry_delay", "action_timeout", "failsafe_timeout"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative, got {getattr(self, name)}")
        if not self.display_on_command.strip() or not self.display_off_command.strip():
            raise ConfigError("display commands must not be empty")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise ConfigError(f"unknown log_level {self.log_level!r}")
        return self


_FIELD_TYPES = {
    "port": str,
    "baud": int,
    "base_dir": str,
    "debounce_seconds": float,
    "max_attempts": int,
    "retry_delay": float,
    "display_on_command": str,
    "display_off_command": str,
    "display_env": dict,
    "action_timeout": float,
    "failsafe_timeout": float,
    "log_level": str,
}


def _coerce(name: str, value: Any) -> Any:
    expected = _FIELD_TYPES[name]
    if expected is dict:
        if not isinstance(value, dict):
            raise ConfigError(f"{name} must be a mapping")
        return {str(k): str(v) for k, v in value.items()}
    if expected in (int, float) and isinstance(value, bool):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    try:
        return expected(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value for {name}: {value!r}") from e


def load_config(path: Optional[str] = None, overrides: Optional[dict[str, Any]] = None) -> BridgeConfig:
    """Build a validated BridgeConfig from a YAML file and overrides.

    None values in overrides are ignored, so argparse results can be
    passed straight through.
    """
    values: dict[str, Any] = {}

    if path:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"cannot read config {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML in {path}: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"Invalid config file (expected mapping): {path}")
        values.update(data)

    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})

    known = {f.name for f in fields(BridgeConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigError(f"unknown config keys: {', '.join(unknown)}")

    coerced = {name: _coerce(name, value) for name, value in values.items()}
    return replace(BridgeConfig(), **coerced).validate()
