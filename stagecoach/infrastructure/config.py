"""
Configuration Module

Architectural Intent:
- Centralized configuration loading from a JSON file (stagecoach.json)
- Provides typed access to all Stagecoach settings
- Falls back to sensible defaults when config file is absent
- Environment variables override file-based config

Design Decisions:
- Config is a frozen dataclass for immutability after load
- Nested config sections map to sub-dataclasses
- Unknown keys are ignored; values that cannot be converted raise ConfigError
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import dataclasses
import json
import logging
import os

from stagecoach.domain.errors import ConfigError

logger = logging.getLogger(__name__)

_TOP_LEVEL_KEYS = ("log_level",)


@dataclass(frozen=True)
class StateConfig:
    """Where deployment state files live."""
    directory: str = ".stagecoach"


@dataclass(frozen=True)
class FleetConfig:
    """Fleet target configuration."""
    targets: tuple[str, ...] = ()
    max_parallel: int = 0
    node_timeout_seconds: float = 1800.0


@dataclass(frozen=True)
class RetryConfig:
    """Backoff between retries of idempotent stages."""
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0


@dataclass(frozen=True)
class SSHConfig:
    user: str = "root"
    connect_timeout: int = 30


@dataclass(frozen=True)
class HistoryConfig:
    """Transition history database. Empty path disables it."""
    db_path: str = ".stagecoach/history.db"


@dataclass(frozen=True)
class TelemetryConfig:
    """OpenTelemetry configuration."""
    endpoint: str = ""
    insecure: bool = False


@dataclass(frozen=True)
class StagecoachConfig:
    """Root configuration for the Stagecoach application."""
    state: StateConfig = field(default_factory=StateConfig)
    fleet: FleetConfig = field(default_factory=FleetConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    ssh: SSHConfig = field(default_factory=SSHConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    log_level: str = "WARNING"


def _env_override(data: dict, prefix: str = "STAGECOACH") -> dict:
    """Override config values with environment variables.

    Environment variables follow the pattern STAGECOACH_SECTION_KEY.
    For example: STAGECOACH_FLEET_MAX_PARALLEL=4,
    STAGECOACH_FLEET_TARGETS=10.0.0.1,10.0.0.2, STAGECOACH_LOG_LEVEL=INFO
    """
    for key, value in os.environ.items():
        if not key.startswith(f"{prefix}_"):
            continue
        name = key[len(prefix) + 1:].lower()
        if name in _TOP_LEVEL_KEYS:
            data[name] = value
            continue
        parts = name.split("_", 1)
        if len(parts) == 2:
            section, field_name = parts
            if not isinstance(data.get(section), dict):
                data[section] = {}
            data[section][field_name] = value
        else:
            data[parts[0]] = value
    return data


def _parse_config_file(path: Path) -> dict:
    """Parse a JSON config file. Returns empty dict on failure."""
    try:
        with open(path) as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.debug("Config file not found: %s", path)
        return {}
    except json.JSONDecodeError as e:
        logger.warning("Invalid config file %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file %s does not hold a JSON object", path)
        return {}
    return data


def _convert(cls, name: str, type_name: str, value):
    try:
        if type_name == "tuple[str, ...]":
            if isinstance(value, str):
                return tuple(v.strip() for v in value.split(",") if v.strip())
            return tuple(value)
        if not isinstance(value, str):
            return value
        if type_name == "int":
            return int(value)
        if type_name == "float":
            return float(value)
        if type_name == "bool":
            return value.lower() in ("true", "1", "yes")
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{cls.__name__}.{name}: cannot use {value!r} ({e})") from e
    return value


def _build_sub_config(cls, data: dict):
    """Build a sub-config dataclass from a dict, ignoring unknown keys."""
    if not isinstance(data, dict):
        raise ConfigError(f"{cls.__name__} section must be an object")
    valid_fields = {f.name: f.type for f in dataclasses.fields(cls)}
    filtered = {
        k: _convert(cls, k, valid_fields[k], v)
        for k, v in data.items() if k in valid_fields
    }
    return cls(**filtered)


def load_config(
    path: Optional[str] = None,
    env_prefix: str = "STAGECOACH",
) -> StagecoachConfig:
    """Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (STAGECOACH_SECTION_KEY)
    2. Config file values
    3. Defaults

    Args:
        path: Path to config file (JSON). Defaults to stagecoach.json in CWD.
        env_prefix: Environment variable prefix. Defaults to STAGECOACH.
    """
    config_path = Path(path) if path else Path("stagecoach.json")
    data = _parse_config_file(config_path)
    data = _env_override(data, env_prefix)

    return StagecoachConfig(
        state=_build_sub_config(StateConfig, data.get("state", {})),
        fleet=_build_sub_config(FleetConfig, data.get("fleet", {})),
        retry=_build_sub_config(RetryConfig, data.get("retry", {})),
        ssh=_build_sub_config(SSHConfig, data.get("ssh", {})),
        history=_build_sub_config(HistoryConfig, data.get("history", {})),
        telemetry=_build_sub_config(TelemetryConfig, data.get("telemetry", {})),
        log_level=str(data.get("log_level", "WARNING")),
    )
