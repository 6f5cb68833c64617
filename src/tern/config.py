"""
tern.config — Project config.

./tern.yaml:

    stack_name: orders      # for stacks built with StackBuilder()
    provision:
      timeout: 120          # seconds per custom step invocation
      max_workers: 8
    logging:
      level: INFO
      format: console       # or json
    output_format: yaml     # tern template default

Environment variables override the file:
TERN_STACK_NAME, TERN_PROVISION_TIMEOUT, TERN_MAX_WORKERS,
TERN_LOG_LEVEL, TERN_LOG_FORMAT.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from tern.errors import ConfigError

CONFIG_FILE = "tern.yaml"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
_LOG_FORMATS = ("console", "json")
_OUTPUT_FORMATS = ("yaml", "json")


@dataclass
class TernConfig:
    """Resolved project config."""
    stack_name: str = "stack"
    provision_timeout: float = 300.0
    max_workers: int = 8
    log_level: str = "INFO"
    log_format: str = "console"
    output_format: str = "yaml"

    def validate(self) -> TernConfig:
        if self.provision_timeout <= 0:
            raise ConfigError(f"provision timeout must be positive, got {self.provision_timeout}")
        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be at least 1, got {self.max_workers}")
        if self.log_level not in _LOG_LEVELS:
            raise ConfigError(f"log level must be one of {_LOG_LEVELS}, got '{self.log_level}'")
        if self.log_format not in _LOG_FORMATS:
            raise ConfigError(f"log format must be one of {_LOG_FORMATS}, got '{self.log_format}'")
        if self.output_format not in _OUTPUT_FORMATS:
            raise ConfigError(
                f"output format must be one of {_OUTPUT_FORMATS}, got '{self.output_format}'"
            )
        return self


def config_path(directory: str | Path | None = None) -> Path:
    return Path(directory or ".") / CONFIG_FILE


def load_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> TernConfig:
    """Read tern.yaml (if present), then apply environment overrides."""
    env = os.environ if environ is None else environ
    cp = Path(path) if path is not None else config_path()

    data: dict[str, Any] = {}
    if cp.exists():
        with open(cp) as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Config file must be a YAML mapping: {cp}")
        data = loaded
    elif path is not None:
        raise ConfigError(f"Config file not found: {cp}")

    provision = _section(data, "provision")
    logging_cfg = _section(data, "logging")

    cfg = TernConfig()
    cfg.stack_name = str(data.get("stack_name", cfg.stack_name))
    cfg.provision_timeout = _number(provision.get("timeout", cfg.provision_timeout), "provision.timeout", float)
    cfg.max_workers = _number(provision.get("max_workers", cfg.max_workers), "provision.max_workers", int)
    cfg.log_level = str(logging_cfg.get("level", cfg.log_level)).upper()
    cfg.log_format = str(logging_cfg.get("format", cfg.log_format)).lower()
    cfg.output_format = str(data.get("output_format", cfg.output_format)).lower()

    # Environment wins
    if env.get("TERN_STACK_NAME"):
        cfg.stack_name = env["TERN_STACK_NAME"]
    if env.get("TERN_PROVISION_TIMEOUT"):
        cfg.provision_timeout = _number(env["TERN_PROVISION_TIMEOUT"], "TERN_PROVISION_TIMEOUT", float)
    if env.get("TERN_MAX_WORKERS"):
        cfg.max_workers = _number(env["TERN_MAX_WORKERS"], "TERN_MAX_WORKERS", int)
    if env.get("TERN_LOG_LEVEL"):
        cfg.log_level = env["TERN_LOG_LEVEL"].upper()
    if env.get("TERN_LOG_FORMAT"):
        cfg.log_format = env["TERN_LOG_FORMAT"].lower()

    return cfg.validate()


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    section = data.get(key) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{key}' must be a mapping")
    return section


def _number(value: Any, what: str, kind: type) -> Any:
    if isinstance(value, bool):
        raise ConfigError(f"{what} must be a number, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{what} must be a number, got {value!r}") from None
