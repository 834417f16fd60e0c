"""Configuration for the rtcstats relay.

Values are resolved from, in increasing precedence: defaults, an optional
JSON config file, environment variables, and command-line flags.
"""

from __future__ import annotations

import json
import logging
import os
import socket
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger(__name__)

ENV_VARS = {
    "jicofo_address": "JICOFO_ADDRESS",
    "rtcstats_server": "RTCSTATS_SERVER",
    "interval": "INTERVAL",
    "display_name": "DISPLAY_NAME",
}


class ConfigError(Exception):
    """Raised when the relay configuration is missing or invalid."""


@dataclass
class RelayConfig:
    """Relay configuration."""

    jicofo_address: str = ""  # e.g. http://127.0.0.1:8888
    rtcstats_server: str = ""  # e.g. ws://127.0.0.1:3000
    interval: int = 30000  # ms between polls
    display_name: str = ""

    @classmethod
    def load(cls, path: str | Path) -> RelayConfig:
        path = Path(path)
        if not path.exists():
            logger.warning("Config not found at %s, using defaults", path)
            return cls()
        try:
            with open(path) as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON in config file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must hold a JSON object")
        known = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in known}
        return cls(**filtered)

    def apply_env(self, environ: Mapping[str, str] | None = None) -> None:
        """Override fields from environment variables that are set and non-empty."""
        environ = os.environ if environ is None else environ
        for name, var in ENV_VARS.items():
            value = environ.get(var)
            if value:
                setattr(self, name, value)

    def apply_overrides(self, **overrides: Any) -> None:
        """Override fields from keyword values that are not ``None``."""
        for name, value in overrides.items():
            if value is not None:
                setattr(self, name, value)

    def validate(self) -> None:
        """Normalize the interval and check required addresses."""
        if not self.jicofo_address:
            raise ConfigError("Missing Jicofo address (--jicofo-address / JICOFO_ADDRESS)")
        if not self.rtcstats_server:
            raise ConfigError("Missing rtcstats server (--rtcstats-server / RTCSTATS_SERVER)")
        try:
            interval = int(self.interval)
        except (TypeError, ValueError):
            raise ConfigError(f"Interval must be an integer, got {self.interval!r}") from None
        if interval <= 0:
            raise ConfigError(f"Interval must be positive, got {interval}")
        self.interval = interval
        if not self.display_name:
            self.display_name = socket.gethostname()

