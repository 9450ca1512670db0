"""
Configuration module for the chat import executor.

This module provides functions for loading configuration settings from YAML
files, creating a default configuration, and parsing the pacing values that
can also be given on the command line.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from chat_importer.constants import (
    DEFAULT_CHANNEL_TIMEOUT,
    DEFAULT_DAILY_CEILING,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_DELAY,
    DEFAULT_MIN_DELAY,
    MAX_ALLOWED_ATTEMPTS,
    MAX_ALLOWED_DELAY,
    MIN_ALLOWED_DELAY,
)
from chat_importer.exceptions import ConfigError
from chat_importer.utils.logging import log_with_context

_SLEEP_RANGE_PATTERN = re.compile(r"^\s*(\d+)\s*(?:-\s*(\d+)\s*)?$")


def _int_option(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"Config option '{key}' must be an integer, got {value!r}")
    return value


@dataclass
class ChannelConfig:
    """Connection settings for the messaging gateway."""

    base_url: str = ""
    token: str | None = None
    timeout: int = DEFAULT_CHANNEL_TIMEOUT

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ChannelConfig:
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ConfigError("Config section 'channel' must be a mapping")
        timeout = _int_option(data, "timeout", DEFAULT_CHANNEL_TIMEOUT)
        if timeout <= 0:
            raise ConfigError("Config option 'channel.timeout' must be positive")
        return cls(
            base_url=str(data.get("base_url") or ""),
            token=data.get("token"),
            timeout=timeout,
        )


@dataclass
class ImporterConfig:
    """Typed configuration for the import executor.

    Defaults give a conservative pace: one message every 3-10 seconds and at
    most 1000 attempts per rolling day.
    """

    # Pacing
    min_delay: int = DEFAULT_MIN_DELAY
    max_delay: int = DEFAULT_MAX_DELAY
    daily_ceiling: int = DEFAULT_DAILY_CEILING

    # Retry
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    channel: ChannelConfig = field(default_factory=ChannelConfig)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Check option ranges.

        Raises:
            ConfigError: If any value is outside its allowed range
        """
        for name in ("min_delay", "max_delay"):
            value = getattr(self, name)
            if not MIN_ALLOWED_DELAY <= value <= MAX_ALLOWED_DELAY:
                raise ConfigError(
                    f"{name} must be between {MIN_ALLOWED_DELAY} and "
                    f"{MAX_ALLOWED_DELAY} seconds, got {value}"
                )
        if self.min_delay > self.max_delay:
            raise ConfigError(
                f"min_delay ({self.min_delay}) cannot be greater than "
                f"max_delay ({self.max_delay})"
            )
        if self.daily_ceiling < 1:
            raise ConfigError("daily_ceiling must be at least 1")
        if not 1 <= self.max_attempts <= MAX_ALLOWED_ATTEMPTS:
            raise ConfigError(
                f"max_attempts must be between 1 and {MAX_ALLOWED_ATTEMPTS}, "
                f"got {self.max_attempts}"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImporterConfig:
        """Create an ImporterConfig from a raw config dictionary."""
        if not isinstance(data, dict):
            raise ConfigError("Configuration must be a mapping")
        return cls(
            min_delay=_int_option(data, "min_delay", DEFAULT_MIN_DELAY),
            max_delay=_int_option(data, "max_delay", DEFAULT_MAX_DELAY),
            daily_ceiling=_int_option(data, "daily_ceiling", DEFAULT_DAILY_CEILING),
            max_attempts=_int_option(data, "max_attempts", DEFAULT_MAX_ATTEMPTS),
            channel=ChannelConfig.from_dict(data.get("channel")),
        )

    def with_overrides(self, **overrides: Any) -> ImporterConfig:
        """Return a copy with the non-None overrides applied (and re-validated)."""
        values = {k: v for k, v in overrides.items() if v is not None}
        channel_values = {
            key[len("channel_"):]: values.pop(key)
            for key in list(values)
            if key.startswith("channel_")
        }
        channel = replace(self.channel, **channel_values) if channel_values else self.channel
        return replace(self, channel=channel, **values)


def parse_sleep_range(value: str) -> tuple[int, int]:
    """
    Parse a sleep range given as ``"5"`` or ``"3-10"``.

    Args:
        value: The range string from the command line

    Returns:
        (min_delay, max_delay) in seconds

    Raises:
        ConfigError: If the string is malformed or out of range
    """
    match = _SLEEP_RANGE_PATTERN.match(value or "")
    if not match:
        raise ConfigError(
            f"Invalid sleep range {value!r}: use a number (5) or a range (3-10)"
        )
    low = int(match.group(1))
    high = int(match.group(2)) if match.group(2) is not None else low
    if low > high:
        raise ConfigError(f"Invalid sleep range {value!r}: minimum exceeds maximum")
    for bound in (low, high):
        if not MIN_ALLOWED_DELAY <= bound <= MAX_ALLOWED_DELAY:
            raise ConfigError(
                f"Sleep values must be between {MIN_ALLOWED_DELAY} and "
                f"{MAX_ALLOWED_DELAY} seconds"
            )
    return low, high


def load_config(config_path: Path) -> ImporterConfig:
    """
    Load configuration from YAML file and apply default values.

    A missing file is not an error: a warning is logged and defaults are used.
    A file that exists but cannot be parsed, or holds invalid values, is.

    Args:
        config_path: Path to the config YAML file

    Returns:
        ImporterConfig with all necessary defaults applied

    Raises:
        ConfigError: If the file is unreadable or its values are invalid
    """
    raw: dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path) as f:
                loaded_config = yaml.safe_load(f)
                # Handle None result from empty file
                if loaded_config is not None:
                    raw = loaded_config
        except (yaml.YAMLError, OSError) as e:
            raise ConfigError(f"Failed to load config file {config_path}: {e}") from e
        log_with_context(logging.INFO, f"Loaded configuration from {config_path}")
    else:
        log_with_context(
            logging.WARNING,
            f"Config file {config_path} not found, using default settings",
        )

    return ImporterConfig.from_dict(raw)


def create_default_config(output_path: Path) -> bool:
    """
    Create a default configuration file with recommended settings.

    The function will not overwrite an existing configuration file.

    Args:
        output_path: Path where the default config should be saved

    Returns:
        True if the config file was created successfully, False otherwise
    """
    if output_path.exists():
        log_with_context(
            logging.WARNING,
            f"Config file {output_path} already exists, not overwriting",
        )
        return False

    default_config = {
        # Seconds between messages (a random value in this range is used)
        "min_delay": DEFAULT_MIN_DELAY,
        "max_delay": DEFAULT_MAX_DELAY,
        # Attempts allowed in any rolling 24 hour window
        "daily_ceiling": DEFAULT_DAILY_CEILING,
        # Failed attempts per message before it is given up on
        "max_attempts": DEFAULT_MAX_ATTEMPTS,
        "channel": {
            "base_url": "http://localhost:3000",
            "token": None,
            "timeout": DEFAULT_CHANNEL_TIMEOUT,
        },
    }

    try:
        with open(output_path, "w") as f:
            yaml.safe_dump(default_config, f, default_flow_style=False, sort_keys=False)
        log_with_context(logging.INFO, f"Created default config file at {output_path}")
        return True
    except OSError as e:
        log_with_context(logging.ERROR, f"Failed to create default config file: {e}")
        return False
