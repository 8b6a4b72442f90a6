"""
Check Updates - Configuration
Probe settings from the command line, layered over an optional JSON file.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from core.errors import ConfigurationError
from core.scheduler import ScheduleSpec, parse_schedule

logger = logging.getLogger(__name__)

DEFAULT_WARNING = 10
DEFAULT_CRITICAL = 20

# JSON keys accepted in the config file, mapped to Config fields
FILE_KEYS = {
    "lock": "lock_file",
    "cron": "cron_spec",
    "warning": "warning_threshold",
    "critical": "critical_threshold",
    "security_update": "apply_security_updates",
    "update": "apply_updates",
    "yes": "non_interactive",
    "log_file": "log_file",
    "phase_timeout": "phase_timeout",
}

# Accepted JSON value types per key; null is always allowed
FILE_TYPES = {
    "lock": (str,),
    "cron": (str,),
    "warning": (int,),
    "critical": (int,),
    "security_update": (bool,),
    "update": (bool,),
    "yes": (bool,),
    "log_file": (str,),
    "phase_timeout": (int, float),
}


def _check_file_value(key: str, value) -> None:
    if value is None:
        return
    expected = FILE_TYPES[key]
    # bool is an int subclass but never a valid number here
    if isinstance(value, bool) and bool not in expected:
        valid = False
    else:
        valid = isinstance(value, expected)
    if not valid:
        names = " or ".join(t.__name__ for t in expected)
        raise ConfigurationError(
            f"Config key '{key}' must be {names}, got {type(value).__name__}"
        )


@dataclass
class Config:
    """Validated probe configuration."""
    lock_file: Optional[Path] = None
    cron_spec: Optional[str] = None
    warning_threshold: int = DEFAULT_WARNING
    critical_threshold: int = DEFAULT_CRITICAL
    apply_security_updates: bool = False
    apply_updates: bool = False
    non_interactive: bool = False
    log_file: Optional[Path] = None
    phase_timeout: Optional[float] = None
    schedule: Optional[ScheduleSpec] = None

    @property
    def scheduled(self) -> bool:
        """True when running as a scheduled (cron) check."""
        return self.cron_spec is not None

    @property
    def applying(self) -> bool:
        return self.apply_updates or self.apply_security_updates

    def validate(self) -> "Config":
        """
        Check option consistency and parse the schedule.

        Raises:
            ConfigurationError: on invalid settings.
        """
        if self.cron_spec is not None and self.lock_file is None:
            raise ConfigurationError("--cron requires --lock")
        try:
            self.warning_threshold = int(self.warning_threshold)
            self.critical_threshold = int(self.critical_threshold)
            if self.phase_timeout is not None:
                self.phase_timeout = float(self.phase_timeout)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e
        if self.warning_threshold < 0 or self.critical_threshold < 0:
            raise ConfigurationError("Thresholds must not be negative")
        if self.phase_timeout is not None and self.phase_timeout <= 0:
            raise ConfigurationError("Phase timeout must be positive")
        if self.cron_spec is not None:
            self.schedule = parse_schedule(self.cron_spec)
        return self


def load_config_file(config_path: Path) -> dict:
    """
    Load defaults from a JSON config file.

    Returns:
        Dict keyed by Config field names.

    Raises:
        ConfigurationError: if the file is unreadable, has unknown keys or
            values of the wrong type.
    """
    try:
        with open(config_path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        raise ConfigurationError(f"Failed to load config {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config {config_path} must contain a JSON object")

    unknown = sorted(set(data) - set(FILE_KEYS))
    if unknown:
        raise ConfigurationError(f"Unknown config keys in {config_path}: {', '.join(unknown)}")

    for key, value in data.items():
        _check_file_value(key, value)

    values = {FILE_KEYS[key]: value for key, value in data.items()}
    for key in ("lock_file", "log_file"):
        if values.get(key) is not None:
            values[key] = Path(values[key])
    logger.debug(f"Loaded config file {config_path}")
    return values


def build_config(args, file_values: Optional[dict] = None) -> Config:
    """
    Merge parsed command-line arguments over config file values.

    Arguments left unset on the command line (None) fall back to the file,
    then to the defaults.
    """
    values = dict(file_values or {})
    overrides = {
        "lock_file": Path(args.lock) if args.lock else None,
        "cron_spec": args.cron,
        "warning_threshold": args.warning,
        "critical_threshold": args.critical,
        "apply_security_updates": args.security_update or None,
        "apply_updates": args.update or None,
        "non_interactive": args.yes or None,
        "log_file": Path(args.log_file) if args.log_file else None,
        "phase_timeout": args.phase_timeout,
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    try:
        config = Config(**values)
    except TypeError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
    return config.validate()
