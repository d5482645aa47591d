# authwatch/config.py
from dataclasses import dataclass, fields, replace
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigError
from .models import MAX_WINDOW, DetectionRule, Severity

DEFAULT_RULE_NAME = "Burst"

_INT_FIELDS = ("threshold", "window_minutes", "ttl_minutes")
_DURATION_FIELDS = ("window_minutes", "ttl_minutes")
_PATH_FIELDS = ("log_dir", "rule_dir", "state_path")

MAX_DURATION_MINUTES = int(MAX_WINDOW.total_seconds() // 60)


@dataclass(frozen=True)
class DetectorConfig:
    threshold: int = 3           # default rule fires on more than this many events
    window_minutes: int = 5
    ttl_minutes: int = 60        # cooldown before the same finding alerts again
    log_dir: str = "data"
    rule_dir: str = "rules"
    state_path: str = "state/seen.json"
    db_path: Optional[str] = None
    journal_year: Optional[int] = None

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.window_minutes)

    @property
    def ttl(self) -> timedelta:
        return timedelta(minutes=self.ttl_minutes)

    def default_rule(self) -> DetectionRule:
        return DetectionRule(
            name=DEFAULT_RULE_NAME,
            threshold=self.threshold,
            window=self.window,
            severity=Severity.MEDIUM,
            description="Burst of error events from one identity",
        )

    def validate(self) -> "DetectorConfig":
        for name in _INT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise ConfigError(f"{name} must be >= 0, got {value}")
        for name in _DURATION_FIELDS:
            value = getattr(self, name)
            if value > MAX_DURATION_MINUTES:
                raise ConfigError(f"{name} must be <= {MAX_DURATION_MINUTES}, got {value}")
        for name in _PATH_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise ConfigError(f"{name} must be a non-empty string, got {value!r}")
        if self.db_path is not None and not isinstance(self.db_path, str):
            raise ConfigError(f"db_path must be a string, got {self.db_path!r}")
        if self.journal_year is not None and (
            isinstance(self.journal_year, bool) or not isinstance(self.journal_year, int)
        ):
            raise ConfigError(f"journal_year must be an integer, got {self.journal_year!r}")
        return self


def _read_config_file(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must hold a mapping")
    return data


def load_config(path=None, **overrides) -> DetectorConfig:
    """
    Build the detector config: defaults, then the YAML file at path,
    then every override that is not None.
    """
    known = {f.name for f in fields(DetectorConfig)}
    values: Dict[str, Any] = {}

    if path is not None:
        values.update(_read_config_file(Path(path)))

    values.update({k: v for k, v in overrides.items() if v is not None})

    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigError(f"unknown config keys: {', '.join(unknown)}")

    return replace(DetectorConfig(), **values).validate()
