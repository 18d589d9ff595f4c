"""Configuration models and helpers for the focus tracker."""

from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from .models import FocusSet


class ConfigError(ValueError):
    """Raised when the configuration file or classification policy is invalid."""


_LOG_LEVELS = ("debug", "info", "warning", "error")

DEFAULT_CONFIG_TEMPLATE = """\
# focusdebt configuration

# How often the focused window is sampled.
tracking_interval_ms = 1000

# How often tracked intervals are written to the database.
save_interval_ms = 30000

# Minimum uninterrupted focus time that counts as deep focus.
deep_focus_threshold_minutes = 30

# Consecutive failed window probes tolerated before the open interval is closed.
gap_tolerance = 2

# Upper bound for a single window probe.
probe_timeout_ms = 500

# Applications and sites that count as focus work.
focus_apps = ["code", "nvim", "vim", "emacs"]
focus_sites = ["github.com", "docs.python.org"]

# Applications whose time is not tracked at all.
ignored_apps = []

log_level = "info"
"""


@dataclass(slots=True)
class TrackerSettings:
    """Runtime configuration for a tracking session."""

    tracking_interval: timedelta = timedelta(milliseconds=1000)
    save_interval: timedelta = timedelta(seconds=30)
    deep_focus_threshold: timedelta = timedelta(minutes=30)
    gap_tolerance: int = 2
    probe_timeout: Optional[timedelta] = None
    focus_apps: list[str] = field(default_factory=list)
    focus_domains: list[str] = field(default_factory=list)
    ignored_apps: list[str] = field(default_factory=list)
    database_path: Optional[Path] = None
    log_level: str = "info"

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.tracking_interval <= timedelta(0):
            raise ConfigError("tracking_interval_ms must be positive")
        if self.save_interval <= timedelta(0):
            raise ConfigError("save_interval_ms must be positive")
        if self.deep_focus_threshold <= timedelta(0):
            raise ConfigError("deep_focus_threshold_minutes must be positive")
        if self.gap_tolerance < 0:
            raise ConfigError("gap_tolerance must not be negative")
        if self.probe_timeout is not None and self.probe_timeout <= timedelta(0):
            raise ConfigError("probe_timeout_ms must be positive")
        if self.log_level.lower() not in _LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")

    @property
    def effective_probe_timeout(self) -> timedelta:
        if self.probe_timeout is not None:
            return self.probe_timeout
        return min(self.tracking_interval / 2, timedelta(seconds=2))

    @property
    def deep_focus_gap(self) -> timedelta:
        """Longest unattributed stretch that still joins two focus intervals."""
        return self.tracking_interval * (self.gap_tolerance + 1)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TrackerSettings":
        """Build settings from a parsed TOML document."""
        try:
            probe_timeout_ms = data.get("probe_timeout_ms")
            database_path = data.get("database_path")
            return cls(
                tracking_interval=timedelta(
                    milliseconds=_number(data, "tracking_interval_ms", 1000)
                ),
                save_interval=timedelta(milliseconds=_number(data, "save_interval_ms", 30000)),
                deep_focus_threshold=timedelta(
                    minutes=_number(data, "deep_focus_threshold_minutes", 30)
                ),
                gap_tolerance=int(_number(data, "gap_tolerance", 2)),
                probe_timeout=(
                    timedelta(milliseconds=_number(data, "probe_timeout_ms", 0))
                    if probe_timeout_ms is not None
                    else None
                ),
                focus_apps=_string_list(data, "focus_apps"),
                focus_domains=_string_list(data, "focus_sites"),
                ignored_apps=_string_list(data, "ignored_apps"),
                database_path=Path(database_path).expanduser() if database_path else None,
                log_level=str(data.get("log_level", "info")),
            )
        except ConfigError:
            raise
        except (TypeError, ValueError) as exc:
            raise ConfigError(str(exc)) from exc

    def focus_set(
        self,
        extra_focus_apps: Iterable[str] = (),
        extra_focus_domains: Iterable[str] = (),
        extra_ignored_apps: Iterable[str] = (),
    ) -> FocusSet:
        """Merge configured policy with entries managed through the CLI."""
        return FocusSet.build(
            focus_apps=[*self.focus_apps, *extra_focus_apps],
            focus_domains=[*self.focus_domains, *extra_focus_domains],
            ignored_apps=[*self.ignored_apps, *extra_ignored_apps],
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "tracking_interval_ms": int(self.tracking_interval.total_seconds() * 1000),
            "save_interval_ms": int(self.save_interval.total_seconds() * 1000),
            "deep_focus_threshold_minutes": self.deep_focus_threshold.total_seconds() / 60,
            "gap_tolerance": self.gap_tolerance,
            "probe_timeout_ms": int(self.effective_probe_timeout.total_seconds() * 1000),
            "focus_apps": list(self.focus_apps),
            "focus_sites": list(self.focus_domains),
            "ignored_apps": list(self.ignored_apps),
            "database_path": str(self.database_path) if self.database_path else None,
            "log_level": self.log_level,
        }


def load_settings(path: Path) -> TrackerSettings:
    """Read settings from ``path``; a missing file yields the defaults."""
    return TrackerSettings.from_mapping(_read_mapping(path))


def _read_mapping(path: Path) -> dict[str, Any]:
    path = Path(path)
    if not path.exists():
        return {}
    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Could not read {path}: {exc}") from exc
    return data


def write_default_config(path: Path, *, force: bool = False) -> Path:
    path = Path(path)
    if path.exists() and not force:
        raise ConfigError(f"{path} already exists; use --force to overwrite it")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
    return path


# Keys accepted by ``focusdebt config set`` and how their values are parsed.
SETTING_KINDS: dict[str, str] = {
    "tracking_interval_ms": "number",
    "save_interval_ms": "number",
    "deep_focus_threshold_minutes": "number",
    "gap_tolerance": "integer",
    "probe_timeout_ms": "number",
    "focus_apps": "list",
    "focus_sites": "list",
    "ignored_apps": "list",
    "database_path": "string",
    "log_level": "string",
}


def parse_setting(key: str, text: str) -> Any:
    """Convert a command-line value to the type stored under ``key``."""
    kind = SETTING_KINDS.get(key)
    if kind is None:
        raise ConfigError(f"Unknown setting {key!r}; expected one of {', '.join(SETTING_KINDS)}")
    text = text.strip()
    if kind == "list":
        return [item.strip() for item in text.split(",") if item.strip()]
    if kind == "string":
        return text
    try:
        value = float(text)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {text!r}") from None
    if kind == "integer":
        if not value.is_integer():
            raise ConfigError(f"{key} must be a whole number, got {text!r}")
        return int(value)
    return int(value) if value.is_integer() else value


def update_setting(path: Path, key: str, text: str) -> TrackerSettings:
    """Set one key in the config file, keeping every other key as written.

    The file is only rewritten when the updated document still validates.
    """
    data = _read_mapping(path)
    data[key] = parse_setting(key, text)
    settings = TrackerSettings.from_mapping(data)
    save_mapping(path, data)
    return settings


def save_mapping(path: Path, data: Mapping[str, Any]) -> Path:
    path = Path(path)
    ordered = [key for key in SETTING_KINDS if key in data]
    ordered += sorted(key for key in data if key not in SETTING_KINDS)
    lines = ["# focusdebt configuration", ""]
    for key in ordered:
        if data[key] is None:
            continue
        lines.append(f"{key} = {_toml_value(data[key])}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def _toml_value(value: Any) -> str:
    # JSON string escapes are valid TOML basic strings.
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    raise ConfigError(f"Cannot store {value!r} in the configuration file")



def _number(data: Mapping[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{key} must be a number, got {value!r}")
    return float(value)


def _string_list(data: Mapping[str, Any], key: str) -> list[str]:
    value = data.get(key, [])
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"{key} must be a list of strings")
    return [item.strip() for item in value if item.strip()]
