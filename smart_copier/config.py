"""Configuration management for Smart Copier.

Stores and retrieves user settings from a JSON config file
in the platform-appropriate application data directory.
A handful of settings can be overridden from the environment, which is
how container deployments pin them without editing the file.
"""

from __future__ import annotations

import json
import logging
import math
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from smart_copier.models import DetectionMode
from smart_copier.platform_utils import (
    get_config_dir as _platform_config_dir,
)
from smart_copier.platform_utils import (
    get_data_dir as _platform_data_dir,
)
from smart_copier.platform_utils import (
    get_log_path as _platform_log_path,
)

logger = logging.getLogger(__name__)

ENV_PREFIX = "SMART_COPIER_"

DEFAULT_IGNORED_EXTENSIONS = [".part", ".crdownload", ".tmp", ".!qb"]

DEFAULT_CONFIG: dict[str, Any] = {
    "associations": [],  # [{"id": ..., "input": ..., "output": ...}]
    "ignored_extensions": list(DEFAULT_IGNORED_EXTENSIONS),
    "scan_interval_seconds": 60,
    "dry_run": False,
    # ---- stability detection ----
    "detection_mode": DetectionMode.POLLING.value,  # polling | watch
    "stability_window_seconds": 10,  # only used in watch mode
    # ---- storage ----
    "database_path": "",  # blank = <data dir>/smart-copier.db
    # ---- path guard ----
    "allowed_source_roots": [],  # empty = no restriction
    "allowed_destination_roots": [],
    # ---- logging ----
    "log_level": "INFO",
    "max_log_size_mb": 10,  # rotate log when it exceeds this size
    "log_backup_count": 3,  # number of rotated log files to keep
}


class ConfigError(ValueError):
    """Raised for configuration values that cannot be used."""


def get_config_dir() -> Path:
    """Return the platform-appropriate application config directory."""
    return _platform_config_dir()


def get_config_path() -> Path:
    """Return the path to the configuration file."""
    return get_config_dir() / "config.json"


def get_log_path() -> Path:
    """Return the path to the log file."""
    return _platform_log_path()


def get_default_database_path() -> Path:
    """Return the default location of the copy ledger."""
    return _platform_data_dir() / "smart-copier.db"


@dataclass(frozen=True)
class Association:
    """A configured source root to destination root mapping."""

    id: str
    input: str
    output: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Association:
        try:
            return cls(id=str(data["id"]), input=str(data["input"]), output=str(data["output"]))
        except KeyError as exc:
            raise ConfigError(f"Association is missing {exc.args[0]!r}") from exc

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "input": self.input, "output": self.output}


@dataclass(frozen=True)
class SyncSettings:
    """Immutable view of the settings one scan cycle or copy job works with."""

    associations: tuple[Association, ...] = ()
    ignored_extensions: frozenset[str] = frozenset(DEFAULT_IGNORED_EXTENSIONS)
    scan_interval_seconds: float = 60
    dry_run: bool = False
    detection_mode: DetectionMode = DetectionMode.POLLING
    stability_window_seconds: float = 10

    def is_ignored(self, path: str | Path) -> bool:
        """Return True when *path* has one of the ignored extensions."""
        return os.path.splitext(str(path))[1].lower() in self.ignored_extensions


def normalize_extensions(values: Iterable[str]) -> list[str]:
    """Lower-case extensions and give each a single leading dot."""
    result = []
    for value in values:
        ext = value.strip().lower().lstrip(".")
        if ext:
            result.append(f".{ext}")
    return result


# ---- path guard ----


def _is_strictly_within(target: str, root: str) -> bool:
    resolved_target = os.path.abspath(target)
    resolved_root = os.path.abspath(root)
    return resolved_target.startswith(resolved_root.rstrip(os.sep) + os.sep)


def is_subdirectory_of_roots(target: str, roots: Iterable[str]) -> bool:
    """Return True when *target* lies strictly below one of *roots*."""
    return any(_is_strictly_within(target, root) for root in roots)


def validate_associations(
    associations: Iterable[Association],
    source_roots: list[str],
    destination_roots: list[str],
) -> None:
    """Raise ConfigError if an association is malformed or escapes its roots."""
    seen: set[str] = set()
    for assoc in associations:
        if not assoc.id:
            raise ConfigError("Association id must not be empty")
        if assoc.id in seen:
            raise ConfigError(f"Duplicate association id: {assoc.id}")
        seen.add(assoc.id)
        if not assoc.input or not assoc.output:
            raise ConfigError(f"Association {assoc.id} needs both input and output")
        if source_roots and not is_subdirectory_of_roots(assoc.input, source_roots):
            raise ConfigError(
                f"Input path must be a subdirectory of allowed roots: {assoc.input}"
            )
        if destination_roots and not is_subdirectory_of_roots(assoc.output, destination_roots):
            raise ConfigError(
                f"Output path must be a subdirectory of allowed roots: {assoc.output}"
            )


# ---- environment overrides ----


def _read_number(env: Mapping[str, str], key: str, minimum: float) -> float | None:
    raw = env.get(ENV_PREFIX + key)
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"Invalid numeric value for {ENV_PREFIX}{key}") from None
    if not math.isfinite(value) or value < minimum:
        raise ConfigError(f"Invalid numeric value for {ENV_PREFIX}{key}")
    return value


def _read_bool(env: Mapping[str, str], key: str) -> bool | None:
    raw = env.get(ENV_PREFIX + key)
    if not raw:
        return None
    normalized = raw.strip().lower()
    if normalized in ("true", "1", "yes"):
        return True
    if normalized in ("false", "0", "no"):
        return False
    raise ConfigError(f"Invalid boolean value for {ENV_PREFIX}{key}")


def _read_list(env: Mapping[str, str], key: str) -> list[str] | None:
    if ENV_PREFIX + key not in env:
        return None
    return [item.strip() for item in env[ENV_PREFIX + key].split(",") if item.strip()]


class Config:
    """Configuration manager backed by a JSON file."""

    def __init__(self, path: Path | None = None, env: Mapping[str, str] | None = None):
        """Load config from *path*, falling back to the platform default."""
        self._path = path or get_config_path()
        self._env = os.environ if env is None else env
        self._data: dict[str, Any] = dict(DEFAULT_CONFIG)
        self.load()

    # ---- persistence ----

    def load(self) -> None:
        """Load configuration from disk, applying defaults for missing keys."""
        if self._path.exists():
            try:
                with open(self._path, encoding="utf-8") as fh:
                    stored = json.load(fh)
                if not isinstance(stored, dict):
                    logger.warning(
                        "Config file %s does not hold a JSON object; using defaults.",
                        self._path,
                    )
                    self._data = dict(DEFAULT_CONFIG)
                    return
                # Merge stored values over defaults so new keys get defaults
                self._data = {**DEFAULT_CONFIG, **stored}
                logger.info("Configuration loaded from %s", self._path)
            except (json.JSONDecodeError, OSError) as exc:
                logger.warning("Could not read config (%s); using defaults.", exc)
                self._data = dict(DEFAULT_CONFIG)
        else:
            self._data = dict(DEFAULT_CONFIG)
            self.save()
            logger.info("Created default configuration at %s", self._path)

    def save(self) -> None:
        """Persist the current configuration to disk."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2)
            logger.info("Configuration saved.")
        except OSError as exc:
            logger.error("Failed to save configuration: %s", exc)

    @property
    def path(self) -> Path:
        return self._path

    # ---- associations ----

    @property
    def associations(self) -> list[Association]:
        """Return the configured source/destination mappings."""
        return [Association.from_dict(item) for item in self._data.get("associations", [])]

    @associations.setter
    def associations(self, value: Iterable[Association]) -> None:
        """Replace all mappings after checking them against the allowed roots."""
        items = list(value)
        validate_associations(
            items, self.allowed_source_roots, self.allowed_destination_roots
        )
        self._data["associations"] = [a.to_dict() for a in items]

    # ---- scanning ----

    @property
    def ignored_extensions(self) -> list[str]:
        """Return extensions (with leading dot) that are never copied."""
        return normalize_extensions(self._data.get("ignored_extensions", []))

    @ignored_extensions.setter
    def ignored_extensions(self, value: list[str]) -> None:
        """Set ignored extensions, normalising to lowercase with a dot."""
        self._data["ignored_extensions"] = normalize_extensions(value)

    @property
    def scan_interval(self) -> int:
        """Return the poll interval in seconds."""
        return int(self._data.get("scan_interval_seconds", 60))

    @scan_interval.setter
    def scan_interval(self, value: int) -> None:
        """Set the poll interval (minimum 1 s)."""
        self._data["scan_interval_seconds"] = max(1, int(value))

    @property
    def dry_run(self) -> bool:
        """Return whether transfers are only simulated."""
        return bool(self._data.get("dry_run", False))

    @dry_run.setter
    def dry_run(self, value: bool) -> None:
        self._data["dry_run"] = bool(value)

    @property
    def detection_mode(self) -> DetectionMode:
        """Return how stable files are detected."""
        try:
            return DetectionMode(self._data.get("detection_mode", DetectionMode.POLLING.value))
        except ValueError:
            return DetectionMode.POLLING

    @detection_mode.setter
    def detection_mode(self, value: DetectionMode | str) -> None:
        self._data["detection_mode"] = DetectionMode(value).value

    @property
    def stability_window(self) -> int:
        """Return the watch-mode stability window in seconds."""
        return int(self._data.get("stability_window_seconds", 10))

    @stability_window.setter
    def stability_window(self, value: int) -> None:
        """Set the stability window (minimum 1 s)."""
        self._data["stability_window_seconds"] = max(1, int(value))

    # ---- storage ----

    @property
    def database_path(self) -> Path:
        """Return the ledger location, honouring the environment override."""
        override = self._env.get(ENV_PREFIX + "DB_PATH")
        if override:
            return Path(override)
        stored = self._data.get("database_path", "")
        return Path(stored) if stored else get_default_database_path()

    @database_path.setter
    def database_path(self, value: str) -> None:
        self._data["database_path"] = str(value)

    # ---- path guard ----

    @property
    def allowed_source_roots(self) -> list[str]:
        return list(self._data.get("allowed_source_roots", []))

    @allowed_source_roots.setter
    def allowed_source_roots(self, value: list[str]) -> None:
        self._data["allowed_source_roots"] = [p.strip() for p in value if p.strip()]

    @property
    def allowed_destination_roots(self) -> list[str]:
        return list(self._data.get("allowed_destination_roots", []))

    @allowed_destination_roots.setter
    def allowed_destination_roots(self, value: list[str]) -> None:
        self._data["allowed_destination_roots"] = [p.strip() for p in value if p.strip()]

    # ---- logging ----

    @property
    def log_level(self) -> str:
        """Return the current logging level name."""
        return self._data.get("log_level", "INFO")

    @log_level.setter
    def log_level(self, value: str) -> None:
        """Set the logging level name."""
        self._data["log_level"] = value

    @property
    def max_log_size_mb(self) -> int:
        """Return the maximum log file size in MB before rotation."""
        return int(self._data.get("max_log_size_mb", 10))

    @max_log_size_mb.setter
    def max_log_size_mb(self, value: int) -> None:
        """Set the maximum log file size in MB (minimum 1)."""
        self._data["max_log_size_mb"] = max(1, int(value))

    @property
    def log_backup_count(self) -> int:
        """Return the number of rotated log backups to keep."""
        return int(self._data.get("log_backup_count", 3))

    @log_backup_count.setter
    def log_backup_count(self, value: int) -> None:
        """Set the number of rotated log backups to keep."""
        self._data["log_backup_count"] = max(0, int(value))

    # ---- convenience ----

    def is_configured(self) -> bool:
        """Return True when at least one association is set up."""
        return bool(self._data.get("associations"))

    def to_settings(self) -> SyncSettings:
        """
        Resolve the effective settings, environment first, then file, then defaults.

        Raises ConfigError for unusable environment values or associations.
        """
        associations = self.associations
        validate_associations(
            associations, self.allowed_source_roots, self.allowed_destination_roots
        )

        ignored = _read_list(self._env, "IGNORED_EXTENSIONS")
        interval = _read_number(self._env, "SCAN_INTERVAL_SECONDS", minimum=1)
        dry_run = _read_bool(self._env, "DRY_RUN")
        window = _read_number(self._env, "STABILITY_WINDOW_SECONDS", minimum=1)

        return SyncSettings(
            associations=tuple(associations),
            ignored_extensions=frozenset(
                normalize_extensions(ignored) if ignored is not None else self.ignored_extensions
            ),
            scan_interval_seconds=interval if interval is not None else max(1, self.scan_interval),
            dry_run=dry_run if dry_run is not None else self.dry_run,
            detection_mode=self.detection_mode,
            stability_window_seconds=window if window is not None else self.stability_window,
        )
