"""Persistent, hierarchical configuration store for sar-cli.

Settings live in a single YAML document (``~/.sar-cli/config.yaml`` by default)
and are addressed with dot-paths, e.g.::

    store.get("server.defaultPort")
    store.set("monitoring.alerts.slack", True)

The store follows a deliberately asymmetric failure policy:

* :meth:`ConfigStore.load` never raises. A missing file is replaced by the
  built-in defaults (and persisted); an unreadable or corrupt file is logged as
  a warning and the defaults are used for the rest of the process.
* :meth:`ConfigStore.save` raises :class:`ConfigSaveError` so callers can
  surface persistence problems and exit non-zero.

The store takes no locks. Two processes saving concurrently race and the last
writer wins.
"""
from __future__ import annotations

import copy
import json
import os
import tempfile
from collections.abc import Iterator, Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load sar-cli configuration. Install with "
        "`pip install sar-cli` or ensure PyYAML>=6.0 is available."
    ) from exc

from .logging import LogLevel, LogSink

HOME_ENV_VAR = "SAR_CLI_HOME"
DEFAULT_HOME_DIRNAME = ".sar-cli"
CONFIG_FILENAME = "config.yaml"
VALUE_TYPES = ("string", "number", "boolean", "json")
REQUIRED_KEYS = ("general.timezone", "server.defaultPort", "server.logLevel")


class ConfigError(RuntimeError):
    """Base class for configuration failures."""


class NotLoadedError(ConfigError):
    """Raised when the store is used before :meth:`ConfigStore.load`."""

    def __init__(self) -> None:
        super().__init__("Configuration not loaded. Call load() first.")


class InvalidKeyError(ConfigError):
    """Raised for dot-paths containing empty segments."""


class ConfigSaveError(ConfigError):
    """Raised when the configuration file cannot be written."""


class ConfigValueError(ConfigError):
    """Raised when a raw CLI value cannot be coerced to the requested type."""


def default_config() -> dict[str, Any]:
    """Return a fresh copy of the built-in configuration tree."""
    return {
        "general": {
            "theme": "default",
            "verbose": False,
            "autoUpdate": True,
            "timezone": "UTC",
        },
        "project": {
            "defaultTemplate": "basic",
            "autoInit": True,
            "gitInitOnCreate": True,
        },
        "deploy": {
            "defaultEnvironment": "development",
            "confirmBeforeDeploy": True,
            "backupBeforeDeploy": True,
            "rollbackOnFailure": True,
        },
        "server": {
            "defaultPort": 3000,
            "autoRestart": True,
            "logLevel": "info",
        },
        "database": {
            "defaultEngine": "sqlite",
            "backupRetention": 7,
            "autoMigrate": False,
        },
        "monitoring": {
            "enabled": True,
            "interval": 30,
            "alerts": {
                "email": False,
                "slack": False,
            },
        },
        "security": {
            "enforceSSL": True,
            "sessionTimeout": 3600,
            "rateLimiting": True,
        },
    }


def resolve_home(env: Mapping[str, str] | None = None) -> Path:
    """Return the per-user sar-cli directory (``$SAR_CLI_HOME`` or ``~/.sar-cli``)."""
    source = os.environ if env is None else env
    override = source.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / DEFAULT_HOME_DIRNAME


def split_key(key: str) -> list[str]:
    """Split a dot-path into segments, rejecting empty segments."""
    if not isinstance(key, str) or not key:
        raise InvalidKeyError("Configuration key must be a non-empty string.")
    segments = key.split(".")
    if any(not segment for segment in segments):
        raise InvalidKeyError(f"Configuration key '{key}' contains an empty segment.")
    return segments


def flatten(tree: Mapping[str, Any], prefix: str = "") -> Iterator[tuple[str, Any]]:
    """Yield ``(dot.path, value)`` pairs for every leaf in *tree*.

    Empty mappings are reported as leaves so they remain visible in listings.
    """
    for key, value in tree.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping) and value:
            yield from flatten(value, path)
        else:
            yield path, value


def coerce_value(raw: str, type_name: str = "string") -> Any:
    """Convert a raw command-line string to the requested value type."""
    if type_name == "string":
        return raw
    if type_name == "number":
        try:
            return int(raw)
        except ValueError:
            pass
        try:
            return float(raw)
        except ValueError as exc:
            raise ConfigValueError(f"Invalid number value: {raw!r}") from exc
    if type_name == "boolean":
        return raw.strip().lower() in {"true", "1"}
    if type_name == "json":
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigValueError(f"Invalid json value: {exc.msg}") from exc
    raise ConfigValueError(
        f"Unsupported value type '{type_name}' (expected one of: {', '.join(VALUE_TYPES)})."
    )


@dataclass(slots=True, frozen=True)
class ConfigIssue:
    """Single finding reported by :func:`validate_config`."""

    severity: str  # "error" or "warning"
    key: str
    message: str

    @property
    def is_error(self) -> bool:
        return self.severity == "error"


def _lookup(tree: Mapping[str, Any], segments: Sequence[str]) -> tuple[bool, Any]:
    node: Any = tree
    for segment in segments:
        if not isinstance(node, Mapping) or segment not in node:
            return False, None
        node = node[segment]
    return True, node


def _type_name(value: object) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Mapping):
        return "mapping"
    if isinstance(value, list):
        return "list"
    return type(value).__name__


def validate_config(
    tree: Mapping[str, Any],
    *,
    defaults: Mapping[str, Any] | None = None,
    required: Sequence[str] = REQUIRED_KEYS,
) -> list[ConfigIssue]:
    """Check *tree* for missing required keys and values of the wrong type.

    Missing required keys are errors. A value whose type differs from the
    default at the same path is a warning.
    """
    issues: list[ConfigIssue] = []
    for key in required:
        found, _ = _lookup(tree, split_key(key))
        if not found:
            issues.append(ConfigIssue("error", key, "Required key missing"))

    for key, default in flatten(defaults if defaults is not None else default_config()):
        found, value = _lookup(tree, split_key(key))
        if not found:
            continue
        expected, actual = _type_name(default), _type_name(value)
        if expected != actual:
            issues.append(ConfigIssue("warning", key, f"Expected {expected}, got {actual}"))
    return issues


def _merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """Recursively merge *overlay* into *base*; overlay values win."""
    for key, value in overlay.items():
        current = base.get(key)
        if isinstance(current, MutableMapping) and isinstance(value, Mapping):
            _merge(current, value)
        else:
            base[key] = value
    return base


class ConfigStore:
    """Dot-path addressable settings backed by one YAML file."""

    def __init__(
        self,
        config_dir: Path | None = None,
        *,
        logger: LogSink | None = None,
        defaults: Mapping[str, Any] | None = None,
        filename: str = CONFIG_FILENAME,
    ) -> None:
        self._config_dir = (config_dir or resolve_home()).expanduser()
        self._config_file = self._config_dir / filename
        self._logger = logger
        self._defaults = copy.deepcopy(dict(defaults)) if defaults is not None else None
        self._tree: dict[str, Any] = {}
        self._loaded = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def config_dir(self) -> Path:
        """Directory holding the configuration file."""
        return self._config_dir

    @property
    def config_file(self) -> Path:
        """Path of the YAML configuration file."""
        return self._config_file

    @property
    def loaded(self) -> bool:
        """Whether :meth:`load` has completed."""
        return self._loaded

    def defaults(self) -> dict[str, Any]:
        """Return a fresh copy of the default tree used by this store."""
        if self._defaults is None:
            return default_config()
        return copy.deepcopy(self._defaults)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def load(self) -> None:
        """Populate the tree from disk, falling back to the defaults.

        Never raises: every failure is logged as a warning and the defaults
        are substituted.
        """
        try:
            self._config_dir.mkdir(parents=True, exist_ok=True)
            if self._config_file.exists():
                self._tree = self._read_file()
                self._loaded = True
                self._log(LogLevel.DEBUG, "Configuration loaded successfully")
                return
        except (OSError, UnicodeDecodeError, yaml.YAMLError, ConfigError) as exc:
            self._log(LogLevel.WARN, "Failed to load configuration:", str(exc))
            self._tree = self.defaults()
            self._loaded = True
            return

        self._tree = self.defaults()
        self._loaded = True
        try:
            self.save()
        except ConfigSaveError as exc:
            self._log(LogLevel.WARN, "Default configuration could not be persisted:", str(exc))
            return
        self._log(LogLevel.INFO, "Default configuration created")

    def _read_file(self) -> dict[str, Any]:
        data = yaml.safe_load(self._config_file.read_text(encoding="utf-8"))
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise ConfigError(
                f"Configuration file {self._config_file} must contain a mapping at the top level."
            )
        return dict(_merge(self.defaults(), data))

    def save(self) -> None:
        """Atomically write the full tree to the configuration file."""
        self._require_loaded()
        try:
            self._config_dir.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_name = tempfile.mkstemp(
                dir=str(self._config_dir), prefix=f".{self._config_file.name}."
            )
            tmp_path = Path(tmp_name)
            try:
                with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                    yaml.safe_dump(
                        self._tree,
                        handle,
                        sort_keys=False,
                        default_flow_style=False,
                        indent=2,
                    )
                os.replace(tmp_path, self._config_file)
            finally:
                tmp_path.unlink(missing_ok=True)
        except (OSError, yaml.YAMLError) as exc:
            self._log(LogLevel.ERROR, "Failed to save configuration:", str(exc))
            raise ConfigSaveError(
                f"Failed to write configuration file {self._config_file}: {exc}"
            ) from exc
        self._log(LogLevel.DEBUG, "Configuration saved successfully")

    # ------------------------------------------------------------------
    # Tree access
    # ------------------------------------------------------------------
    def get(self, key: str, default: Any = None) -> Any:
        """Return the value at *key*, or *default* when any segment is missing."""
        self._require_loaded()
        found, value = _lookup(self._tree, split_key(key))
        return value if found else default

    def set(self, key: str, value: Any) -> None:
        """Assign *value* at *key*, replacing non-mapping intermediates."""
        self._require_loaded()
        *parents, leaf = split_key(key)
        node: dict[str, Any] = self._tree
        for segment in parents:
            child = node.get(segment)
            if not isinstance(child, dict):
                child = {}
                node[segment] = child
            node = child
        node[leaf] = value

    def unset(self, key: str) -> bool:
        """Remove *key*; return ``False`` when it was not present."""
        self._require_loaded()
        *parents, leaf = split_key(key)
        node: Any = self._tree
        for segment in parents:
            if not isinstance(node, MutableMapping) or segment not in node:
                return False
            node = node[segment]
        if not isinstance(node, MutableMapping) or leaf not in node:
            return False
        del node[leaf]
        return True

    def has(self, key: str) -> bool:
        """Return ``True`` when every segment of *key* resolves."""
        self._require_loaded()
        found, _ = _lookup(self._tree, split_key(key))
        return found

    def get_all(self) -> dict[str, Any]:
        """Return a shallow copy of the root tree."""
        self._require_loaded()
        return dict(self._tree)

    def clear(self) -> None:
        """Drop every setting from the in-memory tree."""
        self._require_loaded()
        self._tree = {}

    def reset(self) -> None:
        """Replace the in-memory tree with the defaults."""
        self._require_loaded()
        self._tree = self.defaults()

    def validate(self) -> list[ConfigIssue]:
        """Validate the in-memory tree against this store's defaults."""
        self._require_loaded()
        return validate_config(self._tree, defaults=self.defaults())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _require_loaded(self) -> None:
        if not self._loaded:
            raise NotLoadedError()

    def _log(self, level: LogLevel, message: str, *args: object) -> None:
        if self._logger is not None:
            self._logger.log(level, message, *args)


__all__ = [
    "CONFIG_FILENAME",
    "HOME_ENV_VAR",
    "REQUIRED_KEYS",
    "VALUE_TYPES",
    "ConfigError",
    "ConfigIssue",
    "ConfigSaveError",
    "ConfigStore",
    "ConfigValueError",
    "InvalidKeyError",
    "NotLoadedError",
    "coerce_value",
    "default_config",
    "flatten",
    "resolve_home",
    "split_key",
    "validate_config",
]
