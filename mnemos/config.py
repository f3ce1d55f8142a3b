"""
MNEMOS Configuration System

Process-wide defaults for memoized functions, statistics collection and
logging, loaded from YAML files and environment variables.

Configuration Sources (in order of precedence):
    1. Environment variables (MNEMOS_*)
    2. Runtime overrides (ConfigManager.set, ConfigManager.load_from_file)
    3. Default values

An environment value that does not parse or validate is skipped;
ConfigManager.validate() lists the ones being skipped.

Per-function options (MemoizeOptions) always win over these defaults.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import math
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

T = TypeVar("T")

_UNSET: Any = object()


class MnemosError(Exception):
    """Base error for MNEMOS."""
    pass


class ConfigError(MnemosError):
    """Configuration error."""
    pass


class ValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding,
    and validation.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Any = field(default=_UNSET, repr=False)

    def get(self) -> T:
        """Get the current value. An unusable environment value is skipped."""
        if self.env_var and self.env_var in os.environ and self.env_error() is None:
            return self._coerce(os.environ[self.env_var])

        return self.default if self._value is _UNSET else self._value

    def env_error(self) -> Optional[str]:
        """Why the bound environment variable cannot be used, or None."""
        if not self.env_var or self.env_var not in os.environ:
            return None
        raw = os.environ[self.env_var]
        try:
            value = self._coerce(raw)
        except ValueError:
            return f"{self.env_var}={raw!r} is not a {type(self.default).__name__}"
        if self.validator and not self.validator(value):
            return f"{self.env_var}={raw!r} failed validation"
        return None

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if self.validator and not self.validator(value):
            raise ValidationError(f"Invalid value for config: {value!r}")

        self._value = value

    def reset(self) -> None:
        """Forget any runtime override."""
        self._value = _UNSET

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.strip().lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            return int(value)  # type: ignore
        elif target_type == float:
            return float(value)  # type: ignore
        else:
            return value  # type: ignore


def _is_size(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0


@dataclass
class MemoizeDefaultsConfig:
    """Defaults applied when a memoized function leaves an option unset."""
    max_size: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=1.0,
        env_var="MNEMOS_MAX_SIZE",
        description="Default number of entries kept per memoized function",
        validator=_is_size,
    ))
    max_args: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=math.inf,
        env_var="MNEMOS_MAX_ARGS",
        description="Default number of leading arguments used for the key",
        validator=_is_size,
    ))
    max_age: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=math.inf,
        env_var="MNEMOS_MAX_AGE_MS",
        description="Default entry time-to-live in milliseconds",
        validator=_is_size,
    ))


@dataclass
class StatsConfig:
    """Configuration for call/hit statistics."""
    collect: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="MNEMOS_COLLECT_STATS",
        description="Collect call/hit statistics from process start",
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for logging."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="warning",
        env_var="MNEMOS_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="MNEMOS_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))
    debug_key_field: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="MNEMOS_DEBUG_KEYFIELD",
        description="Log key field transforms and key comparisons",
    ))


@dataclass
class MnemosConfig:
    """
    Root configuration for MNEMOS.

    Aggregates all component configurations.
    """
    defaults: MemoizeDefaultsConfig = field(default_factory=MemoizeDefaultsConfig)
    stats: StatsConfig = field(default_factory=StatsConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Thread-safe singleton that manages configuration lifecycle.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = MnemosConfig()
        self._initialized = True

    @property
    def config(self) -> MnemosConfig:
        """Get the current configuration."""
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data is not None and not isinstance(data, dict):
            raise ConfigError(f"Configuration root must be a mapping: {path}")

        if data:
            self._apply_dict(data)

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        """Apply dictionary values to configuration."""
        def apply_to_config(config_obj: Any, values: Dict[str, Any], prefix: str) -> None:
            for key, value in values.items():
                path = f"{prefix}{key}"
                if not hasattr(config_obj, key):
                    raise ConfigError(f"Unknown config key: {path}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value, f"{path}.")
                else:
                    raise ConfigError(f"Invalid config section: {path}")

        apply_to_config(self._config, data, "")

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("defaults.max_size", 100)
        """
        parts = path.split(".")
        obj: Any = self._config

        try:
            for part in parts[:-1]:
                obj = getattr(obj, part)
            attr = getattr(obj, parts[-1])
        except AttributeError as e:
            raise ConfigError(f"Invalid config path: {path}") from e

        if isinstance(attr, ConfigValue):
            attr.set(value)
        else:
            raise ConfigError(f"Invalid config path: {path}")

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("stats.collect")
        """
        obj: Any = self._config

        try:
            for part in path.split("."):
                obj = getattr(obj, part)
        except AttributeError as e:
            raise ConfigError(f"Invalid config path: {path}") from e

        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def reset(self) -> None:
        """Start over from defaults, dropping runtime overrides."""
        self._config = MnemosConfig()

    def validate(self) -> List[str]:
        """
        Report environment values that are being ignored.

        get() skips an unusable environment value and falls back to the
        runtime or default value; this lists what was skipped.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                problem = obj.env_error()
                if problem is not None:
                    errors.append(f"{path}: {problem}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors


def get_config() -> MnemosConfig:
    """Get the current MNEMOS configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()
