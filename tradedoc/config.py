"""
tradedoc Configuration System

Unified configuration management with YAML files, environment variables,
validation, and runtime updates.

Configuration Sources (in order of precedence):
    1. Environment variables (TRADEDOC_*)
    2. Runtime overrides
    3. User config file (~/.tradedoc/config.yaml)
    4. Project config file (./tradedoc.yaml)
    5. Default values
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

from tradedoc.core import HASH_ALGORITHMS

T = TypeVar("T")

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT_TYPES = ["SALES-QUOTE", "INVOICE", "PAYMENT-ORDER", "DELIVERY-ORDER"]


class ConfigError(Exception):
    """Configuration error."""
    pass


class ConfigValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding
    and validation.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])

        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if self.validator and not self.validator(value):
            raise ConfigValidationError(f"Invalid value for config: {value!r}")

        self._value = value

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            return int(value)  # type: ignore
        elif target_type == float:
            return float(value)  # type: ignore
        elif target_type == list:
            return [v.strip() for v in value.split(",") if v.strip()]  # type: ignore
        else:
            return value  # type: ignore


@dataclass
class SaltingConfig:
    """Configuration for salted leaf generation."""
    salt_bytes: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=16,
        env_var="TRADEDOC_SALT_BYTES",
        description="Random bytes per salt (minimum 16, i.e. 128 bits)",
        validator=lambda x: isinstance(x, int) and 16 <= x <= 64,
    ))


@dataclass
class MerkleConfig:
    """Configuration for the Merkle engine."""
    hash_algorithm: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="sha256",
        env_var="TRADEDOC_HASH_ALGORITHM",
        description="Leaf/node hash function (sha256, sha3_256)",
        validator=lambda x: x in HASH_ALGORITHMS,
    ))
    max_workers: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=4,
        env_var="TRADEDOC_MERKLE_MAX_WORKERS",
        description="Worker threads for batch root computation",
        validator=lambda x: isinstance(x, int) and x > 0,
    ))


@dataclass
class LedgerConfig:
    """Configuration for the ledger boundary."""
    confirmation_timeout_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=30.0,
        env_var="TRADEDOC_LEDGER_CONFIRM_TIMEOUT",
        description="Seconds to wait for a submitted transaction to confirm",
        validator=lambda x: x > 0,
    ))
    poll_interval_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=0.05,
        env_var="TRADEDOC_LEDGER_POLL_INTERVAL",
        description="Seconds between receipt polls",
        validator=lambda x: x > 0,
    ))


@dataclass
class DocumentsConfig:
    """Configuration for accepted document types."""
    allowed_types: ConfigValue[list] = field(default_factory=lambda: ConfigValue(
        default=list(DEFAULT_DOCUMENT_TYPES),
        env_var="TRADEDOC_DOCUMENT_TYPES",
        description="Document types accepted for issuance",
        validator=lambda x: isinstance(x, list) and all(isinstance(t, str) and t for t in x),
    ))


@dataclass
class StoreConfig:
    """Configuration for the convenience-copy store."""
    root: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="var/documents",
        env_var="TRADEDOC_STORE_ROOT",
        description="Directory holding raw/wrapped document copies",
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for Observability."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="TRADEDOC_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="TRADEDOC_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class TradedocConfig:
    """
    Root configuration for tradedoc.

    Aggregates all component configurations and provides
    loading/saving functionality.
    """
    salting: SaltingConfig = field(default_factory=SaltingConfig)
    merkle: MerkleConfig = field(default_factory=MerkleConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    documents: DocumentsConfig = field(default_factory=DocumentsConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False)


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

        self._config = TradedocConfig()
        self._config_paths: List[Path] = []
        self._watchers: List[Callable[[TradedocConfig], None]] = []
        self._initialized = True

    @property
    def config(self) -> TradedocConfig:
        """Get the current configuration."""
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if data:
            if not isinstance(data, dict):
                raise ConfigError(f"Configuration file must be a mapping: {path}")
            self._apply_dict(data)
            self._config_paths.append(path)

    def load_defaults(self) -> None:
        """Load default configuration files if they exist."""
        default_paths = [
            Path("tradedoc.yaml"),
            Path("config/tradedoc.yaml"),
            Path.home() / ".tradedoc" / "config.yaml",
        ]

        for path in default_paths:
            if path.exists():
                try:
                    self.load_from_file(path)
                except (ConfigError, yaml.YAMLError) as e:
                    logger.warning("ignoring unreadable config file %s: %s", path, e)

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        """Apply dictionary values to configuration."""
        def apply_to_config(config_obj: Any, values: Dict[str, Any]) -> None:
            for key, value in values.items():
                if hasattr(config_obj, key):
                    attr = getattr(config_obj, key)
                    if isinstance(attr, ConfigValue):
                        attr.set(value)
                    elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                        apply_to_config(attr, value)

        apply_to_config(self._config, data)

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("merkle.hash_algorithm", "sha3_256")
        """
        parts = path.split(".")
        obj: Any = self._config

        try:
            for part in parts[:-1]:
                obj = getattr(obj, part)
            attr = getattr(obj, parts[-1])
        except AttributeError:
            raise ConfigError(f"Invalid config path: {path}") from None

        if isinstance(attr, ConfigValue):
            attr.set(value)
        else:
            raise ConfigError(f"Invalid config path: {path}")

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("salting.salt_bytes")
        """
        parts = path.split(".")
        obj: Any = self._config

        try:
            for part in parts:
                obj = getattr(obj, part)
        except AttributeError:
            raise ConfigError(f"Invalid config path: {path}") from None

        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def watch(self, callback: Callable[[TradedocConfig], None]) -> None:
        """Register a callback for configuration changes."""
        self._watchers.append(callback)

    def reload(self) -> None:
        """Reload configuration from all loaded files."""
        paths = list(self._config_paths)
        self._config_paths = []
        for path in paths:
            if path.exists():
                self.load_from_file(path)

        for watcher in self._watchers:
            watcher(self._config)

    def reset(self) -> None:
        """Restore defaults (drops file and runtime overrides, and watchers)."""
        self._config = TradedocConfig()
        self._config_paths = []
        self._watchers = []

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                    if obj.validator and not obj.validator(value):
                        errors.append(f"{path}: validation failed for value {value!r}")
                except (TypeError, ValueError) as e:
                    errors.append(f"{path}: {e}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        schema: Dict[str, Any] = {"properties": {}}

        def extract_schema(obj: Any, properties: Dict[str, Any]) -> None:
            if isinstance(obj, ConfigValue):
                properties["type"] = type(obj.default).__name__
                properties["default"] = str(obj.default)
                properties["description"] = obj.description
                if obj.env_var:
                    properties["env_var"] = obj.env_var
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    properties[field_name] = {}
                    extract_schema(getattr(obj, field_name), properties[field_name])

        extract_schema(self._config, schema["properties"])
        return schema


def get_config() -> TradedocConfig:
    """Get the current tradedoc configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()
