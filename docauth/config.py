"""
Document authority configuration.

Configuration Sources (in order of precedence):
    1. Environment variables (DOCAUTH_*)
    2. Runtime overrides
    3. Project config file (./docauth.yaml or config/docauth.yaml)
    4. Default values

Document versions and the reference prefix feed into document hashes. Changing
them produces new hashes for new documents; documents already minted carry
the version they were hashed with.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

T = TypeVar("T")


class ConfigError(Exception):
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
    validation, and change callbacks.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[Optional[T], T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])

        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if self.validator and not self.validator(value):
            raise ValidationError(f"Invalid value for config: {value}")

        old_value = self._value
        self._value = value

        for callback in self._callbacks:
            callback(old_value, value)

    def reset(self) -> None:
        self._value = None

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            return int(value)  # type: ignore
        else:
            return value  # type: ignore

    def on_change(self, callback: Callable[[Optional[T], T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


def _non_empty(x: Any) -> bool:
    return isinstance(x, str) and bool(x.strip())


@dataclass
class DocumentConfig:
    """Document versions and reference settings."""
    quote_doc_version: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="v1.0",
        env_var="DOCAUTH_QUOTE_DOC_VERSION",
        description="Version tag stamped on newly generated quotes",
        validator=_non_empty,
    ))
    agreement_doc_version: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="v1.0",
        env_var="DOCAUTH_AGREEMENT_DOC_VERSION",
        description="Version tag stamped on agreements",
        validator=_non_empty,
    ))
    sicar_doc_version: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="v1.0",
        env_var="DOCAUTH_SICAR_DOC_VERSION",
        description="Version tag of the installation acceptance certificate",
        validator=_non_empty,
    ))
    reference_prefix: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="KAEC",
        env_var="DOCAUTH_REFERENCE_PREFIX",
        description="Prefix of human-readable document references",
        validator=lambda x: isinstance(x, str) and x.isalnum(),
    ))
    default_vertical: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="elder-tech",
        env_var="DOCAUTH_DEFAULT_VERTICAL",
        description="Catalog vertical used when a quote does not name one",
        validator=lambda x: x in ("elder-tech", "home-security"),
    ))


@dataclass
class LinkConfig:
    """Settings for resume, verification and print links."""
    base_url: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="https://kaec.local",
        env_var="DOCAUTH_BASE_URL",
        description="Origin used for resume/verify/print URLs",
        validator=lambda x: isinstance(x, str) and x.startswith(("http://", "https://")),
    ))
    hash_display_head: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=8,
        env_var="DOCAUTH_HASH_DISPLAY_HEAD",
        description="Leading characters kept when shortening hashes and URLs",
        validator=lambda x: 0 < x <= 64,
    ))
    hash_display_tail: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=8,
        env_var="DOCAUTH_HASH_DISPLAY_TAIL",
        description="Trailing characters kept when shortening hashes and URLs",
        validator=lambda x: 0 < x <= 64,
    ))


@dataclass
class LifecycleConfig:
    """Certificate lifecycle settings."""
    audit_max_entries: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=150,
        env_var="DOCAUTH_AUDIT_MAX_ENTRIES",
        description="Audit log bound (oldest entries evicted first)",
        validator=lambda x: x > 0,
    ))
    default_installer: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="Installer of Record",
        env_var="DOCAUTH_DEFAULT_INSTALLER",
        description="Installer roster entry on a new certificate",
        validator=_non_empty,
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for Observability."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="DOCAUTH_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="DOCAUTH_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class DocAuthConfig:
    """
    Root configuration.

    Aggregates all component configurations and provides
    loading/saving functionality.
    """
    documents: DocumentConfig = field(default_factory=DocumentConfig)
    links: LinkConfig = field(default_factory=LinkConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
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
        return yaml.safe_dump(self.to_dict(), default_flow_style=False)


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

        self._config = DocAuthConfig()
        self._config_paths: List[Path] = []
        self._watchers: List[Callable[[DocAuthConfig], None]] = []
        self._initialized = True

    @property
    def config(self) -> DocAuthConfig:
        """Get the current configuration."""
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        if data is None:
            return
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file must contain a mapping: {path}")

        self._apply_dict(data)
        self._config_paths.append(path)

    def load_defaults(self) -> List[Path]:
        """Load default configuration files if they exist.

        Returns the paths that were loaded. A malformed default file raises;
        silently running on defaults would mint documents with the wrong
        versions.
        """
        loaded: List[Path] = []
        for path in (Path("docauth.yaml"), Path("config") / "docauth.yaml"):
            if path.exists():
                self.load_from_file(path)
                loaded.append(path)
        return loaded

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        """Apply dictionary values to configuration."""
        def apply_to_config(config_obj: Any, values: Dict[str, Any], prefix: str) -> None:
            for key, value in values.items():
                if not hasattr(config_obj, key):
                    raise ConfigError(f"Unknown config key: {prefix}{key}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value, f"{prefix}{key}.")
                else:
                    raise ConfigError(f"Invalid config section: {prefix}{key}")

        apply_to_config(self._config, data, "")

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("lifecycle.audit_max_entries", 200)
        """
        attr = self._resolve(path)
        if not isinstance(attr, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        attr.set(value)

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("documents.reference_prefix")
        """
        obj = self._resolve(path)
        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def _resolve(self, path: str) -> Any:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        return obj

    def watch(self, callback: Callable[[DocAuthConfig], None]) -> None:
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
        """Drop runtime overrides, loaded files and watchers."""
        self._config = DocAuthConfig()
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
                        errors.append(f"{path}: validation failed for value {value}")
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


def get_config() -> DocAuthConfig:
    """Get the current configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()
