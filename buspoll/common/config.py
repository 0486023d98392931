"""
Configuration Dataclasses

Type-safe configuration structures for the binding service.
Configuration is read from a YAML file and handed to the runtime
through `BindingRuntime.updated()`.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError


# Auto-refresh sentinels
REFRESH_NEVER = -1
REFRESH_ONCE = 0


class BindingType(str, Enum):
    """Binding variants that can be declared in configuration"""
    READABLE = "readable"
    WRITABLE = "writable"
    CONTROL = "control"


class ConverterType(str, Enum):
    """Value conversion rules for read values and commands"""
    NUMBER = "number"
    STRING = "string"
    SWITCH = "switch"


class ControlType(str, Enum):
    """Control strategies available to control bindings"""
    REFRESH = "refresh"
    CLEAR_CACHE = "clear_cache"


@dataclass
class BindingDefinition:
    """Declarative description of one item binding"""
    item: str
    type: BindingType = BindingType.READABLE
    path: str = ""
    refresh: int = REFRESH_NEVER  # seconds; -1 never, 0 once, >0 repeat
    ignore_read_errors: bool = False
    converter: ConverterType = ConverterType.STRING
    control: ControlType | None = None
    targets: list[str] = field(default_factory=list)


@dataclass
class SchedulerSettings:
    """Refresh scheduler limits"""
    max_jobs: int | None = None  # None = no capacity bound
    max_workers: int = 4


@dataclass
class ConnectionSettings:
    """Bus connection parameters (passed through to the bus transport)"""
    host: str = "127.0.0.1"
    port: int = 502
    timeout: float = 3.0
    default_slave_id: int = 1


@dataclass
class ServiceConfig:
    """Complete service configuration"""
    service_name: str = "binding"
    log_level: str = "INFO"
    health_port: int = 8090
    state_dir: str = ""
    post_only_changed_values: bool = True
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    connection: ConnectionSettings = field(default_factory=ConnectionSettings)
    bindings: list[BindingDefinition] = field(default_factory=list)

    def settings(self) -> dict[str, Any]:
        """Flat settings dict as consumed by `BindingRuntime.updated()`"""
        return {
            "post_only_changed_values": self.post_only_changed_values,
            "host": self.connection.host,
            "port": self.connection.port,
            "timeout": self.connection.timeout,
            "default_slave_id": self.connection.default_slave_id,
        }


_TRUE_STRINGS = {"true", "yes", "on", "1"}
_FALSE_STRINGS = {"false", "no", "off", "0"}


def parse_bool(value: Any, name: str) -> bool:
    """Parse a boolean setting given as bool, int or string"""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ConfigError(f"Invalid boolean for '{name}': {value!r}")


def load_binding_definition(item: str, data: dict) -> BindingDefinition:
    """Load a BindingDefinition from its mapping in the `bindings:` section"""
    try:
        control = data.get("control")
        return BindingDefinition(
            item=item,
            type=BindingType(data.get("type", "readable")),
            path=data.get("path", ""),
            refresh=int(data.get("refresh", REFRESH_NEVER)),
            ignore_read_errors=parse_bool(
                data.get("ignore_read_errors", False), "ignore_read_errors"
            ),
            converter=ConverterType(data.get("converter", "string")),
            control=ControlType(control) if control else None,
            targets=list(data.get("targets", [])),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid binding '{item}': {e}")


def load_service_config(data: dict) -> ServiceConfig:
    """Load ServiceConfig from dictionary (e.g., from a YAML file)"""
    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping")

    scheduler_data = data.get("scheduler", {}) or {}
    connection_data = data.get("connection", {}) or {}
    try:
        max_jobs = scheduler_data.get("max_jobs")
        scheduler = SchedulerSettings(
            max_jobs=int(max_jobs) if max_jobs is not None else None,
            max_workers=int(scheduler_data.get("max_workers", 4)),
        )
        connection = ConnectionSettings(
            host=connection_data.get("host", "127.0.0.1"),
            port=int(connection_data.get("port", 502)),
            timeout=float(connection_data.get("timeout", 3.0)),
            default_slave_id=int(connection_data.get("default_slave_id", 1)),
        )
        health_port = int(data.get("health_port", 8090))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid numeric setting: {e}")

    if scheduler.max_workers < 1:
        raise ConfigError("scheduler.max_workers must be at least 1")
    if scheduler.max_jobs is not None and scheduler.max_jobs < 0:
        raise ConfigError("scheduler.max_jobs cannot be negative")

    bindings_data = data.get("bindings", {}) or {}
    if not isinstance(bindings_data, dict):
        raise ConfigError("'bindings' must map item names to binding definitions")

    bindings = [
        load_binding_definition(item, binding or {})
        for item, binding in bindings_data.items()
    ]

    return ServiceConfig(
        service_name=data.get("service_name", "binding"),
        log_level=data.get("log_level", "INFO"),
        health_port=health_port,
        state_dir=data.get("state_dir", ""),
        post_only_changed_values=parse_bool(
            data.get("post_only_changed_values", True), "post_only_changed_values"
        ),
        scheduler=scheduler,
        connection=connection,
        bindings=bindings,
    )


def load_config_file(config_path: str | Path) -> ServiceConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Parsed ServiceConfig

    Raises:
        ConfigError: if the file is missing or malformed
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}", recoverable=False)

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing {config_path}: {e}", recoverable=False)

    return load_service_config(data)
