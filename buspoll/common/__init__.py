"""
Common Utilities

Shared modules used across all services:
- config.py - Configuration dataclasses and YAML loading
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
- scheduler.py - Per-item refresh scheduler
- state.py - Shared file-based state
"""

from .config import (
    BindingDefinition,
    BindingType,
    ConverterType,
    ControlType,
    SchedulerSettings,
    ConnectionSettings,
    ServiceConfig,
    REFRESH_NEVER,
    REFRESH_ONCE,
    load_service_config,
    load_config_file,
    parse_bool,
)
from .exceptions import (
    BuspollError,
    ConfigError,
    DeviceError,
    CommunicationError,
    WriteError,
    ServiceError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    set_log_level,
    log_device_read,
    log_device_write,
)
from .scheduler import RefreshScheduler, RefreshJob, UpdateListener
from .state import SharedState

__all__ = [
    # Config
    "BindingDefinition",
    "BindingType",
    "ConverterType",
    "ControlType",
    "SchedulerSettings",
    "ConnectionSettings",
    "ServiceConfig",
    "REFRESH_NEVER",
    "REFRESH_ONCE",
    "load_service_config",
    "load_config_file",
    "parse_bool",
    # Exceptions
    "BuspollError",
    "ConfigError",
    "DeviceError",
    "CommunicationError",
    "WriteError",
    "ServiceError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "set_log_level",
    "log_device_read",
    "log_device_write",
    # Scheduler
    "RefreshScheduler",
    "RefreshJob",
    "UpdateListener",
    # State
    "SharedState",
]
