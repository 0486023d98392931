"""
Binding Service - Device Property Polling

Responsibilities:
- Schedule periodic and on-demand reads per item
- Suppress unchanged states through the item state cache
- Publish states (UNDEF on failed reads) to the host
- Route commands to write, executable or control bindings
"""

from .bindings import (
    UNDEF,
    BindingConfig,
    ClearCacheControl,
    ControlProperty,
    ExecutableProperty,
    OnOff,
    ReadableProperty,
    RefreshControl,
    WritableProperty,
)
from .cache import PropertyCache
from .events import DemandUpdateChannel
from .provider import BindingProvider, BindingValidator
from .runtime import BindingRuntime
from .service import BindingService
from .sink import StateFileSink

__all__ = [
    "UNDEF",
    "BindingConfig",
    "ClearCacheControl",
    "ControlProperty",
    "ExecutableProperty",
    "OnOff",
    "ReadableProperty",
    "RefreshControl",
    "WritableProperty",
    "PropertyCache",
    "DemandUpdateChannel",
    "BindingProvider",
    "BindingValidator",
    "BindingRuntime",
    "BindingService",
    "StateFileSink",
]
