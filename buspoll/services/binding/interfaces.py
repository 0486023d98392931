"""
Collaborator Interfaces

Contracts between the binding runtime and the pieces it drives but does
not own: the bus transport, the host application and the scheduler's
update callback.
"""

from typing import Any, Protocol

from buspoll.common.scheduler import UpdateListener


class BusTransport(Protocol):
    """Access to device properties on the shared bus"""

    async def read(self, path: str) -> str | None:
        """Raw property value, or None if the property could not be read"""
        ...

    async def write(self, path: str, value: str) -> None:
        """Write a raw value. Raises DeviceError on failure."""
        ...

    def is_connection_established(self) -> bool:
        ...

    def updated(self, settings: dict[str, Any]) -> None:
        """Apply connection settings. Raises ConfigError if malformed."""
        ...


class HostSink(Protocol):
    """Host application receiving item state updates"""

    def resolve_target(self, item_name: str) -> Any | None:
        ...

    async def post_update(self, item_name: str, value: Any) -> None:
        ...


__all__ = ["BusTransport", "HostSink", "UpdateListener"]
