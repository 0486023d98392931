"""
Shared pytest fixtures for buspoll tests.

Provides fixtures for:
- Fake bus transport and host sink
- Binding providers and a started runtime
- A temporary SharedState directory
"""
import asyncio
from typing import Any

import pytest
import pytest_asyncio

from buspoll.common.state import SharedState
from buspoll.services.binding.bindings import (
    ReadableProperty,
    WritableProperty,
    NumberConverter,
)
from buspoll.services.binding.provider import BindingProvider
from buspoll.services.binding.runtime import BindingRuntime


# ============================================================================
# Fakes
# ============================================================================

class FakeBus:
    """
    In-memory bus transport.

    `values` maps paths to raw strings; a value that is an Exception is
    raised from read(). Missing paths read as None.
    """

    def __init__(self, values: dict[str, Any] | None = None, connected: bool = True):
        self.values: dict[str, Any] = dict(values or {})
        self.connected = connected
        self.reads: list[str] = []
        self.writes: list[tuple[str, str]] = []
        self.settings: list[dict] = []
        self.write_error: Exception | None = None
        self.read_delay = 0.0

    def is_connection_established(self) -> bool:
        return self.connected

    def updated(self, settings: dict[str, Any]) -> None:
        self.settings.append(dict(settings))

    async def read(self, path: str) -> str | None:
        self.reads.append(path)
        if self.read_delay:
            await asyncio.sleep(self.read_delay)
        value = self.values.get(path)
        if isinstance(value, Exception):
            raise value
        return value

    async def write(self, path: str, value: str) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.writes.append((path, value))

    def read_count(self, path: str) -> int:
        return self.reads.count(path)


class FakeSink:
    """Host sink recording every posted update. `items=None` resolves everything."""

    def __init__(self, items: list[str] | None = None):
        self.items = set(items) if items is not None else None
        self.updates: list[tuple[str, Any]] = []

    def resolve_target(self, item_name: str) -> str | None:
        if self.items is None or item_name in self.items:
            return item_name
        return None

    async def post_update(self, item_name: str, value: Any) -> None:
        self.updates.append((item_name, value))

    def values_for(self, item_name: str) -> list[Any]:
        return [value for name, value in self.updates if name == item_name]


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def state_dir(tmp_path):
    """Point SharedState at a per-test directory."""
    SharedState.configure(tmp_path / "state")
    yield tmp_path / "state"
    SharedState.configure(None)


@pytest.fixture
def bus():
    return FakeBus({
        "1/holding/100": "21.5",
        "1/holding/101": "42",
    })


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def provider():
    return BindingProvider({
        "temp1": ReadableProperty(path="1/holding/100", refresh=1, converter=NumberConverter()),
        "setpoint": WritableProperty(path="1/holding/101", refresh=0, converter=NumberConverter()),
    })


@pytest_asyncio.fixture
async def runtime(bus, sink, provider):
    """Started runtime over the fake bus; stopped after the test."""
    runtime = BindingRuntime(bus=bus, sink=sink, providers=[provider])
    await runtime.start()
    yield runtime
    await runtime.stop()
