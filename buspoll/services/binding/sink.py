"""
State File Sink

Host application adapter that publishes item states into SharedState,
where the host picks them up from the `items` state file.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

from buspoll.common.logging_setup import get_service_logger
from buspoll.common.state import SharedState

from .provider import BindingProvider

logger = get_service_logger("binding.sink")


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


class StateFileSink:
    """
    Publishes `{item: {"value": ..., "timestamp": ...}}` under one state key.

    Only declared items resolve as targets; updates for anything else are
    refused by the runtime before they reach this sink. Registered as a
    provider listener, the sink follows items added or removed at runtime.
    """

    def __init__(self, items: Iterable[str] = (), state_key: str = "items"):
        self._items: set[str] = set(items)
        self.state_key = state_key

    def set_items(self, items: Iterable[str]) -> None:
        self._items = set(items)

    def all_bindings_changed(self, provider: BindingProvider) -> None:
        self.set_items(provider.item_names())

    def binding_changed(self, provider: BindingProvider, item_name: str) -> None:
        if provider.get_binding_config(item_name) is None:
            self._items.discard(item_name)
        else:
            self._items.add(item_name)

    def resolve_target(self, item_name: str) -> str | None:
        return item_name if item_name in self._items else None

    async def post_update(self, item_name: str, value: Any) -> None:
        SharedState.update(self.state_key, {
            item_name: {
                "value": _serialize(value),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        })
        logger.debug(f"Posted update {item_name} = {value}")
