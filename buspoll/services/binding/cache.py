"""
Item State Cache

Remembers the last state published per item so unchanged reads can be
suppressed before they reach the host application.
"""

import operator
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from buspoll.common.logging_setup import get_service_logger

logger = get_service_logger("binding.cache")

_MISSING = object()


class PropertyCache:
    """
    Last-published state per item.

    Read-modify-write on one item is atomic: each item has its own lock,
    so updates for different items never wait on each other while two
    updates for the same item are applied in call order. An item's lock
    is dropped together with its state.
    """

    def __init__(self, post_only_changed_values: bool = True):
        self.post_only_changed_values = post_only_changed_values
        self._states: dict[str, Any] = {}
        self._item_locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    @contextmanager
    def _locked(self, item_name: str) -> Iterator[None]:
        while True:
            with self._registry_lock:
                lock = self._item_locks.setdefault(item_name, threading.Lock())
            lock.acquire()
            with self._registry_lock:
                if self._item_locks.get(item_name) is lock:
                    break
            # Dropped by remove()/clear() before we got it
            lock.release()
        try:
            yield
        finally:
            lock.release()

    def _drop_lock(self, item_name: str) -> None:
        # Caller holds the registry lock
        lock = self._item_locks.get(item_name)
        if lock is not None and not lock.locked():
            del self._item_locks[item_name]

    def get(self, item_name: str, default: Any = None) -> Any:
        """Last published state, or `default` if none"""
        with self._registry_lock:
            return self._states.get(item_name, default)

    def put_if_changed(
        self,
        item_name: str,
        value: Any,
        equals: Callable[[Any, Any], bool] = operator.eq,
    ) -> bool:
        """
        Store `value` if it differs from the cached state.

        Returns:
            True if the value was stored (and should be published). With
            change suppression disabled every call stores and returns True.
        """
        with self._locked(item_name):
            with self._registry_lock:
                cached = self._states.get(item_name, _MISSING)

            if (
                self.post_only_changed_values
                and cached is not _MISSING
                and equals(value, cached)
            ):
                return False

            with self._registry_lock:
                self._states[item_name] = value
            return True

    def put(self, item_name: str, value: Any) -> None:
        """Store unconditionally"""
        with self._locked(item_name):
            with self._registry_lock:
                self._states[item_name] = value

    def remove(self, item_name: str) -> None:
        with self._registry_lock:
            self._states.pop(item_name, None)
            self._drop_lock(item_name)

    def clear(self) -> None:
        with self._registry_lock:
            count = len(self._states)
            self._states.clear()
            for item_name in list(self._item_locks):
                self._drop_lock(item_name)
        logger.debug(f"Item state cache cleared ({count} entries)")

    def __contains__(self, item_name: str) -> bool:
        with self._registry_lock:
            return item_name in self._states

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._states)
