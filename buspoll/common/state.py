"""
Shared State Files

The host application reads item states and service health from JSON files
in one directory (one file per key). Writes replace the whole file through
a rename so a reader never sees a partial document; reads are memoized for
a short time because the health endpoint and sinks read the same keys often.
"""

import json
import os
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

STATE_DIR_ENV = "BUSPOLL_STATE_DIR"
DEFAULT_STATE_DIR = "/opt/buspoll/data/state"

# Seconds a read result is reused before the file is read again
READ_CACHE_TTL = 0.1


def _default_state_dir() -> Path:
    return Path(os.environ.get(STATE_DIR_ENV, DEFAULT_STATE_DIR))


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SharedState:
    """Process-wide handle on the state directory (class-level, no instances)"""

    _state_dir: Path = _default_state_dir()
    _memo: dict[str, tuple[float, dict]] = {}
    _lock = threading.RLock()

    @classmethod
    def configure(cls, state_dir: str | Path | None) -> None:
        """Use `state_dir` (or the environment default when empty)"""
        with cls._lock:
            cls._state_dir = Path(state_dir) if state_dir else _default_state_dir()
            cls._memo.clear()

    @classmethod
    def state_dir(cls) -> Path:
        return cls._state_dir

    @classmethod
    def path_for(cls, key: str) -> Path:
        return cls._state_dir / f"{key}.json"

    @classmethod
    def write(cls, key: str, data: dict) -> None:
        """Replace the document stored under `key`, stamping `_updated_at`"""
        document = dict(data)
        document["_updated_at"] = _now_iso()

        with cls._lock:
            target = cls.path_for(key)
            target.parent.mkdir(parents=True, exist_ok=True)

            staging = target.with_name(f".{target.name}.tmp")
            staging.write_text(json.dumps(document, indent=2, default=str), encoding="utf-8")
            os.replace(staging, target)

            cls._memo[key] = (time.monotonic(), document)

    @classmethod
    def read(cls, key: str, use_cache: bool = True) -> dict:
        """Document under `key`; {} when missing or unreadable"""
        with cls._lock:
            if use_cache:
                memo = cls._memo.get(key)
                if memo is not None and time.monotonic() - memo[0] < READ_CACHE_TTL:
                    return memo[1]

            try:
                document = json.loads(cls.path_for(key).read_text(encoding="utf-8"))
            except (OSError, ValueError):
                return {}

            cls._memo[key] = (time.monotonic(), document)
            return document

    @classmethod
    def update(cls, key: str, updates: dict) -> dict:
        """Merge `updates` into the stored document and return the result"""
        with cls._lock:
            merged = {**cls.read(key, use_cache=False), **updates}
            cls.write(key, merged)
            return merged

    @classmethod
    def delete(cls, key: str) -> bool:
        """Remove the document. False if there was none."""
        with cls._lock:
            cls._memo.pop(key, None)
            try:
                cls.path_for(key).unlink()
            except FileNotFoundError:
                return False
            return True


def set_service_health(service: str, status: dict) -> None:
    """Record one service's health entry under the `service_health` key"""
    SharedState.update("service_health", {service: {**status, "updated_at": _now_iso()}})


def get_service_health() -> dict:
    return SharedState.read("service_health")
