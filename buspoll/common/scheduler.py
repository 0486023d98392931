"""
Refresh Scheduler for Per-Item Interval Execution

Keeps one recurring timer per item and hands every firing to an
UpdateListener on a bounded pool of worker slots.

Unlike a single `while True: await asyncio.sleep(interval)` loop per
service, this scheduler:
- Keeps an independent timer per item, each with its own interval
- Fires at exact boundaries relative to registration, accounting for drift
- Skips missed intervals to catch up instead of bursting
- Serializes firings per item (FIFO) while different items run concurrently
- Bounds concurrent firings with a worker semaphore

Usage:
    class Listener:
        async def on_update(self, item_name: str) -> None:
            ...

    scheduler = RefreshScheduler(Listener(), max_workers=4)
    scheduler.schedule_update("temp1", 5)   # every 5 seconds
    scheduler.update_once("temp1")          # right now, out of band

    # Later:
    await scheduler.stop()
"""

import asyncio
from dataclasses import dataclass, field
from typing import Protocol

from .logging_setup import get_service_logger

logger = get_service_logger("scheduler")


class UpdateListener(Protocol):
    """Callback invoked once per firing with the item that is due"""

    async def on_update(self, item_name: str) -> None:
        ...


@dataclass
class RefreshJob:
    """
    Recurring refresh registration for one item.

    Attributes:
        item_name: Item the job refreshes
        interval: Seconds between firings
        next_fire: Event loop time of the next firing
        task: Timer task driving the job
        execution_count: Firings dispatched so far
        skipped_count: Intervals skipped to catch up
        drift_total: Accumulated lateness in seconds
    """
    item_name: str
    interval: float
    next_fire: float
    task: asyncio.Task | None = field(default=None, repr=False)
    execution_count: int = 0
    skipped_count: int = 0
    drift_total: float = 0.0

    def cancel(self) -> None:
        if self.task is not None:
            self.task.cancel()

    def get_stats(self) -> dict:
        return {
            "interval_s": self.interval,
            "execution_count": self.execution_count,
            "skipped_count": self.skipped_count,
            "drift_total_s": round(self.drift_total, 3),
        }


class RefreshScheduler:
    """
    Owns the item -> RefreshJob table.

    All public methods must be called from the event loop thread. Each one
    completes without awaiting, so every call is atomic with respect to the
    job table and to firings in progress.

    Cancellation is generation based: `remove_item()` bumps the item's
    generation and `clear()` bumps the global one. A queued firing whose
    generation is outdated is discarded when it reaches the front of the
    queue; a firing already inside the listener runs to completion.

    Per-item locks and generations are dropped once the item has no firing
    queued or running.
    """

    def __init__(
        self,
        listener: UpdateListener,
        max_jobs: int | None = None,
        max_workers: int = 4,
    ):
        """
        Args:
            listener: Receives `on_update(item_name)` for every firing
            max_jobs: Capacity bound for recurring jobs (None = unbounded)
            max_workers: Number of firings allowed to run concurrently
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        self._listener = listener
        self.max_jobs = max_jobs
        self.max_workers = max_workers

        self._jobs: dict[str, RefreshJob] = {}
        self._workers = asyncio.Semaphore(max_workers)
        self._item_locks: dict[str, asyncio.Lock] = {}
        self._queued: dict[str, set[tuple[int, int]]] = {}
        self._generation = 0
        self._item_generation: dict[str, int] = {}
        self._tasks: set[asyncio.Task] = set()
        self._firings: set[asyncio.Task] = set()
        self._closed = False

        # Observability metrics
        self._fired_count = 0
        self._error_count = 0
        self._coalesced_count = 0
        self._stale_count = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def schedule_update(self, item_name: str, interval_seconds: float) -> bool:
        """
        Register or replace the recurring job for an item.

        Returns:
            False if the interval is not positive, the scheduler is stopped
            or the capacity bound is reached; True otherwise.
        """
        if interval_seconds <= 0 or self._closed:
            return False

        existing = self._jobs.get(item_name)
        if existing is None and self.max_jobs is not None and len(self._jobs) >= self.max_jobs:
            logger.debug(
                f"Capacity of {self.max_jobs} jobs reached, refusing '{item_name}'"
            )
            return False

        if existing is not None:
            existing.cancel()

        loop = asyncio.get_running_loop()
        job = RefreshJob(
            item_name=item_name,
            interval=float(interval_seconds),
            next_fire=loop.time() + interval_seconds,
        )
        job.task = self._spawn(self._run_job(job), name=f"refresh-timer:{item_name}")
        self._jobs[item_name] = job

        logger.debug(f"Scheduled '{item_name}' every {interval_seconds}s")
        return True

    def update_once(self, item_name: str) -> None:
        """Queue a single immediate firing, leaving any recurring job alone"""
        if self._closed:
            logger.debug(f"Scheduler stopped, ignoring update request for '{item_name}'")
            return
        self._dispatch(item_name)

    def remove_item(self, item_name: str) -> None:
        """Cancel the item's job and discard its queued firings"""
        job = self._jobs.pop(item_name, None)
        if job is not None:
            job.cancel()
            logger.debug(f"Removed '{item_name}' from scheduler")

        if self._is_idle(item_name):
            self._forget(item_name)
        else:
            self._item_generation[item_name] = self._item_generation.get(item_name, 0) + 1

    def clear(self) -> None:
        """Cancel every job and discard all queued firings"""
        for job in self._jobs.values():
            job.cancel()
        count = len(self._jobs)
        self._jobs.clear()
        self._generation += 1
        logger.debug(f"Cleared scheduler ({count} jobs cancelled)")

    def is_registered(self, item_name: str) -> bool:
        return item_name in self._jobs

    def registered_items(self) -> list[str]:
        return sorted(self._jobs)

    def get_job(self, item_name: str) -> RefreshJob | None:
        return self._jobs.get(item_name)

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def wait_idle(self) -> None:
        """Wait until no firing is queued or running"""
        while self._firings:
            await asyncio.gather(*list(self._firings), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel all jobs and wait for in-flight firings to finish"""
        self._closed = True
        self.clear()
        pending = list(self._tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Refresh scheduler stopped")

    def get_stats(self) -> dict:
        """Get scheduler statistics for observability"""
        return {
            "job_count": len(self._jobs),
            "max_jobs": self.max_jobs,
            "max_workers": self.max_workers,
            "fired_count": self._fired_count,
            "error_count": self._error_count,
            "coalesced_count": self._coalesced_count,
            "stale_count": self._stale_count,
            "tracked_items": len(self._item_locks.keys() | self._item_generation.keys()),
            "jobs": {
                name: job.get_stats()
                for name, job in sorted(self._jobs.items())
            },
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _token(self, item_name: str) -> tuple[int, int]:
        return self._generation, self._item_generation.get(item_name, 0)

    def _is_idle(self, item_name: str) -> bool:
        """No firing for the item is queued or running"""
        lock = self._item_locks.get(item_name)
        return item_name not in self._queued and (lock is None or not lock.locked())

    def _forget(self, item_name: str) -> None:
        """Drop the item's lock and generation; only valid while it is idle"""
        self._item_locks.pop(item_name, None)
        self._item_generation.pop(item_name, None)

    def _dispatch(self, item_name: str) -> None:
        """Queue a firing unless one for the same generation is already waiting"""
        token = self._token(item_name)
        queued = self._queued.setdefault(item_name, set())
        if token in queued:
            self._coalesced_count += 1
            logger.debug(f"Firing for '{item_name}' already queued, coalescing")
            return
        queued.add(token)
        task = self._spawn(self._fire(item_name, token), name=f"refresh-fire:{item_name}")
        self._firings.add(task)
        task.add_done_callback(self._firings.discard)

    async def _run_job(self, job: RefreshJob) -> None:
        """Timer loop for one job. Ends when cancelled or replaced."""
        loop = asyncio.get_running_loop()

        while True:
            delay = job.next_fire - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)

            if self._jobs.get(job.item_name) is not job:
                break

            drift = loop.time() - job.next_fire
            job.drift_total += max(0.0, drift)

            self._dispatch(job.item_name)
            job.execution_count += 1

            # Skip missed intervals to catch up (don't queue up missed firings)
            now = loop.time()
            skipped = 0
            while job.next_fire <= now:
                job.next_fire += job.interval
                skipped += 1

            # First skip is expected (the one we just dispatched)
            if skipped > 1:
                job.skipped_count += skipped - 1
                logger.warning(
                    f"Refresh of '{job.item_name}' skipped {skipped - 1} intervals"
                )

    def _unqueue(self, item_name: str, token: tuple[int, int]) -> None:
        queued = self._queued.get(item_name)
        if queued is None:
            return
        queued.discard(token)
        if not queued:
            del self._queued[item_name]

    async def _fire(self, item_name: str, token: tuple[int, int]) -> None:
        """Run one firing: per-item lock first, then a worker slot"""
        lock = self._item_locks.setdefault(item_name, asyncio.Lock())

        try:
            async with lock:
                self._unqueue(item_name, token)
                await self._fire_locked(item_name, token)
        finally:
            self._unqueue(item_name, token)
            if self._is_idle(item_name):
                self._forget(item_name)

    async def _fire_locked(self, item_name: str, token: tuple[int, int]) -> None:
        if token != self._token(item_name):
            self._stale_count += 1
            logger.debug(f"Dropping cancelled firing for '{item_name}'")
            return

        async with self._workers:
            if token != self._token(item_name):
                self._stale_count += 1
                logger.debug(f"Dropping cancelled firing for '{item_name}'")
                return

            try:
                await self._listener.on_update(item_name)
                self._fired_count += 1
            except Exception as e:
                self._error_count += 1
                logger.error(
                    f"Refresh of '{item_name}' failed: {e}",
                    exc_info=True,
                    extra={"item": item_name},
                )
