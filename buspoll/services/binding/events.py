"""
Demand Update Channel

Devices (or executable actions) that want an item refreshed out of band
post the item name here; the runtime's consumer task turns each request
into a one-shot scheduler firing.
"""

import asyncio

from buspoll.common.logging_setup import get_service_logger

logger = get_service_logger("binding.events")


class DemandUpdateChannel:
    """Queue of "item X should be refreshed now" requests"""

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def request(self, item_name: str) -> None:
        """Ask for a refresh of `item_name` (never blocks)"""
        if self._closed:
            logger.debug(f"Channel closed, dropping update request for '{item_name}'")
            return
        try:
            self._queue.put_nowait(item_name)
        except asyncio.QueueFull:
            logger.warning(f"Demand update queue full, dropping request for '{item_name}'")

    def request_threadsafe(self, loop: asyncio.AbstractEventLoop, item_name: str) -> None:
        """Variant of request() for callers outside the event loop thread"""
        loop.call_soon_threadsafe(self.request, item_name)

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        """Stop accepting requests and end consumer iteration"""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # Consumer stops on its own once the backlog is drained
            pass

    async def join(self) -> None:
        """Wait until every request taken so far has been handled"""
        await self._queue.join()

    async def __aiter__(self):
        while not (self._closed and self._queue.empty()):
            item_name = await self._queue.get()
            try:
                if item_name is None:
                    return
                yield item_name
            finally:
                self._queue.task_done()
