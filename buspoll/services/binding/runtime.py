"""
Binding Runtime

Drives periodic and on-demand reads of device properties and routes
commands back to the bus.

Responsible for:
- (Re)populating the refresh scheduler when bindings or settings change
- Reading device properties when a refresh fires
- Suppressing unchanged states through the item state cache
- Publishing changed states (or UNDEF on failed reads) to the host
- Dispatching commands to write, executable or control bindings
"""

import asyncio
from typing import Any, Iterable

from buspoll.common.config import REFRESH_NEVER, REFRESH_ONCE, parse_bool
from buspoll.common.exceptions import DeviceError, WriteError
from buspoll.common.logging_setup import (
    get_service_logger,
    log_device_read,
    log_device_write,
)
from buspoll.common.scheduler import RefreshScheduler

from .bindings import UNDEF, BindingConfig, ReadableProperty
from .cache import PropertyCache
from .events import DemandUpdateChannel
from .interfaces import BusTransport, HostSink
from .provider import BindingProvider

logger = get_service_logger("binding.runtime")


class BindingRuntime:
    """
    Orchestrates scheduler, cache, bus and host for all attached providers.

    Item lifecycle: Unregistered -> Scheduled -> (Firing <-> Scheduled)
    -> Unregistered. An item leaves the scheduler when its binding is
    removed or changed, on a full reset, or when a firing finds no binding
    for it any more.
    """

    def __init__(
        self,
        bus: BusTransport,
        sink: HostSink,
        providers: Iterable[BindingProvider] = (),
        cache: PropertyCache | None = None,
        demand_channel: DemandUpdateChannel | None = None,
        max_jobs: int | None = None,
        max_workers: int = 4,
    ):
        self._bus = bus
        self._sink = sink
        self._providers: list[BindingProvider] = []
        self._cache = cache if cache is not None else PropertyCache()
        self._demand = demand_channel if demand_channel is not None else DemandUpdateChannel()
        self._scheduler = RefreshScheduler(self, max_jobs=max_jobs, max_workers=max_workers)

        self._running = False
        self._demand_task: asyncio.Task | None = None
        self._reset_count = 0

        for provider in providers:
            self.add_provider(provider)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def scheduler(self) -> RefreshScheduler:
        return self._scheduler

    @property
    def cache(self) -> PropertyCache:
        return self._cache

    @property
    def demand_channel(self) -> DemandUpdateChannel:
        return self._demand

    @property
    def providers(self) -> list[BindingProvider]:
        return list(self._providers)

    @property
    def post_only_changed_values(self) -> bool:
        return self._cache.post_only_changed_values

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start consuming demand updates and schedule every binding"""
        if self._running:
            return

        self._running = True
        self._demand_task = asyncio.create_task(
            self._consume_demand_updates(), name="binding-demand-updates"
        )
        self._schedule_all_bindings()
        logger.info(
            f"Binding runtime started ({len(self._providers)} providers)",
            extra={"provider_count": len(self._providers)},
        )

    async def stop(self) -> None:
        """Cancel all refresh jobs and wait for running firings"""
        if not self._running:
            return

        self._running = False
        self._demand.close()
        if self._demand_task:
            await self._demand_task
            self._demand_task = None

        await self._scheduler.stop()
        logger.info("Binding runtime stopped")

    async def wait_idle(self) -> None:
        """Wait until queued demand requests and firings have been handled"""
        await self._demand.join()
        await self._scheduler.wait_idle()

    # ------------------------------------------------------------------
    # Providers and configuration
    # ------------------------------------------------------------------

    def add_provider(self, provider: BindingProvider) -> None:
        if provider in self._providers:
            return
        self._providers.append(provider)
        provider.add_listener(self)
        if self._running:
            self._schedule_all_bindings()

    def remove_provider(self, provider: BindingProvider) -> None:
        if provider not in self._providers:
            return
        self._providers.remove(provider)
        provider.remove_listener(self)
        for item_name in provider.item_names():
            self._scheduler.remove_item(item_name)
            self._cache.remove(item_name)

    def updated(self, settings: dict[str, Any] | None) -> None:
        """
        Apply process-wide settings, then reschedule every binding.

        Connection parameters are handed to the bus unchanged.

        Raises:
            ConfigError: on malformed settings; prior settings stay active
        """
        if settings is not None:
            post_only_changed = self._cache.post_only_changed_values
            raw = settings.get("post_only_changed_values")
            if raw is not None and str(raw).strip() != "":
                post_only_changed = parse_bool(raw, "post_only_changed_values")

            self._bus.updated(settings)
            self._cache.post_only_changed_values = post_only_changed

        self._schedule_all_bindings()

    def get_binding_config(self, item_name: str) -> BindingConfig | None:
        for provider in self._providers:
            config = provider.get_binding_config(item_name)
            if config is not None:
                return config
        return None

    def readable_items(self) -> list[str]:
        items = []
        for provider in self._providers:
            for item_name, config in provider.get_binding_configs().items():
                if config.as_readable() is not None and item_name not in items:
                    items.append(item_name)
        return items

    # ------------------------------------------------------------------
    # Topology events
    # ------------------------------------------------------------------

    def all_bindings_changed(self, provider: BindingProvider) -> None:
        """Full reset: drop every job and cached state, then re-register"""
        self._schedule_all_bindings()

    def binding_changed(self, provider: BindingProvider, item_name: str) -> None:
        """Single item reset; other items keep their jobs and cached states"""
        logger.debug(f"Binding changed for item '{item_name}'")

        self._cache.remove(item_name)
        self._scheduler.remove_item(item_name)

        if not self._running:
            # start() registers everything
            return

        config = provider.get_binding_config(item_name)
        readable = config.as_readable() if config is not None else None
        if readable is None:
            logger.debug(f"Item '{item_name}' has no readable binding, not scheduled")
            return

        if not self._bus.is_connection_established():
            logger.debug(f"Bus not connected, not scheduling '{item_name}'")
            return

        self._register(item_name, readable)

    def _schedule_all_bindings(self) -> None:
        if not self._running:
            return

        if not self._bus.is_connection_established():
            logger.debug("Bus not connected, skipping scheduling of bindings")
            return

        logger.debug("Scheduling all bindings")
        self._scheduler.clear()
        self._cache.clear()
        self._reset_count += 1

        for provider in self._providers:
            for item_name, config in provider.get_binding_configs().items():
                readable = config.as_readable()
                if readable is None:
                    logger.debug(
                        f"Didn't schedule item '{item_name}' because it is not a device property binding"
                    )
                    continue
                self._register(item_name, readable)

    def _register(self, item_name: str, readable: ReadableProperty) -> None:
        refresh = readable.refresh

        if refresh > REFRESH_NEVER:
            logger.debug(f"Initializing read of item '{item_name}'")
            self._scheduler.update_once(item_name)

        if refresh > REFRESH_ONCE:
            if not self._scheduler.schedule_update(item_name, refresh):
                logger.warning(
                    f"Couldn't add item '{item_name}' to refresh scheduler, it will not be refreshed",
                    extra={"item": item_name, "refresh": refresh},
                )
        else:
            logger.debug(f"Item '{item_name}' not added to refresh scheduler (refresh={refresh})")

    # ------------------------------------------------------------------
    # Refresh execution
    # ------------------------------------------------------------------

    async def on_update(self, item_name: str) -> None:
        """Scheduler callback"""
        await self.update_item(item_name)

    def request_refresh(self, item_name: str) -> None:
        """Demand an out-of-band read (goes through the demand channel)"""
        self._demand.request(item_name)

    async def _consume_demand_updates(self) -> None:
        async for item_name in self._demand:
            logger.debug(f"Item '{item_name}' wants update")
            self._scheduler.update_once(item_name)

    async def update_item(self, item_name: str) -> None:
        """Read the item's device property and publish the result"""
        if not self._bus.is_connection_established():
            logger.debug(f"Bus not connected, skipping refresh of '{item_name}'")
            return

        config = self.get_binding_config(item_name)
        readable = config.as_readable() if config is not None else None
        if readable is None:
            logger.error(
                f"No binding config found for item '{item_name}', cannot update! "
                f"It will be removed from the scheduler",
                extra={"item": item_name},
            )
            self._scheduler.remove_item(item_name)
            return

        resets = self._reset_count
        value = await self._read_value(item_name, readable)

        if self._reset_count != resets or self.get_binding_config(item_name) is not config:
            logger.debug(f"Binding of '{item_name}' changed during the read, result discarded")
            return

        if value is not None:
            await self._post_update(item_name, value)
            return

        message = f"Set item '{item_name}' to UNDEF, because the read value is null"
        if readable.ignore_read_errors:
            logger.debug(message)
        else:
            logger.error(message, extra={"item": item_name, "path": readable.path})

        await self._post_update(item_name, UNDEF, force=True)

    async def _read_value(self, item_name: str, readable: ReadableProperty) -> Any | None:
        try:
            raw = await self._bus.read(readable.path)
        except Exception as e:
            logger.warning(
                f"Exception reading {item_name} ({readable.path}): {e}",
                extra={"item": item_name, "path": readable.path},
            )
            return None

        if raw is None:
            log_device_read(logger, item_name, readable.path, None, success=False)
            return None

        try:
            value = readable.convert_read_value_to_type(raw)
        except (TypeError, ValueError) as e:
            logger.warning(
                f"Cannot convert value {raw!r} of {item_name} ({readable.path}): {e}",
                extra={"item": item_name, "path": readable.path},
            )
            return None

        log_device_read(logger, item_name, readable.path, value, success=True)
        return value

    async def _post_update(self, item_name: str, value: Any, force: bool = False) -> bool:
        """Publish through the cache. Returns True if the host was updated."""
        if self._sink.resolve_target(item_name) is None:
            logger.error(f"There is no item for item name '{item_name}'", extra={"item": item_name})
            return False

        if force:
            self._cache.put(item_name, value)
        elif not self._cache.put_if_changed(item_name, value):
            logger.debug(
                f"Didn't post update for item '{item_name}', because state did not change"
            )
            return False

        await self._sink.post_update(item_name, value)
        return True

    def clear_cache_item_state(self, item_name: str | None = None) -> None:
        """Forget cached states (one item or all) so the next read is published"""
        if item_name is None:
            self._cache.clear()
        else:
            self._cache.remove(item_name)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def receive_command(self, item_name: str, command: Any) -> None:
        """
        Dispatch a command to the item's binding.

        Raises:
            WriteError: if a writable binding fails to write to the bus
        """
        logger.debug(f"Received command {command!r} for item '{item_name}'")

        config = self.get_binding_config(item_name)
        if config is None:
            logger.warning(f"No binding config for item '{item_name}', ignoring command")
            return

        executable = config.as_executable()
        if executable is not None:
            logger.debug(f"Call execute for item '{item_name}'")
            await executable.execute(command)
            return

        writable = config.as_writable()
        if writable is not None:
            try:
                value = writable.convert_command_to_string(command)
            except (TypeError, ValueError) as e:
                raise WriteError(
                    f"Cannot convert command {command!r} for item '{item_name}': {e}",
                    path=writable.path,
                )

            try:
                await self._bus.write(writable.path, value)
            except DeviceError:
                log_device_write(logger, item_name, writable.path, value, success=False)
                raise

            log_device_write(logger, item_name, writable.path, value, success=True)
            return

        control = config.as_control()
        if control is not None:
            logger.debug(f"Call execute_control for item '{item_name}'")
            await control.execute_control(self, command)
            return

        logger.debug(
            f"Received command {command!r} for item '{item_name}' which is not writable or executable"
        )

    def get_stats(self) -> dict:
        return {
            "running": self._running,
            "bus_connected": self._bus.is_connection_established(),
            "post_only_changed_values": self._cache.post_only_changed_values,
            "cached_items": len(self._cache),
            "pending_demand_updates": self._demand.pending(),
            "scheduler": self._scheduler.get_stats(),
        }
