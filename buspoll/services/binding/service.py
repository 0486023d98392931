"""
Binding Service - Device Property Polling

Responsible for:
- Loading the service configuration and bindings
- Maintaining the bus connection
- Running the binding runtime (scheduled reads, commands)
- Reporting health
"""

import asyncio
import signal
from datetime import datetime, timezone
from pathlib import Path

from aiohttp import web

from buspoll.common.config import ServiceConfig, load_config_file
from buspoll.common.exceptions import ServiceError
from buspoll.common.logging_setup import get_service_logger
from buspoll.common.state import SharedState, set_service_health
from buspoll.services.bus.modbus_bus import ModbusBus

from .provider import BindingProvider
from .runtime import BindingRuntime
from .sink import StateFileSink

logger = get_service_logger("binding")

# Seconds between reconnect attempts while the bus is down
CONNECTION_RETRY_SECONDS = 10.0


class BindingService:
    """
    Binding Service

    Wires the bus transport, binding provider, host sink and runtime
    together from one configuration file.
    """

    def __init__(
        self,
        config_path: str | None = None,
        config: ServiceConfig | None = None,
    ):
        self.config_path = config_path or self._find_config_path()
        self.config = config

        self.bus: ModbusBus | None = None
        self.provider: BindingProvider | None = None
        self.sink: StateFileSink | None = None
        self.runtime: BindingRuntime | None = None

        self._start_time = datetime.now(timezone.utc)

        # Health server
        self._health_app: web.Application | None = None
        self._health_runner: web.AppRunner | None = None

        # State
        self._running = False
        self._connection_task: asyncio.Task | None = None
        self._shutdown_event = asyncio.Event()

    def _find_config_path(self) -> str:
        """First existing default location, else the /etc path"""
        possible_paths = [
            "/etc/buspoll/config.yaml",
            "/opt/buspoll/config.yaml",
            Path.cwd() / "config.yaml",
        ]

        for path in possible_paths:
            path = Path(path)
            if path.exists():
                return str(path)

        return str(possible_paths[0])

    def build(self) -> BindingRuntime:
        """Create bus, provider, sink and runtime from the configuration"""
        if self.config is None:
            self.config = load_config_file(self.config_path)

        config = self.config
        SharedState.configure(config.state_dir or None)

        self.bus = ModbusBus(
            host=config.connection.host,
            port=config.connection.port,
            timeout=config.connection.timeout,
            default_slave_id=config.connection.default_slave_id,
        )
        self.provider = BindingProvider.from_definitions(config.bindings)
        self.sink = StateFileSink(items=self.provider.item_names())
        self.provider.add_listener(self.sink)
        self.runtime = BindingRuntime(
            bus=self.bus,
            sink=self.sink,
            providers=[self.provider],
            max_jobs=config.scheduler.max_jobs,
            max_workers=config.scheduler.max_workers,
        )
        self.runtime.updated(config.settings())
        return self.runtime

    async def start(self) -> None:
        """Start the binding service and wait for shutdown"""
        logger.info("Starting Binding Service")

        self._running = True
        set_service_health("binding", {
            "status": "starting",
            "is_healthy": False,
        })

        runtime = self.runtime or self.build()

        await self.bus.connect()
        await runtime.start()
        await self._start_health_server()

        self._connection_task = asyncio.create_task(self._connection_watch_loop())

        set_service_health("binding", {
            "status": "running",
            "is_healthy": True,
            "started_at": self._start_time.isoformat(),
        })

        logger.info(
            f"Binding Service started ({len(self.provider.item_names())} items)",
            extra={"item_count": len(self.provider.item_names())},
        )

        self._setup_signal_handlers()

        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the binding service"""
        logger.info("Stopping Binding Service")

        self._running = False

        if self._connection_task:
            self._connection_task.cancel()
            try:
                await self._connection_task
            except asyncio.CancelledError:
                pass

        if self.runtime:
            await self.runtime.stop()

        if self.bus:
            await self.bus.disconnect()

        await self._stop_health_server()

        set_service_health("binding", {
            "status": "stopped",
            "is_healthy": False,
        })

        logger.info("Binding Service stopped")

    async def run(self) -> None:
        """Start, then stop once a shutdown signal arrives"""
        try:
            await self.start()
        finally:
            await self.stop()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    def _setup_signal_handlers(self) -> None:
        """SIGTERM/SIGINT release start() so run() can stop cleanly"""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except NotImplementedError:
                signal.signal(sig, lambda s, f: self._handle_shutdown())

    def _handle_shutdown(self) -> None:
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    async def _connection_watch_loop(self) -> None:
        """Reconnect a dropped bus and reschedule all bindings once it is back"""
        while self._running:
            await asyncio.sleep(CONNECTION_RETRY_SECONDS)

            if self.bus.is_connection_established():
                continue

            logger.warning("Bus connection down, reconnecting")
            if await self.bus.connect():
                logger.info("Bus connection restored, rescheduling bindings")
                self.runtime.all_bindings_changed(self.provider)

    async def _start_health_server(self) -> None:
        """Serve /health (status + runtime stats) and /items (published states)"""
        self._health_app = web.Application()
        self._health_app.router.add_get("/health", self._health_handler)
        self._health_app.router.add_get("/items", self._items_handler)

        self._health_runner = web.AppRunner(self._health_app)
        await self._health_runner.setup()

        site = web.TCPSite(self._health_runner, "127.0.0.1", self.config.health_port)
        try:
            await site.start()
        except OSError as e:
            await self._health_runner.cleanup()
            self._health_runner = None
            raise ServiceError(f"Cannot bind health port {self.config.health_port}: {e}", "binding")

        logger.info(f"Health server started on port {self.config.health_port}")

    async def _stop_health_server(self) -> None:
        if self._health_runner:
            await self._health_runner.cleanup()
            self._health_runner = None

    async def _health_handler(self, request: web.Request) -> web.Response:
        uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()
        bus_connected = self.bus.is_connection_established() if self.bus else False

        return web.json_response({
            "status": "healthy" if self._running and bus_connected else "unhealthy",
            "service": "binding",
            "uptime": int(uptime),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "runtime": self.runtime.get_stats() if self.runtime else None,
        })

    async def _items_handler(self, request: web.Request) -> web.Response:
        return web.json_response(SharedState.read(self.sink.state_key) if self.sink else {})
