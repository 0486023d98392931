"""
Tests for the binding service wiring and the command line entry point.
"""
import asyncio
import json
import sys

import pytest
from aiohttp.test_utils import make_mocked_request

from buspoll import main as cli
from buspoll.common.config import load_config_file
from buspoll.common.state import SharedState, get_service_health
from buspoll.services.binding.bindings import ReadableProperty
from buspoll.services.binding.service import BindingService

from tests.test_modbus_bus import FakeModbusClient


CONFIG = """
health_port: 0
scheduler:
  max_jobs: 10
  max_workers: 2
connection:
  host: 127.0.0.1
  port: 5020
bindings:
  temp1:
    path: 1/holding/100
    refresh: 60
    converter: number
  refresh_all:
    type: control
    control: refresh
"""


@pytest.fixture
def config_path(tmp_path, state_dir):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG + f"state_dir: {state_dir}\n")
    return path


def fake_client_factory(host, port, timeout):
    client = FakeModbusClient(host, port, timeout)
    client.registers[(1, 100)] = 215
    return client


class TestBindingService:

    def test_build_wires_components(self, config_path):
        service = BindingService(config_path=str(config_path))
        runtime = service.build()

        assert runtime.providers == [service.provider]
        assert runtime.scheduler.max_jobs == 10
        assert runtime.scheduler.max_workers == 2
        assert service.sink.resolve_target("temp1") == "temp1"
        assert service.bus.port == 5020

        service.provider.set_binding("added", ReadableProperty(path="1/holding/300"))
        assert service.sink.resolve_target("added") == "added"

    @pytest.mark.asyncio
    async def test_run_until_shutdown(self, config_path):
        service = BindingService(config_path=str(config_path))
        service.build()
        service.bus._client_factory = fake_client_factory

        task = asyncio.create_task(service.run())
        for _ in range(50):
            await asyncio.sleep(0.02)
            running = get_service_health().get("binding", {}).get("status") == "running"
            if running and "temp1" in service.runtime.cache:
                break

        assert service.runtime.scheduler.is_registered("temp1")
        assert SharedState.read("items", use_cache=False)["temp1"]["value"] == 215.0
        assert get_service_health()["binding"]["status"] == "running"

        service.request_shutdown()
        await asyncio.wait_for(task, timeout=2)

        assert not service.runtime.is_running
        assert get_service_health()["binding"]["status"] == "stopped"

    @pytest.mark.asyncio
    async def test_health_handler(self, config_path):
        service = BindingService(config=load_config_file(config_path))
        service.build()

        response = await service._health_handler(make_mocked_request("GET", "/health"))
        body = json.loads(response.body)

        assert body["service"] == "binding"
        assert body["status"] == "unhealthy"
        assert body["runtime"]["running"] is False


class TestCommandLine:

    def test_dry_run_lists_bindings(self, config_path, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["buspoll", "--config", str(config_path), "--dry-run"])

        with pytest.raises(SystemExit) as exc_info:
            cli.main()

        assert exc_info.value.code == 0
        output = capsys.readouterr().out
        assert "temp1: readable 1/holding/100" in output
        assert "refresh_all: control refresh -> all" in output

    def test_invalid_bindings_exit_with_error(self, tmp_path, monkeypatch, capsys):
        path = tmp_path / "config.yaml"
        path.write_text("bindings:\n  temp1:\n    refresh: 5\n")
        monkeypatch.setattr(sys, "argv", ["buspoll", "--config", str(path), "--dry-run"])

        with pytest.raises(SystemExit) as exc_info:
            cli.main()

        assert exc_info.value.code == 1
        assert "missing device property path" in capsys.readouterr().out

    def test_missing_config_file(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["buspoll", "-c", str(tmp_path / "none.yaml")])

        with pytest.raises(SystemExit) as exc_info:
            cli.main()

        assert exc_info.value.code == 1
        assert "Error loading configuration" in capsys.readouterr().out
