"""
Tests for the Modbus bus transport (pymodbus client replaced by a fake).
"""
import asyncio

import pytest
from pymodbus.exceptions import ModbusException

from buspoll.common.exceptions import CommunicationError, ConfigError, WriteError
from buspoll.services.bus.modbus_bus import (
    ModbusBus,
    RegisterDataType,
    RegisterPath,
    decode_registers,
    encode_value,
)


class FakeResponse:
    def __init__(self, registers=None, error=False):
        self.registers = registers or []
        self._error = error

    def isError(self):
        return self._error


class FakeModbusClient:
    """Stands in for AsyncModbusTcpClient."""

    def __init__(self, host, port, timeout):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.connected = False
        self.closed = False
        self.registers: dict[tuple[int, int], int] = {}
        self.read_error: Exception | None = None
        self.write_error: Exception | None = None
        self.error_response = False
        self.writes = []

    async def connect(self):
        self.connected = True
        return True

    def close(self):
        self.closed = True
        self.connected = False

    async def _read(self, address, count, device_id):
        if self.read_error is not None:
            raise self.read_error
        if self.error_response:
            return FakeResponse(error=True)
        return FakeResponse([
            self.registers.get((device_id, address + i), 0) for i in range(count)
        ])

    async def read_holding_registers(self, address, count, device_id):
        return await self._read(address, count, device_id)

    async def read_input_registers(self, address, count, device_id):
        return await self._read(address, count, device_id)

    async def write_register(self, address, value, device_id):
        if self.write_error is not None:
            raise self.write_error
        self.writes.append((device_id, address, [value]))
        return FakeResponse()

    async def write_registers(self, address, values, device_id):
        if self.write_error is not None:
            raise self.write_error
        self.writes.append((device_id, address, list(values)))
        return FakeResponse()


@pytest.fixture
def clients():
    return []


@pytest.fixture
def modbus_bus(clients):
    def factory(host, port, timeout):
        client = FakeModbusClient(host, port, timeout)
        clients.append(client)
        return client

    return ModbusBus(host="10.0.0.5", port=5020, default_slave_id=3, client_factory=factory)


class TestRegisterPath:

    def test_full_path(self):
        path = RegisterPath.parse("2/input/30001/float32")
        assert path == RegisterPath(2, "input", 30001, RegisterDataType.FLOAT32)
        assert path.count == 2

    def test_default_slave_and_datatype(self):
        path = RegisterPath.parse("holding/100", default_slave_id=7)
        assert path.slave_id == 7
        assert path.datatype == RegisterDataType.UINT16
        assert path.count == 1

    @pytest.mark.parametrize("bad", [
        "",
        "1/coils/5",
        "1/holding",
        "1/holding/70000",
        "1/holding/5/int64",
        "x/holding/5",
    ])
    def test_invalid_paths(self, bad):
        with pytest.raises(ValueError):
            RegisterPath.parse(bad)


class TestRegisterCodec:

    def test_decode_signed(self):
        assert decode_registers([0xFFFF], RegisterDataType.INT16) == -1
        assert decode_registers([0xFFFF, 0xFFFE], RegisterDataType.INT32) == -2

    def test_decode_unsigned_32(self):
        assert decode_registers([0x0001, 0x0000], RegisterDataType.UINT32) == 65536

    def test_decode_float(self):
        assert decode_registers([0x41AC, 0x0000], RegisterDataType.FLOAT32) == 21.5

    def test_decode_nan_is_none(self):
        assert decode_registers([0x7FC0, 0x0000], RegisterDataType.FLOAT32) is None

    def test_decode_short_response(self):
        assert decode_registers([1], RegisterDataType.UINT32) is None

    def test_encode(self):
        assert encode_value("55", RegisterDataType.UINT16) == [55]
        assert encode_value("-1", RegisterDataType.INT16) == [0xFFFF]
        assert encode_value("65536", RegisterDataType.UINT32) == [1, 0]
        assert encode_value("21.5", RegisterDataType.FLOAT32) == [0x41AC, 0x0000]

    @pytest.mark.parametrize("value,datatype", [
        ("1.5", RegisterDataType.UINT16),
        ("-1", RegisterDataType.UINT16),
        ("40000", RegisterDataType.INT16),
        ("abc", RegisterDataType.INT32),
    ])
    def test_encode_rejects(self, value, datatype):
        with pytest.raises(ValueError):
            encode_value(value, datatype)


class TestModbusBusRead:

    @pytest.mark.asyncio
    async def test_read_float(self, modbus_bus, clients):
        assert await modbus_bus.connect() is True
        clients[0].registers.update({(3, 100): 0x41AC, (3, 101): 0x0000})

        assert await modbus_bus.read("holding/100/float32") == "21.5"

    @pytest.mark.asyncio
    async def test_read_integer(self, modbus_bus, clients):
        await modbus_bus.connect()
        clients[0].registers[(1, 5)] = 42

        assert await modbus_bus.read("1/input/5") == "42"

    @pytest.mark.asyncio
    async def test_read_without_connection(self, modbus_bus):
        assert await modbus_bus.read("1/holding/5") is None

    @pytest.mark.asyncio
    async def test_read_bad_path(self, modbus_bus):
        await modbus_bus.connect()
        assert await modbus_bus.read("nonsense") is None

    @pytest.mark.asyncio
    async def test_read_error_response(self, modbus_bus, clients):
        await modbus_bus.connect()
        clients[0].error_response = True

        assert await modbus_bus.read("1/holding/5") is None

    @pytest.mark.asyncio
    async def test_read_modbus_exception(self, modbus_bus, clients):
        await modbus_bus.connect()
        clients[0].read_error = ModbusException("no response")

        assert await modbus_bus.read("1/holding/5") is None
        assert modbus_bus.is_connection_established()

    @pytest.mark.asyncio
    async def test_connection_loss_marks_disconnected(self, modbus_bus, clients):
        await modbus_bus.connect()
        clients[0].read_error = ConnectionResetError("peer reset")

        assert await modbus_bus.read("1/holding/5") is None
        assert not modbus_bus.is_connection_established()


class TestModbusBusWrite:

    @pytest.mark.asyncio
    async def test_single_register(self, modbus_bus, clients):
        await modbus_bus.connect()
        await modbus_bus.write("1/holding/10", "55")

        assert clients[0].writes == [(1, 10, [55])]

    @pytest.mark.asyncio
    async def test_two_registers(self, modbus_bus, clients):
        await modbus_bus.connect()
        await modbus_bus.write("holding/10/float32", "21.5")

        assert clients[0].writes == [(3, 10, [0x41AC, 0x0000])]

    @pytest.mark.asyncio
    async def test_input_register_not_writable(self, modbus_bus):
        await modbus_bus.connect()
        with pytest.raises(WriteError):
            await modbus_bus.write("1/input/10", "1")

    @pytest.mark.asyncio
    async def test_unencodable_value(self, modbus_bus):
        await modbus_bus.connect()
        with pytest.raises(WriteError) as exc_info:
            await modbus_bus.write("1/holding/10", "1.5")
        assert exc_info.value.value == "1.5"

    @pytest.mark.asyncio
    async def test_not_connected(self, modbus_bus):
        with pytest.raises(CommunicationError):
            await modbus_bus.write("1/holding/10", "1")

    @pytest.mark.asyncio
    async def test_connection_loss_raises_communication_error(self, modbus_bus, clients):
        await modbus_bus.connect()
        clients[0].write_error = ConnectionResetError("peer reset")

        with pytest.raises(CommunicationError) as exc_info:
            await modbus_bus.write("1/holding/10", "1")

        assert exc_info.value.path == "1/holding/10"
        assert not modbus_bus.is_connection_established()

    @pytest.mark.asyncio
    async def test_timeout_raises_write_error(self, modbus_bus, clients):
        await modbus_bus.connect()
        clients[0].write_error = asyncio.TimeoutError()

        with pytest.raises(WriteError, match="timeout"):
            await modbus_bus.write("1/holding/10", "1")


class TestModbusBusSettings:

    @pytest.mark.asyncio
    async def test_endpoint_change_drops_connection(self, modbus_bus, clients):
        await modbus_bus.connect()

        modbus_bus.updated({"host": "10.0.0.6", "port": 502})

        assert clients[0].closed
        assert not modbus_bus.is_connection_established()

        await modbus_bus.connect()
        assert (clients[1].host, clients[1].port) == ("10.0.0.6", 502)

    @pytest.mark.asyncio
    async def test_same_endpoint_keeps_connection(self, modbus_bus, clients):
        await modbus_bus.connect()

        modbus_bus.updated({"host": "10.0.0.5", "port": 5020, "default_slave_id": 9})

        assert modbus_bus.is_connection_established()
        assert modbus_bus.default_slave_id == 9

    def test_invalid_port(self, modbus_bus):
        with pytest.raises(ConfigError):
            modbus_bus.updated({"port": 0})

    def test_non_numeric_port(self, modbus_bus):
        with pytest.raises(ConfigError):
            modbus_bus.updated({"port": "modbus"})
