"""
Modbus Bus Transport

Wrapper around pymodbus exposing device properties as string paths:

    "<slave_id>/<holding|input>/<address>[/<datatype>]"

e.g. "3/holding/40001/float32". The slave id may be omitted
("holding/100") to use the configured default.
"""

import asyncio
import math
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from pymodbus.client import AsyncModbusTcpClient
from pymodbus.exceptions import ModbusException

from buspoll.common.exceptions import CommunicationError, ConfigError, WriteError
from buspoll.common.logging_setup import get_service_logger

logger = get_service_logger("bus.modbus")


class RegisterDataType(str, Enum):
    """Modbus register data types"""
    UINT16 = "uint16"
    INT16 = "int16"
    UINT32 = "uint32"
    INT32 = "int32"
    FLOAT32 = "float32"


REGISTER_COUNTS = {
    RegisterDataType.UINT16: 1,
    RegisterDataType.INT16: 1,
    RegisterDataType.UINT32: 2,
    RegisterDataType.INT32: 2,
    RegisterDataType.FLOAT32: 2,
}


@dataclass(frozen=True)
class RegisterPath:
    """Parsed device property path"""
    slave_id: int
    table: str  # holding, input
    address: int
    datatype: RegisterDataType = RegisterDataType.UINT16

    @property
    def count(self) -> int:
        return REGISTER_COUNTS[self.datatype]

    @classmethod
    def parse(cls, path: str, default_slave_id: int = 1) -> "RegisterPath":
        """
        Parse a property path.

        Raises:
            ValueError: if the path is malformed
        """
        parts = [p for p in path.strip().strip("/").split("/") if p]
        if parts and parts[0] in ("holding", "input"):
            parts.insert(0, str(default_slave_id))

        if len(parts) not in (3, 4):
            raise ValueError(f"Invalid register path '{path}'")

        slave_id, table, address = int(parts[0]), parts[1], int(parts[2])
        if table not in ("holding", "input"):
            raise ValueError(f"Unsupported register table '{table}' in '{path}'")
        if not 0 <= address <= 0xFFFF:
            raise ValueError(f"Register address out of range in '{path}'")

        datatype = RegisterDataType(parts[3]) if len(parts) == 4 else RegisterDataType.UINT16
        return cls(slave_id=slave_id, table=table, address=address, datatype=datatype)


def decode_registers(registers: list[int], datatype: RegisterDataType) -> float | int | None:
    """Convert raw registers to typed value (big-endian word order)"""
    if len(registers) < REGISTER_COUNTS[datatype]:
        return None

    if datatype == RegisterDataType.UINT16:
        return registers[0]

    if datatype == RegisterDataType.INT16:
        value = registers[0]
        if value >= 0x8000:
            value -= 0x10000
        return value

    value = (registers[0] << 16) | registers[1]

    if datatype == RegisterDataType.UINT32:
        return value

    if datatype == RegisterDataType.INT32:
        if value >= 0x80000000:
            value -= 0x100000000
        return value

    # FLOAT32
    packed = struct.pack(">HH", registers[0], registers[1])
    result = struct.unpack(">f", packed)[0]
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def encode_value(value: str, datatype: RegisterDataType) -> list[int]:
    """
    Convert a written string to raw registers.

    Raises:
        ValueError: if the value does not fit the datatype
    """
    if datatype == RegisterDataType.FLOAT32:
        packed = struct.pack(">f", float(value))
        return list(struct.unpack(">HH", packed))

    number = float(value)
    if not number.is_integer():
        raise ValueError(f"{value!r} is not an integer")
    number = int(number)

    if datatype == RegisterDataType.UINT16:
        if not 0 <= number <= 0xFFFF:
            raise ValueError(f"{number} out of range for uint16")
        return [number]

    if datatype == RegisterDataType.INT16:
        if not -0x8000 <= number <= 0x7FFF:
            raise ValueError(f"{number} out of range for int16")
        return [number & 0xFFFF]

    if datatype == RegisterDataType.UINT32:
        if not 0 <= number <= 0xFFFFFFFF:
            raise ValueError(f"{number} out of range for uint32")
    elif not -0x80000000 <= number <= 0x7FFFFFFF:
        raise ValueError(f"{number} out of range for int32")

    number &= 0xFFFFFFFF
    return [(number >> 16) & 0xFFFF, number & 0xFFFF]


def format_value(value: float | int) -> str:
    if isinstance(value, float):
        return repr(value)
    return str(value)


ClientFactory = Callable[[str, int, float], Any]


def _default_client_factory(host: str, port: int, timeout: float) -> AsyncModbusTcpClient:
    return AsyncModbusTcpClient(host=host, port=port, timeout=timeout)


class ModbusBus:
    """
    Bus transport over one Modbus TCP connection.

    `read()` never raises: any failure is logged and reported as None.
    `write()` raises CommunicationError / WriteError.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 502,
        timeout: float = 3.0,
        default_slave_id: int = 1,
        client_factory: ClientFactory | None = None,
    ):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.default_slave_id = default_slave_id

        self._client_factory = client_factory or _default_client_factory
        self._client: Any = None
        self._lock = asyncio.Lock()
        self._connected = False

    def is_connection_established(self) -> bool:
        return self._connected and self._client is not None and bool(self._client.connected)

    def updated(self, settings: dict[str, Any]) -> None:
        """
        Apply connection settings. A changed endpoint drops the current
        connection; the next connect() uses the new one.

        Raises:
            ConfigError: if a setting has the wrong type
        """
        try:
            host = str(settings.get("host", self.host))
            port = int(settings.get("port", self.port))
            timeout = float(settings.get("timeout", self.timeout))
            default_slave_id = int(settings.get("default_slave_id", self.default_slave_id))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid connection settings: {e}")

        if not 0 < port <= 65535:
            raise ConfigError(f"Invalid port: {port}")

        endpoint_changed = (host, port, timeout) != (self.host, self.port, self.timeout)
        self.host, self.port, self.timeout = host, port, timeout
        self.default_slave_id = default_slave_id

        if endpoint_changed and self._client is not None:
            logger.info(f"Connection settings changed, reconnecting to {host}:{port}")
            self._client.close()
            self._client = None
            self._connected = False

    async def connect(self) -> bool:
        """Establish connection to the Modbus endpoint"""
        async with self._lock:
            if self.is_connection_established():
                return True

            try:
                self._client = self._client_factory(self.host, self.port, self.timeout)
                await self._client.connect()
                self._connected = bool(self._client.connected)

                if self._connected:
                    logger.info(f"Connected to Modbus bus at {self.host}:{self.port}")
                else:
                    logger.warning(f"Failed to connect to Modbus bus at {self.host}:{self.port}")

                return self._connected

            except Exception as e:
                logger.error(f"Connection error to {self.host}:{self.port}: {e}")
                self._connected = False
                return False

    async def disconnect(self) -> None:
        async with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None
            self._connected = False
            logger.debug(f"Disconnected from {self.host}:{self.port}")

    async def read(self, path: str) -> str | None:
        try:
            register = RegisterPath.parse(path, self.default_slave_id)
        except ValueError as e:
            logger.warning(f"Cannot read '{path}': {e}")
            return None

        if not self.is_connection_established():
            logger.debug(f"Not connected, cannot read '{path}'")
            return None

        try:
            if register.table == "holding":
                response = await self._client.read_holding_registers(
                    address=register.address,
                    count=register.count,
                    device_id=register.slave_id,
                )
            else:
                response = await self._client.read_input_registers(
                    address=register.address,
                    count=register.count,
                    device_id=register.slave_id,
                )
        except ModbusException as e:
            logger.warning(f"Modbus exception reading '{path}': {e}")
            return None
        except asyncio.TimeoutError:
            logger.warning(f"Read timeout for '{path}'")
            return None
        except OSError as e:
            logger.warning(f"Connection lost reading '{path}': {e}")
            self._connected = False
            return None

        if response.isError():
            logger.warning(f"Modbus error reading '{path}': {response}")
            return None

        value = decode_registers(list(response.registers), register.datatype)
        return format_value(value) if value is not None else None

    async def write(self, path: str, value: str) -> None:
        try:
            register = RegisterPath.parse(path, self.default_slave_id)
        except ValueError as e:
            raise WriteError(str(e), path=path, value=value)

        if register.table != "holding":
            raise WriteError("Only holding registers are writable", path=path, value=value)

        try:
            registers = encode_value(value, register.datatype)
        except (ValueError, struct.error) as e:
            raise WriteError(f"Cannot encode value: {e}", path=path, value=value)

        if not self.is_connection_established():
            raise CommunicationError(
                f"Not connected to {self.host}:{self.port}",
                path=path,
                host=self.host,
                port=self.port,
            )

        try:
            if len(registers) == 1:
                response = await self._client.write_register(
                    address=register.address,
                    value=registers[0],
                    device_id=register.slave_id,
                )
            else:
                response = await self._client.write_registers(
                    address=register.address,
                    values=registers,
                    device_id=register.slave_id,
                )
        except ModbusException as e:
            raise WriteError(f"Modbus exception: {e}", path=path, value=value)
        except asyncio.TimeoutError:
            raise WriteError("Write timeout", path=path, value=value)
        except OSError as e:
            self._connected = False
            raise CommunicationError(
                f"Connection lost writing: {e}",
                path=path,
                host=self.host,
                port=self.port,
            )

        if response.isError():
            raise WriteError(f"Write failed: {response}", path=path, value=value)

        logger.debug(f"Write successful: {path} = {value}")
