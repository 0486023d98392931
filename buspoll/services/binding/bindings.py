"""
Binding Configurations

One BindingConfig describes how an item maps to a device property and
what happens when the item receives a command. Dispatch goes through the
capability accessors (`as_readable()`, `as_writable()`, `as_executable()`,
`as_control()`), each of which returns the config itself or None.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from buspoll.common.config import REFRESH_NEVER, ConverterType
from buspoll.common.exceptions import ConfigError


class UnDefType(str, Enum):
    """State published when a device property cannot be read"""
    UNDEF = "UNDEF"


UNDEF = UnDefType.UNDEF


class OnOff(str, Enum):
    """Switch state"""
    ON = "ON"
    OFF = "OFF"


# ----------------------------------------------------------------------
# Value conversion
# ----------------------------------------------------------------------

class ValueConverter(Protocol):
    """Maps raw bus strings to item values and commands back to bus strings"""

    def convert_read_value_to_type(self, raw: str) -> Any:
        ...

    def convert_command_to_string(self, command: Any) -> str:
        ...


class StringConverter:
    """Passes values through as text"""

    def convert_read_value_to_type(self, raw: str) -> str:
        return raw.strip()

    def convert_command_to_string(self, command: Any) -> str:
        if isinstance(command, Enum):
            return str(command.value)
        return str(command)


class NumberConverter:
    """Numeric item values. Raises ValueError on unparsable input."""

    def convert_read_value_to_type(self, raw: str) -> float:
        return float(raw.strip())

    def convert_command_to_string(self, command: Any) -> str:
        if isinstance(command, bool):
            return "1" if command else "0"
        value = float(command)
        if value.is_integer():
            return str(int(value))
        return repr(value)


class SwitchConverter:
    """ON/OFF items backed by 0/1 style device values"""

    _ON = {"1", "on", "true", "yes"}
    _OFF = {"0", "off", "false", "no"}

    def convert_read_value_to_type(self, raw: str) -> OnOff:
        text = raw.strip().lower()
        if text in self._ON:
            return OnOff.ON
        if text in self._OFF:
            return OnOff.OFF
        # Numeric registers: anything non-zero is on
        return OnOff.ON if float(text) != 0 else OnOff.OFF

    def convert_command_to_string(self, command: Any) -> str:
        if isinstance(command, str):
            command = command.strip().upper()
        return "1" if command in (OnOff.ON, "ON", True, 1) else "0"


CONVERTERS: dict[ConverterType, Callable[[], ValueConverter]] = {
    ConverterType.NUMBER: NumberConverter,
    ConverterType.STRING: StringConverter,
    ConverterType.SWITCH: SwitchConverter,
}


def converter_for(converter_type: ConverterType) -> ValueConverter:
    return CONVERTERS[converter_type]()


# ----------------------------------------------------------------------
# Control strategies
# ----------------------------------------------------------------------

class RuntimeControls(Protocol):
    """Runtime operations a control strategy may call back into"""

    def request_refresh(self, item_name: str) -> None:
        ...

    def clear_cache_item_state(self, item_name: str | None = None) -> None:
        ...

    def readable_items(self) -> list[str]:
        ...


class ControlStrategy(Protocol):
    async def execute(self, runtime: RuntimeControls, command: Any) -> None:
        ...


def is_trigger_command(command: Any) -> bool:
    """OFF-like commands do not trigger control actions"""
    if isinstance(command, str):
        return command.strip().upper() not in ("OFF", "0", "FALSE")
    return command not in (OnOff.OFF, False, 0)


@dataclass
class RefreshControl:
    """Forces an out-of-band read of the target items (all readable items if empty)"""
    targets: list[str] = field(default_factory=list)

    async def execute(self, runtime: RuntimeControls, command: Any) -> None:
        if not is_trigger_command(command):
            return
        for item_name in self.targets or runtime.readable_items():
            runtime.request_refresh(item_name)


@dataclass
class ClearCacheControl:
    """Drops cached states so the next read of each item is published"""
    targets: list[str] = field(default_factory=list)

    async def execute(self, runtime: RuntimeControls, command: Any) -> None:
        if not is_trigger_command(command):
            return
        if not self.targets:
            runtime.clear_cache_item_state()
            return
        for item_name in self.targets:
            runtime.clear_cache_item_state(item_name)


# ----------------------------------------------------------------------
# Binding variants
# ----------------------------------------------------------------------

class BindingConfig:
    """Base of all binding variants"""

    def as_readable(self) -> "ReadableProperty | None":
        return None

    def as_writable(self) -> "WritableProperty | None":
        return None

    def as_executable(self) -> "ExecutableProperty | None":
        return None

    def as_control(self) -> "ControlProperty | None":
        return None


@dataclass
class ReadableProperty(BindingConfig):
    """
    Device property read on a schedule.

    Attributes:
        path: Device property path handed to the bus transport
        refresh: Auto-refresh seconds (-1 never, 0 once on registration, >0 repeat)
        ignore_read_errors: Log failed reads at debug instead of error severity
        converter: Turns the raw bus string into the item value
    """
    path: str
    refresh: int = REFRESH_NEVER
    ignore_read_errors: bool = False
    converter: ValueConverter = field(default_factory=StringConverter)

    def as_readable(self) -> "ReadableProperty":
        return self

    def convert_read_value_to_type(self, raw: str) -> Any:
        return self.converter.convert_read_value_to_type(raw)


@dataclass
class WritableProperty(ReadableProperty):
    """Readable property that also accepts commands as plain writes"""

    def as_writable(self) -> "WritableProperty":
        return self

    def convert_command_to_string(self, command: Any) -> str:
        return self.converter.convert_command_to_string(command)


@dataclass
class ExecutableProperty(ReadableProperty):
    """Readable property whose commands run an arbitrary action instead of a write"""
    action: Callable[[Any], Awaitable[None]] | None = None

    def as_executable(self) -> "ExecutableProperty":
        return self

    async def execute(self, command: Any) -> None:
        if self.action is None:
            raise ConfigError(f"No action configured for executable property {self.path}")
        await self.action(command)


@dataclass
class ControlProperty(BindingConfig):
    """Item that drives a control strategy rather than a device property"""
    control: ControlStrategy

    def as_control(self) -> "ControlProperty":
        return self

    async def execute_control(self, runtime: RuntimeControls, command: Any) -> None:
        await self.control.execute(runtime, command)
