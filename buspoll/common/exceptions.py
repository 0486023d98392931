"""
Exceptions raised by buspoll.

Every error carries a `recoverable` flag: a recoverable error fails one
operation (a write, a reconnect), an unrecoverable one stops the service.
Messages are prefixed with the error family so log lines stay greppable.
"""


class BuspollError(Exception):
    """Base class; `prefix` is prepended to the message"""

    prefix = ""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(f"{self.prefix}{message}")


class ConfigError(BuspollError):
    """Malformed configuration file, binding definition or setting"""

    prefix = "Config Error: "


class DeviceError(BuspollError):
    """A device property could not be accessed; `path` names it when known"""

    prefix = "Device Error: "

    def __init__(self, message: str, path: str | None = None, recoverable: bool = True):
        self.path = path
        super().__init__(message, recoverable)


class CommunicationError(DeviceError):
    """The bus itself is unreachable (always recoverable by reconnecting)"""

    def __init__(
        self,
        message: str,
        path: str | None = None,
        host: str | None = None,
        port: int | None = None,
    ):
        self.host = host
        self.port = port
        super().__init__(message, path)


class WriteError(DeviceError):
    """A command could not be converted, encoded or written"""

    def __init__(self, message: str, path: str | None = None, value: str | int | None = None):
        self.value = value
        super().__init__(message, path)


class ServiceError(BuspollError):
    """Service startup or shutdown failed"""

    def __init__(self, message: str, service_name: str, recoverable: bool = True):
        self.service_name = service_name
        self.prefix = f"Service [{service_name}]: "
        super().__init__(message, recoverable)
