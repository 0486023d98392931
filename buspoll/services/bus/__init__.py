"""
Bus Transports

Device property access by string path.
"""

from .modbus_bus import ModbusBus, RegisterDataType, RegisterPath

__all__ = ["ModbusBus", "RegisterDataType", "RegisterPath"]
