"""Device protocol layer - HID transport and presence monitoring."""

from .base import DeviceTransport, ProgressCallback, ConnectionCallback
from .connection_monitor import ConnectionMonitor
from .hid_transport import (
    HidTransport,
    build_command,
    CMD_READ_DATAFLASH,
    CMD_WRITE_DATAFLASH,
    CMD_RESET_DATAFLASH,
    CMD_RESTART,
    CMD_WRITE_FIRMWARE,
    CMD_READ_CONFIGURATION,
    CMD_WRITE_CONFIGURATION,
    CMD_SET_DATETIME,
)

__all__ = [
    # Interfaces
    "DeviceTransport",
    "ProgressCallback",
    "ConnectionCallback",
    # Monitor
    "ConnectionMonitor",
    # HID
    "HidTransport",
    "build_command",
    "CMD_READ_DATAFLASH",
    "CMD_WRITE_DATAFLASH",
    "CMD_RESET_DATAFLASH",
    "CMD_RESTART",
    "CMD_WRITE_FIRMWARE",
    "CMD_READ_CONFIGURATION",
    "CMD_WRITE_CONFIGURATION",
    "CMD_SET_DATETIME",
]
