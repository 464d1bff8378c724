"""
ntoolbox - device toolbox for Arctic Fox capable USB HID vape mods

Dataflash backup and restore, firmware updates with automatic boot-mode
switching, and Arctic Fox configuration editing.
"""

__version__ = "0.1.0"

from ntoolbox.protocol import HidTransport, ConnectionMonitor
from ntoolbox.firmware_loader import FirmwareLoader
from ntoolbox.core import FirmwareUpdater, OperationSerializer, OperationResult

__all__ = [
    "HidTransport",
    "ConnectionMonitor",
    "FirmwareLoader",
    "FirmwareUpdater",
    "OperationSerializer",
    "OperationResult",
    "__version__",
]
