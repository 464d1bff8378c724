"""
Device models: dataflash, Arctic Fox configuration and the device registry.
"""

from .dataflash import (
    DATAFLASH_SIZE,
    DATAFLASH_WIRE_SIZE,
    DATAFLASH_LAYOUT,
    BootSource,
    Dataflash,
    DeviceIdentity,
    dataflash_checksum,
    dataflash_file_name,
    load_dataflash_file,
    save_dataflash_file,
)
from .registry import (
    DeviceInfo,
    UNKNOWN_DEVICE,
    device_name,
    get_device,
    list_devices,
)

__all__ = [
    # Dataflash
    "DATAFLASH_SIZE",
    "DATAFLASH_WIRE_SIZE",
    "DATAFLASH_LAYOUT",
    "BootSource",
    "Dataflash",
    "DeviceIdentity",
    "dataflash_checksum",
    "dataflash_file_name",
    "load_dataflash_file",
    "save_dataflash_file",
    # Registry
    "DeviceInfo",
    "UNKNOWN_DEVICE",
    "device_name",
    "get_device",
    "list_devices",
]
