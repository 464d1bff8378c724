"""
Device registry for Arctic Fox capable devices.

Maps the 4-character product id stored in dataflash to a human-readable
device name and a few static traits.

Usage:
    from ntoolbox.models import get_device, list_devices

    info = get_device("E052")
    print(info.name)  # eVic-VTC Mini
"""

from dataclasses import dataclass, field
from typing import Dict, List


@dataclass(frozen=True)
class DeviceInfo:
    """Static description of a device family."""
    product_id: str
    name: str
    max_power: int = 75
    batteries: int = 1
    notes: List[str] = field(default_factory=list)

    @property
    def is_known(self) -> bool:
        return self.product_id != UNKNOWN_DEVICE.product_id


UNKNOWN_DEVICE = DeviceInfo(product_id="", name="Unknown device", max_power=0, batteries=0)

# ============================================================================
# DEVICE REGISTRY - All known product ids
# ============================================================================

_DEVICE_REGISTRY: Dict[str, DeviceInfo] = {}


def _register_device(info: DeviceInfo) -> None:
    """Register a device description."""
    _DEVICE_REGISTRY[info.product_id] = info


def _init_registry() -> None:
    """Initialize the registry with known devices."""
    _register_device(DeviceInfo("E052", "eVic-VTC Mini", max_power=75))
    _register_device(DeviceInfo("E043", "eVic-VTwo", max_power=80))
    _register_device(DeviceInfo("E115", "eVic-VTwo Mini", max_power=75))
    _register_device(DeviceInfo("E079", "eVic-VTC Dual", max_power=150, batteries=2))
    _register_device(DeviceInfo("E060", "Cuboid", max_power=150, batteries=2))
    _register_device(DeviceInfo("E056", "Cuboid Mini", max_power=80))
    _register_device(DeviceInfo("E150", "eVic Basic", max_power=60))
    _register_device(DeviceInfo("M011", "iStick TC100W", max_power=100, batteries=2))
    _register_device(DeviceInfo("M041", "iStick Pico", max_power=75))
    _register_device(DeviceInfo("W007", "Presa TC75W", max_power=75))
    _register_device(DeviceInfo("W010", "Presa TC100W", max_power=100, batteries=2))
    _register_device(DeviceInfo("W011", "Reuleaux RX200", max_power=200, batteries=3))
    _register_device(DeviceInfo(
        "W033",
        "Reuleaux RX200S",
        max_power=200,
        batteries=3,
        notes=["Three-cell device, reports battery voltages per cell"],
    ))
    _register_device(DeviceInfo("W026", "Reuleaux RX75", max_power=75))


_init_registry()


def list_devices() -> List[DeviceInfo]:
    """All registered devices sorted by name."""
    return sorted(_DEVICE_REGISTRY.values(), key=lambda d: d.name)


def get_device(product_id: str) -> DeviceInfo:
    """
    Look up a device by product id.

    Args:
        product_id: Product id as read from dataflash (e.g. "E052")

    Returns:
        DeviceInfo, or UNKNOWN_DEVICE when the id is not registered.
    """
    if not product_id:
        return UNKNOWN_DEVICE
    return _DEVICE_REGISTRY.get(product_id.strip().upper(), UNKNOWN_DEVICE)


def device_name(product_id: str) -> str:
    """Display name for a product id, falling back to the raw id."""
    info = get_device(product_id)
    if info.is_known:
        return info.name
    return f"Unknown device ({product_id})" if product_id else UNKNOWN_DEVICE.name
