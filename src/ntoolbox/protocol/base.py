"""Transport interfaces."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional, Protocol

from ..models.dataflash import Dataflash

ProgressCallback = Callable[[int], None]
ConnectionCallback = Callable[[bool], None]


class DeviceTransport(Protocol):
    """
    Blocking device primitives used by the orchestrator and workflows.

    Every call may raise DeviceTimeoutError or DeviceNotConnectedError.
    Progress callbacks receive a cumulative percentage (0..100).
    """

    @property
    def is_connected(self) -> bool:
        """Snapshot of device presence."""

    def read_dataflash(self, progress_cb: Optional[ProgressCallback] = None) -> Dataflash:
        """Read and checksum-verify the full dataflash block."""

    def write_dataflash(self, dataflash: Dataflash, progress_cb: Optional[ProgressCallback] = None) -> None:
        """Write the full dataflash block."""

    def reset_dataflash(self) -> None:
        """Ask the device to restore factory dataflash."""

    def restart_device(self) -> None:
        """Restart the device. Does not wait for it to come back."""

    def write_firmware(self, data: bytes, progress_cb: Optional[ProgressCallback] = None) -> None:
        """Stream a plain firmware image to the loader."""

    def read_configuration(self, size: int, progress_cb: Optional[ProgressCallback] = None) -> bytes:
        """Read the Arctic Fox configuration block."""

    def write_configuration(self, data: bytes, progress_cb: Optional[ProgressCallback] = None) -> None:
        """Write the Arctic Fox configuration block."""

    def set_datetime(self, moment: datetime) -> None:
        """Set the device clock."""
