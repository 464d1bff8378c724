"""
USB HID transport for Arctic Fox / Joyetech style devices.

All traffic uses 64-byte interrupt reports (sent with report id 0 in front,
so 65 bytes go to hidapi). Every operation starts with one command report:

| Offset | Size | Field                                   |
|--------|------|-----------------------------------------|
| 0      | 1    | command code                            |
| 1      | 1    | header length (always 14)               |
| 2      | 4    | arg1, u32 little-endian (start offset)  |
| 6      | 4    | arg2, u32 little-endian (byte count)    |
| 10     | 4    | signature "HIDC"                        |
| 14     | 4    | checksum: sum of bytes 0..13, u32 LE    |
| 18     | 46   | zero padding                            |

Bulk data then follows in 64-byte reports, in either direction. The
dataflash travels as 2048 bytes: a 4-byte additive checksum followed by the
2044-byte payload.

The device is opened per operation and closed afterwards, so a restart or a
replug never leaves a stale handle behind.
"""

import logging
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterator, Optional

import hid

from ..config import DEFAULT_PRODUCT_ID, DEFAULT_VENDOR_ID, HID_REPORT_SIZE, ToolboxSettings
from ..errors import DeviceNotConnectedError, DeviceTimeoutError, DeviceTransportError, FormatError
from ..models.dataflash import DATAFLASH_WIRE_SIZE, Dataflash
from .base import ConnectionCallback, ProgressCallback
from .connection_monitor import ConnectionMonitor

logger = logging.getLogger(__name__)

# Command codes
CMD_READ_DATAFLASH = 0x35
CMD_WRITE_DATAFLASH = 0x53
CMD_RESET_DATAFLASH = 0x7C
CMD_RESTART = 0xB4
CMD_WRITE_FIRMWARE = 0xC3
CMD_READ_CONFIGURATION = 0x60
CMD_WRITE_CONFIGURATION = 0x61
CMD_SET_DATETIME = 0x64

HEADER_LENGTH = 14
SIGNATURE = b"HIDC"
REPORT_ID = 0x00
DATETIME_PAYLOAD_SIZE = 8


def build_command(command: int, arg1: int = 0, arg2: int = 0) -> bytes:
    """
    Build one 64-byte command report (without the report id).

    Raises:
        FormatError: If the command or an argument does not fit its field
    """
    if not 0 <= command <= 0xFF:
        raise FormatError(f"Command code must fit in one byte, got 0x{command:X}")
    for name, value in (("arg1", arg1), ("arg2", arg2)):
        if not 0 <= value <= 0xFFFFFFFF:
            raise FormatError(f"{name} must fit in 32 bits, got {value}")

    packet = bytearray(HID_REPORT_SIZE)
    packet[0] = command
    packet[1] = HEADER_LENGTH
    packet[2:6] = arg1.to_bytes(4, "little")
    packet[6:10] = arg2.to_bytes(4, "little")
    packet[10:14] = SIGNATURE
    checksum = sum(packet[:HEADER_LENGTH]) & 0xFFFFFFFF
    packet[14:18] = checksum.to_bytes(4, "little")
    return bytes(packet)


def encode_datetime(moment: datetime) -> bytes:
    """Clock payload for CMD_SET_DATETIME: year u16 LE, month, day, hour, minute, second, pad."""
    return (
        moment.year.to_bytes(2, "little")
        + bytes([moment.month, moment.day, moment.hour, moment.minute, moment.second, 0])
    )


def _percent(done: int, total: int) -> int:
    if total <= 0:
        return 100
    return min(100, done * 100 // total)


class HidTransport:
    """
    Blocking HID transport.

    Args:
        vendor_id: USB vendor id (default 0x0416)
        product_id: USB product id (default 0x5020)
        timeout: Seconds to wait for each input report
        chunk_size: Firmware bytes sent between progress updates
        poll_interval: Presence monitor poll interval in seconds
        backend: Module providing ``enumerate(vid, pid)`` and ``device()``;
            defaults to hidapi's ``hid`` module

    Example:
        transport = HidTransport()
        dataflash = transport.read_dataflash()
        print(dataflash.product_id)
    """

    def __init__(
        self,
        vendor_id: int = DEFAULT_VENDOR_ID,
        product_id: int = DEFAULT_PRODUCT_ID,
        timeout: float = 2.0,
        chunk_size: int = 1024,
        poll_interval: float = 1.0,
        backend: Any = None,
    ):
        self.vendor_id = vendor_id
        self.product_id = product_id
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.backend = backend if backend is not None else hid
        self.monitor = ConnectionMonitor(self.probe, interval=poll_interval)

    @classmethod
    def from_settings(cls, settings: ToolboxSettings, backend: Any = None) -> "HidTransport":
        return cls(
            vendor_id=settings.vendor_id,
            product_id=settings.product_id,
            timeout=settings.timeout,
            chunk_size=settings.chunk_size,
            poll_interval=settings.poll_interval,
            backend=backend,
        )

    @property
    def timeout_ms(self) -> int:
        return max(1, int(self.timeout * 1000))

    # ------------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------------

    def probe(self) -> bool:
        """Enumerate matching devices. OSError from the backend propagates."""
        return bool(self.backend.enumerate(self.vendor_id, self.product_id))

    @property
    def is_connected(self) -> bool:
        try:
            return self.probe()
        except OSError as exc:
            logger.warning(f"HID enumeration failed: {exc}")
            return False

    def subscribe(self, callback: ConnectionCallback) -> Callable[[], None]:
        return self.monitor.subscribe(callback)

    def start_monitoring(self) -> None:
        self.monitor.start()

    def stop_monitoring(self) -> None:
        self.monitor.stop()

    @property
    def monitoring(self) -> bool:
        return self.monitor.running

    # ------------------------------------------------------------------
    # Low level
    # ------------------------------------------------------------------

    @contextmanager
    def _open(self) -> Iterator[Any]:
        if not self.is_connected:
            raise DeviceNotConnectedError(
                f"No HID device {self.vendor_id:04X}:{self.product_id:04X} connected"
            )
        device = self.backend.device()
        try:
            device.open(self.vendor_id, self.product_id)
        except OSError as exc:
            raise DeviceNotConnectedError(
                f"Cannot open HID device {self.vendor_id:04X}:{self.product_id:04X}: {exc}"
            ) from exc
        logger.debug(f"Opened HID device {self.vendor_id:04X}:{self.product_id:04X}")
        try:
            yield device
        finally:
            device.close()
            logger.debug("Closed HID device")

    def _write_report(self, device: Any, report: bytes) -> None:
        if len(report) > HID_REPORT_SIZE:
            raise FormatError(f"Report too long: {len(report)} bytes")
        payload = bytes([REPORT_ID]) + report.ljust(HID_REPORT_SIZE, b"\x00")
        logger.debug(f">>> {report.hex().upper()}")
        try:
            written = device.write(payload)
        except OSError as exc:
            raise DeviceTransportError(f"HID write failed: {exc}") from exc
        if written is not None and written < 0:
            raise DeviceTransportError("HID write failed: device rejected the report")

    def _read_report(self, device: Any) -> bytes:
        try:
            data = device.read(HID_REPORT_SIZE, self.timeout_ms)
        except OSError as exc:
            raise DeviceTransportError(f"HID read failed: {exc}") from exc
        if not data:
            raise DeviceTimeoutError(f"Device did not respond within {self.timeout:.1f}s")
        report = bytes(data)
        logger.debug(f"<<< {report.hex().upper()}")
        return report

    def _send_command(self, device: Any, command: int, arg1: int = 0, arg2: int = 0) -> None:
        logger.debug(f"Command 0x{command:02X} arg1={arg1} arg2={arg2}")
        self._write_report(device, build_command(command, arg1, arg2))

    def _read_bulk(
        self,
        device: Any,
        size: int,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> bytes:
        buf = bytearray()
        while len(buf) < size:
            buf.extend(self._read_report(device))
            if progress_cb:
                progress_cb(_percent(min(len(buf), size), size))
        return bytes(buf[:size])

    def _write_bulk(
        self,
        device: Any,
        data: bytes,
        chunk_size: int,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> None:
        total = len(data)
        if progress_cb:
            progress_cb(0)
        for chunk_start in range(0, total, chunk_size):
            chunk = data[chunk_start:chunk_start + chunk_size]
            for offset in range(0, len(chunk), HID_REPORT_SIZE):
                self._write_report(device, chunk[offset:offset + HID_REPORT_SIZE])
            if progress_cb:
                progress_cb(_percent(chunk_start + len(chunk), total))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def read_dataflash(self, progress_cb: Optional[ProgressCallback] = None) -> Dataflash:
        """
        Read the dataflash block.

        Raises:
            DeviceNotConnectedError: If no device is present
            DeviceTimeoutError: If the device stops answering mid-read
            FormatError: If the stored checksum does not match the payload
        """
        with self._open() as device:
            self._send_command(device, CMD_READ_DATAFLASH, 0, DATAFLASH_WIRE_SIZE)
            blob = self._read_bulk(device, DATAFLASH_WIRE_SIZE, progress_cb)
        return Dataflash.from_wire(blob)

    def write_dataflash(self, dataflash: Dataflash, progress_cb: Optional[ProgressCallback] = None) -> None:
        blob = dataflash.to_wire()
        with self._open() as device:
            self._send_command(device, CMD_WRITE_DATAFLASH, 0, len(blob))
            self._write_bulk(device, blob, HID_REPORT_SIZE, progress_cb)

    def reset_dataflash(self) -> None:
        with self._open() as device:
            self._send_command(device, CMD_RESET_DATAFLASH)

    def restart_device(self) -> None:
        """Send the restart command. The device drops off the bus right after."""
        with self._open() as device:
            self._send_command(device, CMD_RESTART)

    def write_firmware(self, data: bytes, progress_cb: Optional[ProgressCallback] = None) -> None:
        """
        Stream a plain firmware image.

        Progress is reported once before the first chunk (0) and after every
        ``chunk_size`` bytes, ending at 100.
        """
        if not data:
            raise FormatError("Firmware image is empty")
        started = time.monotonic()
        with self._open() as device:
            self._send_command(device, CMD_WRITE_FIRMWARE, 0, len(data))
            self._write_bulk(device, data, self.chunk_size, progress_cb)
        logger.debug(f"Firmware streamed in {time.monotonic() - started:.1f}s ({len(data)} bytes)")

    def read_configuration(self, size: int, progress_cb: Optional[ProgressCallback] = None) -> bytes:
        with self._open() as device:
            self._send_command(device, CMD_READ_CONFIGURATION, 0, size)
            return self._read_bulk(device, size, progress_cb)

    def write_configuration(self, data: bytes, progress_cb: Optional[ProgressCallback] = None) -> None:
        with self._open() as device:
            self._send_command(device, CMD_WRITE_CONFIGURATION, 0, len(data))
            self._write_bulk(device, data, HID_REPORT_SIZE, progress_cb)

    def set_datetime(self, moment: datetime) -> None:
        """Set the device clock."""
        with self._open() as device:
            self._send_command(device, CMD_SET_DATETIME, 0, DATETIME_PAYLOAD_SIZE)
            self._write_report(device, encode_datetime(moment))
