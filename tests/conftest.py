"""Shared fakes for transport, HID backend and device data."""

from decimal import Decimal

import pytest

from ntoolbox.errors import DeviceNotConnectedError
from ntoolbox.models.arcticfox import CONFIGURATION_LAYOUT, MINIMUM_SUPPORTED_BUILD
from ntoolbox.models.dataflash import DATAFLASH_LAYOUT, Dataflash
from ntoolbox.utils.crypto import FirmwareEncoder


def build_dataflash(
    product_id: str = "E052",
    hardware_version: str = "1.01",
    firmware_version: str = "3.03",
    load_from_ldrom: bool = False,
    firmware_build: int = 170101,
) -> Dataflash:
    record = DATAFLASH_LAYOUT.blank(
        product_id=product_id,
        hardware_version=Decimal(hardware_version),
        firmware_version=Decimal(firmware_version),
        load_from_ldrom=load_from_ldrom,
        firmware_build=firmware_build,
    )
    return Dataflash(DATAFLASH_LAYOUT.encode(record))


def build_firmware(product_id: str = "E052", size: int = 64 * 1024) -> bytes:
    """Plain image: marker, product id, then a counting pattern."""
    head = FirmwareEncoder.APROM_MARKER + b"\x00" + product_id.encode("ascii") + b"\x00"
    filler = bytes(range(256)) * (size // 256 + 1)
    return (head + filler)[:size]


def build_configuration(product_id: str = "E052", build: int = MINIMUM_SUPPORTED_BUILD + 100) -> bytes:
    record = CONFIGURATION_LAYOUT.blank()
    record.info.product_id = product_id
    record.info.firmware_build = build
    record.info.firmware_version = Decimal("4.01")
    record.info.max_power = 75
    record.general.profiles[0].name = "WATT"
    record.general.profiles[0].power = Decimal("40.5")
    record.general.profiles[0].is_enabled = True
    return CONFIGURATION_LAYOUT.encode(record)


class FakeTransport:
    """
    In-memory device.

    ``reconnect_after`` is the number of presence probes that still report
    "disconnected" after a restart; None means the device never comes back.
    """

    def __init__(self, dataflash=None, configuration=None, connected=True, reconnect_after=0):
        self.dataflash = dataflash if dataflash is not None else build_dataflash()
        self.configuration = configuration if configuration is not None else build_configuration()
        self.connected = connected
        self.reconnect_after = reconnect_after
        self.probes = 0
        self.firmware = None
        self.clock = None
        self.calls = []
        self.monitoring = False
        self.monitor_events = []
        self.subscribers = []

    @property
    def is_connected(self):
        self.probes += 1
        if not self.connected and self.reconnect_after is not None and self.probes > self.reconnect_after:
            self.connected = True
        return self.connected

    def _require(self):
        if not self.connected:
            raise DeviceNotConnectedError("No HID device connected")

    def read_dataflash(self, progress_cb=None):
        self._require()
        self.calls.append("read_dataflash")
        if progress_cb:
            progress_cb(100)
        return self.dataflash.copy()

    def write_dataflash(self, dataflash, progress_cb=None):
        self._require()
        self.calls.append("write_dataflash")
        self.dataflash = dataflash.copy()
        if progress_cb:
            progress_cb(100)

    def reset_dataflash(self):
        self._require()
        self.calls.append("reset_dataflash")

    def restart_device(self):
        self._require()
        self.calls.append("restart_device")
        self.connected = False
        self.probes = 0

    def write_firmware(self, data, progress_cb=None):
        self._require()
        self.calls.append("write_firmware")
        total = len(data)
        if progress_cb:
            progress_cb(0)
        for start in range(0, total, 1024):
            if progress_cb:
                progress_cb(min(100, min(start + 1024, total) * 100 // total))
        self.firmware = bytes(data)

    def read_configuration(self, size, progress_cb=None):
        self._require()
        self.calls.append("read_configuration")
        if progress_cb:
            progress_cb(100)
        return self.configuration[:size]

    def write_configuration(self, data, progress_cb=None):
        self._require()
        self.calls.append("write_configuration")
        self.configuration = bytes(data)

    def set_datetime(self, moment):
        self._require()
        self.calls.append("set_datetime")
        self.clock = moment

    def subscribe(self, callback):
        self.subscribers.append(callback)
        return lambda: self.subscribers.remove(callback)

    def start_monitoring(self):
        self.monitor_events.append("start")
        self.monitoring = True

    def stop_monitoring(self):
        self.monitor_events.append("stop")
        self.monitoring = False


class FakeHidDevice:
    """Scripted hidapi device: queued input reports, recorded output reports."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.writes = []
        self.opened = []
        self.closed = 0
        self.write_result = None
        self.write_error = None

    def open(self, vendor_id, product_id):
        self.opened.append((vendor_id, product_id))

    def close(self):
        self.closed += 1

    def write(self, data):
        if self.write_error is not None:
            raise self.write_error
        self.writes.append(bytes(data))
        return len(data) if self.write_result is None else self.write_result

    def read(self, size, timeout_ms=0):
        if not self.responses:
            return []
        return list(self.responses.pop(0))[:size]


class FakeHidBackend:
    def __init__(self, device=None, present=True):
        self.hid_device = device or FakeHidDevice()
        self.present = present

    def enumerate(self, vendor_id=0, product_id=0):
        if not self.present:
            return []
        return [{"vendor_id": vendor_id, "product_id": product_id, "path": b"fake"}]

    def device(self):
        return self.hid_device


def split_reports(blob: bytes, size: int = 64):
    return [blob[i:i + size] for i in range(0, len(blob), size)]


class FakeClock:
    """Monotonic clock advanced only by its own sleep()."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def make_dataflash():
    return build_dataflash


@pytest.fixture
def make_firmware():
    return build_firmware


@pytest.fixture
def make_configuration():
    return build_configuration


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def transport_factory():
    return FakeTransport


@pytest.fixture
def hid_backend():
    return FakeHidBackend()


@pytest.fixture
def reports():
    return split_reports


@pytest.fixture
def fake_clock():
    return FakeClock()
