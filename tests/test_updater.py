"""Tests for the firmware update state machine."""

from ntoolbox.config import UpdateTimings
from ntoolbox.core.updater import RECONNECT_FAILED_MESSAGE, FirmwareUpdater, UpdateState
from ntoolbox.protocol.hid_transport import CMD_WRITE_FIRMWARE, HidTransport, build_command

from conftest import FakeHidBackend, FakeHidDevice


def make_updater(transport, clock, timings=None):
    return FirmwareUpdater(transport, timings=timings, sleep=clock.sleep, clock=clock)


class TestBootModeDecision:
    def test_never_flashed_device_skips_switch(self, transport_factory, make_dataflash, make_firmware, fake_clock):
        transport = transport_factory(dataflash=make_dataflash(firmware_version="0"))
        image = make_firmware()

        result = make_updater(transport, fake_clock).run(image)

        assert result.ok
        assert transport.calls == ["read_dataflash", "write_firmware"]
        assert transport.firmware == image
        assert result.metadata["boot_mode_switched"] is False
        assert "SWITCHING_BOOT_MODE" not in result.metadata["states"]
        assert result.metadata["states"][-1] == "SUCCEEDED"

    def test_loader_mode_skips_switch(self, transport_factory, make_dataflash, make_firmware, fake_clock):
        transport = transport_factory(dataflash=make_dataflash(load_from_ldrom=True))

        result = make_updater(transport, fake_clock).run(make_firmware())

        assert result.ok
        assert "restart_device" not in transport.calls
        assert fake_clock.sleeps == [0.5]

    def test_flashed_device_switches_to_loader(self, fake_transport, make_firmware, fake_clock):
        states = []

        result = make_updater(fake_transport, fake_clock).run(make_firmware(), state_cb=states.append)

        assert result.ok
        assert fake_transport.calls == [
            "read_dataflash",
            "write_dataflash",
            "restart_device",
            "write_firmware",
        ]
        assert fake_transport.dataflash.load_from_ldrom is True
        assert fake_clock.sleeps == [0.5, 3.0, 0.5]
        assert states == [
            UpdateState.READING_DATAFLASH,
            UpdateState.VALIDATING_FIRMWARE,
            UpdateState.EVALUATING_BOOT_MODE,
            UpdateState.SWITCHING_BOOT_MODE,
            UpdateState.RESTART_AND_WAIT,
            UpdateState.UPLOADING,
            UpdateState.SUCCEEDED,
        ]
        assert result.device == "eVic-VTC Mini"
        assert result.bytes_len == 64 * 1024


class TestReconnect:
    def test_polls_until_device_returns(self, transport_factory, make_firmware, fake_clock):
        transport = transport_factory(reconnect_after=3)

        result = make_updater(transport, fake_clock).run(make_firmware())

        assert result.ok
        assert transport.probes == 4
        assert fake_clock.sleeps == [0.5, 3.0, 0.1, 0.1, 0.1, 0.5]

    def test_device_never_returns(self, transport_factory, make_firmware, fake_clock):
        transport = transport_factory(reconnect_after=None)

        result = make_updater(transport, fake_clock).run(make_firmware())

        assert not result.ok
        assert result.errors == [RECONNECT_FAILED_MESSAGE]
        assert transport.firmware is None
        assert "write_firmware" not in transport.calls
        # the loader flag written before the restart stays set
        assert transport.dataflash.load_from_ldrom is True
        states = result.metadata["states"]
        assert states[-2:] == ["RESTART_AND_WAIT", "FAILED"]
        assert fake_clock.now >= 3.0 + 5.0

    def test_zero_timeout_probes_once(self, transport_factory, fake_clock):
        transport = transport_factory(connected=False, reconnect_after=None)
        updater = make_updater(transport, fake_clock, UpdateTimings.immediate())
        assert updater.wait_for_reconnect() is False
        assert transport.probes == 1


class TestValidation:
    def test_mismatch_stops_before_any_write(self, fake_transport, make_firmware, fake_clock):
        result = make_updater(fake_transport, fake_clock).run(make_firmware(product_id="W033"))

        assert not result.ok
        assert "not suitable" in result.message
        assert fake_transport.calls == ["read_dataflash"]
        assert result.metadata["states"][-1] == "FAILED"

    def test_override_flashes_with_warning(self, fake_transport, make_firmware, fake_clock):
        image = make_firmware(product_id="W033")

        result = make_updater(fake_transport, fake_clock).run(image, skip_validation=True)

        assert result.ok
        assert result.warnings
        assert fake_transport.firmware == image


def test_transport_error_fails_update(transport_factory, make_firmware, fake_clock):
    transport = transport_factory(connected=False, reconnect_after=None)

    result = make_updater(transport, fake_clock).run(make_firmware())

    assert not result.ok
    assert result.metadata["states"] == ["READING_DATAFLASH", "FAILED"]


def test_end_to_end_over_hid(make_dataflash, make_firmware, reports):
    dataflash = make_dataflash(firmware_version="0")
    device = FakeHidDevice(reports(dataflash.to_wire()))
    transport = HidTransport(backend=FakeHidBackend(device), chunk_size=1024)
    image = make_firmware(size=64 * 1024)
    progress = []

    result = FirmwareUpdater(transport, UpdateTimings.immediate()).run(image, progress_cb=progress.append)

    assert result.ok, result.errors
    assert progress[0] == 0
    assert progress[-1] == 100
    assert progress == sorted(progress)
    assert len(progress) == 1 + 64

    firmware_command = device.writes[1]
    assert firmware_command[1:] == build_command(CMD_WRITE_FIRMWARE, 0, len(image))
    assert b"".join(report[1:] for report in device.writes[2:]) == image
    assert device.closed == 2
