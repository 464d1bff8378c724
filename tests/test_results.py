"""Tests for OperationResult."""

import json

from ntoolbox.core.actions import download_configuration, read_device_info
from ntoolbox.core.results import OperationResult


def test_add_error_marks_failure():
    result = OperationResult.success(operation="read_dataflash")
    result.add_error("Device did not respond within 2.0s")
    assert not result.ok
    assert result.message == "Device did not respond within 2.0s"


def test_failure_constructor():
    result = OperationResult.failure(operation="update_firmware", error="boom", device="Cuboid")
    assert result.errors == ["boom"]
    assert result.device == "Cuboid"


def test_summary_lists_metadata_and_states():
    result = OperationResult.success(operation="update_firmware", device="eVic-VTC Mini", bytes_len=65536)
    result.metadata["path"] = "fw.bin"
    result.metadata["states"] = ["READING_DATAFLASH", "UPLOADING", "SUCCEEDED"]
    result.add_warning("validation skipped")

    summary = result.to_summary()

    assert summary.splitlines()[0] == "update_firmware: OK"
    assert "  bytes: 65,536" in summary
    assert "  path: fw.bin" in summary
    assert "READING_DATAFLASH > UPLOADING > SUCCEEDED" in summary
    assert "  warning: validation skipped" in summary


def test_to_dict_flattens_device_objects(fake_transport):
    info = read_device_info(fake_transport)
    config = download_configuration(fake_transport)

    plain = info.to_dict()
    json.dumps(plain)
    assert plain["metadata"]["identity"]["boot_source"] == "APROM"
    assert plain["metadata"]["identity"]["hardware_version"] == "1.01"
    assert len(plain["metadata"]["dataflash"]) == 2044 * 2

    plain = config.to_dict()
    json.dumps(plain)
    assert plain["metadata"]["configuration"]["general"]["profiles"][0]["name"] == "WATT"
