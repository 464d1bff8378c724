"""Tests for runtime settings."""

import pytest

from ntoolbox.config import DEFAULT_PRODUCT_ID, DEFAULT_VENDOR_ID, ToolboxSettings, UpdateTimings
from ntoolbox.errors import FormatError


def test_defaults():
    settings = ToolboxSettings.from_env({})
    assert settings.vendor_id == DEFAULT_VENDOR_ID == 0x0416
    assert settings.product_id == DEFAULT_PRODUCT_ID == 0x5020
    assert settings.chunk_size == 1024
    assert settings.timings == UpdateTimings()


def test_environment_overrides():
    settings = ToolboxSettings.from_env(
        {
            "NTOOLBOX_VENDOR_ID": "0x1234",
            "NTOOLBOX_PRODUCT_ID": "22136",
            "NTOOLBOX_TIMEOUT": "3.5",
            "NTOOLBOX_CHUNK_SIZE": "512",
            "NTOOLBOX_RECONNECT_TIMEOUT": "10",
            "NTOOLBOX_POLL_INTERVAL": " ",
        }
    )
    assert settings.vendor_id == 0x1234
    assert settings.product_id == 0x5678
    assert settings.timeout == 3.5
    assert settings.chunk_size == 512
    assert settings.poll_interval == 1.0
    assert settings.timings.reconnect_timeout == 10.0
    assert settings.timings.after_restart == 3.0


def test_unparsable_environment_value():
    with pytest.raises(FormatError) as ei:
        ToolboxSettings.from_env({"NTOOLBOX_TIMEOUT": "soon"})
    assert "NTOOLBOX_TIMEOUT" in str(ei.value)


@pytest.mark.parametrize("chunk_size", [0, 100, -64])
def test_chunk_size_must_be_report_multiple(chunk_size):
    with pytest.raises(FormatError):
        ToolboxSettings(chunk_size=chunk_size)


def test_non_positive_timeout():
    with pytest.raises(FormatError):
        ToolboxSettings(timeout=0)


def test_with_overrides_skips_none():
    settings = ToolboxSettings().with_overrides(vendor_id=None, timeout=4.0)
    assert settings.vendor_id == DEFAULT_VENDOR_ID
    assert settings.timeout == 4.0


def test_immediate_timings():
    timings = UpdateTimings.immediate()
    assert timings.after_restart == 0.0
    assert timings.reconnect_timeout == 0.0
