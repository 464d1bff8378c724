"""Tests for the typer command line front end."""

import json

import pytest
import typer
from typer.testing import CliRunner

from ntoolbox import cli
from ntoolbox.models.dataflash import DATAFLASH_SIZE, save_dataflash_file

runner = CliRunner()


@pytest.fixture
def device(monkeypatch, fake_transport):
    """Route every command to an in-memory device."""
    monkeypatch.setattr(cli, "create_transport", lambda settings: fake_transport)
    return fake_transport


class TestParseInt:
    def test_none_and_blank(self):
        assert cli.parse_int(None, "--vendor-id") is None
        assert cli.parse_int("  ", "--vendor-id") is None

    def test_decimal_and_hex(self):
        assert cli.parse_int("1046", "--vendor-id") == 0x0416
        assert cli.parse_int("0x5020", "--product-id") == 0x5020

    def test_invalid(self):
        with pytest.raises(typer.BadParameter):
            cli.parse_int("vid", "--vendor-id")


def test_version():
    result = runner.invoke(cli.app, ["version"])
    assert result.exit_code == 0
    assert "ntoolbox" in result.output


def test_devices_lists_registry(device):
    result = runner.invoke(cli.app, ["devices"])
    assert result.exit_code == 0
    assert "connected" in result.output
    assert "E052" in result.output


def test_info(device):
    result = runner.invoke(cli.app, ["info"])
    assert result.exit_code == 0, result.output
    assert "eVic-VTC Mini" in result.output
    assert "APROM" in result.output


def test_info_without_device(monkeypatch, transport_factory):
    """A missing device is reported and exits non-zero."""
    absent = transport_factory(connected=False, reconnect_after=None)
    monkeypatch.setattr(cli, "create_transport", lambda settings: absent)
    result = runner.invoke(cli.app, ["info"])
    assert result.exit_code == 1


def test_bad_vendor_id_option(device):
    result = runner.invoke(cli.app, ["--vendor-id", "nope", "info"])
    assert result.exit_code != 0


def test_read_dataflash(device, tmp_path):
    result = runner.invoke(cli.app, ["read-dataflash", "--output", str(tmp_path)])
    assert result.exit_code == 0, result.output
    saved = list(tmp_path.glob("*.bin"))
    assert len(saved) == 1
    assert saved[0].stat().st_size == DATAFLASH_SIZE


class TestWriteGate:
    def test_write_flag_required(self, device, tmp_path, make_dataflash):
        """Without --write nothing reaches the device."""
        source = save_dataflash_file(make_dataflash(), tmp_path / "df.bin")
        result = runner.invoke(cli.app, ["write-dataflash", str(source)])
        assert result.exit_code == 1
        assert "--write" in result.output
        assert device.calls == []

    def test_wrong_confirmation(self, device):
        result = runner.invoke(cli.app, ["reset-dataflash", "--write", "--confirm", "YES"])
        assert result.exit_code == 1
        assert device.calls == []

    def test_confirmed_write(self, device, tmp_path, make_dataflash):
        source = save_dataflash_file(make_dataflash(hardware_version="1.10"), tmp_path / "df.bin")
        result = runner.invoke(cli.app, ["write-dataflash", str(source), "--write", "--confirm", "WRITE"])
        assert result.exit_code == 0, result.output
        assert device.calls == ["write_dataflash"]

    def test_interactive_prompt_is_not_repeated(self, device, monkeypatch):
        """The command prompts once; the workflow accepts the confirmed context."""
        build_context = cli.create_cli_safety_context

        def interactive_context(*args, **kwargs):
            ctx = build_context(*args, **kwargs)
            ctx.interactive = True
            return ctx

        monkeypatch.setattr(cli, "create_cli_safety_context", interactive_context)
        prompts = []

        def fake_prompt(text):
            prompts.append(text)
            return "WRITE"

        monkeypatch.setattr(cli.typer, "prompt", fake_prompt)
        result = runner.invoke(cli.app, ["boot-mode", "ldrom", "--write"])
        assert result.exit_code == 0, result.output
        assert len(prompts) == 1
        assert device.dataflash.load_from_ldrom is True


def test_boot_mode_rejects_unknown_mode(device):
    result = runner.invoke(cli.app, ["boot-mode", "flash", "--write", "--confirm", "WRITE"])
    assert result.exit_code == 2
    assert device.calls == []


def test_set_hw(device):
    result = runner.invoke(cli.app, ["set-hw", "1.11", "--write", "--confirm", "WRITE"])
    assert result.exit_code == 0, result.output
    assert str(device.dataflash.hardware_version) == "1.11"
    assert device.calls[-1] == "restart_device"


def test_set_hw_rejects_non_numeric(device):
    result = runner.invoke(cli.app, ["set-hw", "abc", "--write", "--confirm", "WRITE"])
    assert result.exit_code == 1
    assert "Invalid hardware version" in result.output
    assert "write_dataflash" not in device.calls


class TestUpdate:
    def test_update_never_flashed_device(self, monkeypatch, transport_factory, make_dataflash, make_firmware, tmp_path):
        transport = transport_factory(dataflash=make_dataflash(firmware_version="0"))
        monkeypatch.setattr(cli, "create_transport", lambda settings: transport)
        path = tmp_path / "fw.bin"
        image = make_firmware()
        path.write_bytes(image)

        result = runner.invoke(cli.app, ["update", str(path), "--write", "--confirm", "WRITE"])

        assert result.exit_code == 0, result.output
        assert transport.firmware == image
        assert "Firmware successfully updated." in result.output

    def test_skip_validation_needs_exact_phrase(self, device, make_firmware, tmp_path):
        path = tmp_path / "fw.bin"
        path.write_bytes(make_firmware(product_id="W033"))
        result = runner.invoke(
            cli.app,
            ["update", str(path), "--write", "--confirm", "WRITE", "--skip-validation", "yes"],
        )
        assert result.exit_code == 1
        assert device.calls == []

    def test_mismatched_firmware_fails(self, device, make_firmware, tmp_path):
        path = tmp_path / "fw.bin"
        path.write_bytes(make_firmware(product_id="W033"))
        result = runner.invoke(cli.app, ["update", str(path), "--write", "--confirm", "WRITE"])
        assert result.exit_code == 1
        assert device.firmware is None


def test_firmware_decode(tmp_path, make_firmware):
    source = tmp_path / "plain.bin"
    source.write_bytes(make_firmware(size=1024))
    target = tmp_path / "enc.bin"
    result = runner.invoke(cli.app, ["firmware-decode", str(source), str(target), "--encode"])
    assert result.exit_code == 0, result.output
    assert target.stat().st_size == 1024


def test_firmware_decode_rejects_garbage(tmp_path):
    source = tmp_path / "junk.bin"
    source.write_bytes(b"\x00" * 128)
    result = runner.invoke(cli.app, ["firmware-decode", str(source), str(tmp_path / "out.bin")])
    assert result.exit_code == 1


class TestConfiguration:
    def test_show_json(self, device):
        result = runner.invoke(cli.app, ["config-show", "--json"])
        assert result.exit_code == 0, result.output
        payload = json.loads(result.output[result.output.index("{"):])
        assert payload["general"]["profiles"][0]["name"] == "WATT"
        assert payload["info"]["product_id"] == "E052"

    def test_show_table(self, device):
        result = runner.invoke(cli.app, ["config-show"])
        assert result.exit_code == 0, result.output
        assert "WATT" in result.output

    def test_save_then_load(self, device, tmp_path):
        path = tmp_path / "config.bin"
        saved = runner.invoke(cli.app, ["config-save", str(path)])
        assert saved.exit_code == 0, saved.output
        assert path.stat().st_size == 1024

        loaded = runner.invoke(
            cli.app,
            ["config-load", str(path), "--no-sync-time", "--write", "--confirm", "WRITE"],
        )
        assert loaded.exit_code == 0, loaded.output
        assert device.calls[-1] == "write_configuration"

    def test_sync_time(self, device):
        result = runner.invoke(cli.app, ["config-sync-time", "--write", "--confirm", "WRITE"])
        assert result.exit_code == 0, result.output
        assert device.clock is not None

    def test_reset(self, device):
        result = runner.invoke(cli.app, ["config-reset", "--write", "--confirm", "WRITE"])
        assert result.exit_code == 0, result.output
        assert device.calls == ["reset_dataflash", "read_configuration"]


def test_watch_returns_after_deadline(device):
    result = runner.invoke(cli.app, ["watch", "--seconds", "0"])
    assert result.exit_code == 0
    assert device.monitor_events == ["start", "stop"]
    assert device.subscribers == []
