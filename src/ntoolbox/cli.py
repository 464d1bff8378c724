"""
ntoolbox CLI

Command-line front end for dataflash, firmware and Arctic Fox configuration
operations. Every device operation runs through the operation serializer,
the same path a GUI would use.
"""

import json
import logging
import sys
import time
from pathlib import Path
from typing import Callable, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from ntoolbox import __version__
from ntoolbox.config import ToolboxSettings
from ntoolbox.core.actions import (
    change_boot_mode,
    change_hardware_version,
    convert_firmware,
    download_configuration,
    read_dataflash,
    read_device_info,
    reset_configuration,
    reset_dataflash,
    restore_configuration,
    save_configuration,
    sync_device_time,
    update_firmware,
    write_dataflash,
)
from ntoolbox.core.results import OperationResult
from ntoolbox.core.safety import (
    CONFIRMATION_TOKEN,
    SKIP_VALIDATION_TOKEN,
    SafetyContext,
    create_cli_safety_context,
    require_write_permission,
)
from ntoolbox.core.serializer import OperationSerializer
from ntoolbox.core.updater import UpdateState
from ntoolbox.errors import FormatError, WritePermissionError
from ntoolbox.models.dataflash import BootSource
from ntoolbox.models.registry import list_devices
from ntoolbox.protocol.hid_transport import HidTransport
from ntoolbox.structure_codec import format_scaled

logger = logging.getLogger("ntoolbox")

console = Console()

app = typer.Typer(help="ntoolbox - Arctic Fox device toolbox (dataflash, firmware, settings)")


def print_header(text: str) -> None:
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    console.print(f"❌ {text}", style="red")


def create_transport(settings: ToolboxSettings) -> HidTransport:
    """Build the device transport for a command."""
    return HidTransport.from_settings(settings)


def _settings(ctx: typer.Context) -> ToolboxSettings:
    return ctx.obj if isinstance(ctx.obj, ToolboxSettings) else ToolboxSettings.from_env()


@app.callback()
def main_options(
    ctx: typer.Context,
    vendor_id: Optional[str] = typer.Option(None, "--vendor-id", help="USB vendor id (e.g. 0x0416)"),
    product_id: Optional[str] = typer.Option(None, "--product-id", help="USB product id (e.g. 0x5020)"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Response timeout in seconds"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show packet-level debug logs"),
) -> None:
    """Global options shared by every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    try:
        settings = ToolboxSettings.from_env().with_overrides(
            vendor_id=parse_int(vendor_id, "--vendor-id"),
            product_id=parse_int(product_id, "--product-id"),
            timeout=timeout,
        )
    except FormatError as e:
        print_error(str(e))
        raise typer.Exit(code=1)
    ctx.obj = settings


def parse_int(value: Optional[str], label: str) -> Optional[int]:
    """Parse an integer from string (supports decimal and hex)."""
    if value is None or not value.strip():
        return None
    try:
        return int(value.strip(), 0)
    except ValueError:
        raise typer.BadParameter(f"{label} must be a decimal or 0x-prefixed number, got {value!r}")


def require_write_confirmation(
    write_flag: bool,
    target: str,
    bytes_length: int = 0,
    confirm_token: Optional[str] = None,
    override_token: Optional[str] = None,
) -> SafetyContext:
    """
    Require --write and a typed confirmation before any device write.

    Returns a SafetyContext that the core actions accept without prompting
    again (the prompt happens here, on the command's thread).

    Raises:
        typer.Exit: If write is not permitted
    """
    ctx = create_cli_safety_context(
        write_flag,
        confirmation_token=confirm_token,
        override_token=override_token,
    )

    def show_details(details: dict) -> None:
        console.print()
        console.print(Panel(
            f"[bold yellow]⚠️  WRITE CONFIRMATION REQUIRED[/bold yellow]\n\n"
            f"Target:        {details.get('target', 'Unknown')}\n"
            + (f"Bytes:         {details['bytes_length']:,}\n" if details.get("bytes_length") else "")
            + ("[bold red]Firmware validation is DISABLED[/bold red]\n" if details.get("skip_validation") else "")
            + f"\n[bold]Type '{CONFIRMATION_TOKEN}' to proceed, or anything else to abort:[/bold]",
            title="Device Write Operation",
            expand=False,
        ))

    ctx.show_details = show_details
    ctx.prompt_confirmation = lambda _text: typer.prompt("Confirm")

    try:
        require_write_permission(ctx, target, bytes_length)
    except WritePermissionError as e:
        if not write_flag:
            print_error("Write operation requires --write flag.")
            console.print(f"  Target: {target}")
            console.print(f"  For scripted use: --write --confirm {CONFIRMATION_TOKEN}")
        else:
            print_error(e.reason)
        raise typer.Exit(code=1)

    ctx.confirmation_token = CONFIRMATION_TOKEN
    ctx.interactive = False
    return ctx


def print_result(result: OperationResult, success_text: Optional[str] = None) -> None:
    for warning in result.warnings:
        print_warning(warning)
    if result.ok:
        print_success(success_text or f"{result.operation} completed")
    else:
        for error in result.errors:
            print_error(error)


def run_operation(
    settings: ToolboxSettings,
    name: str,
    operation: Callable,
    description: str,
    show_progress: bool = True,
) -> OperationResult:
    """
    Run ``operation(transport, progress)`` through the serializer and wait.

    Raises:
        typer.Exit: With code 1 when the operation failed
    """
    transport = create_transport(settings)
    serializer = OperationSerializer(monitor=transport)
    try:
        with Progress(
            TextColumn("[{task.description}]"),
            BarColumn(),
            TextColumn("[{task.percentage:.0f}%]"),
            console=console,
            disable=not show_progress,
        ) as progress:
            task = progress.add_task(description, total=100)
            ticket = serializer.submit(
                name,
                lambda report: operation(transport, report),
                on_progress=lambda percent: progress.update(task, completed=percent),
            )
            if ticket is None:
                print_error("Another operation is already running")
                raise typer.Exit(code=1)
            result = ticket.result()
            if result.ok:
                progress.update(task, completed=100)
    finally:
        serializer.shutdown()

    if not result.ok:
        print_result(result)
        raise typer.Exit(code=1)
    return result


# ============================================================================
# Device
# ============================================================================

@app.command()
def devices(ctx: typer.Context) -> None:
    """Show whether a device is connected and list known product ids."""
    settings = _settings(ctx)
    transport = create_transport(settings)
    status = "connected" if transport.is_connected else "not connected"
    console.print(f"HID {settings.vendor_id:04X}:{settings.product_id:04X}: [bold]{status}[/bold]")

    table = Table(title="Known Devices")
    table.add_column("Product ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Max Power", justify="right")
    table.add_column("Batteries", justify="right")
    for info in list_devices():
        table.add_row(info.product_id, info.name, f"{info.max_power} W", str(info.batteries))
    console.print(table)


@app.command()
def info(ctx: typer.Context) -> None:
    """Read dataflash and show device identity."""
    result = run_operation(
        _settings(ctx),
        "device_info",
        lambda transport, _progress: read_device_info(transport),
        "Reading dataflash...",
        show_progress=False,
    )
    identity = result.metadata["identity"]

    table = Table(title="Device Information")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Device", result.device)
    table.add_row("Product ID", identity.product_id or "-")
    table.add_row("Hardware", identity.hardware_version_text)
    table.add_row("Firmware", identity.firmware_version_text)
    table.add_row("Build", str(result.metadata["firmware_build"]))
    table.add_row("Boot Mode", identity.boot_source.value)
    console.print(table)
    print_result(result, "Device is ready.")


# ============================================================================
# Dataflash
# ============================================================================

@app.command("read-dataflash")
def read_dataflash_cmd(
    ctx: typer.Context,
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="File or directory (default: current directory)"),
) -> None:
    """Back up the device dataflash to a file."""
    print_header("Read Dataflash")
    result = run_operation(
        _settings(ctx),
        "read_dataflash",
        lambda transport, report: read_dataflash(transport, output, report),
        "Reading dataflash...",
    )
    print_result(result, f"Dataflash saved to {result.metadata['path']}")


@app.command("write-dataflash")
def write_dataflash_cmd(
    ctx: typer.Context,
    source: Path = typer.Argument(..., help="Raw 2044-byte dataflash file"),
    write: bool = typer.Option(False, "--write", help="Enable writing to the device"),
    confirm: Optional[str] = typer.Option(None, "--confirm", help=f"Non-interactive confirmation ('{CONFIRMATION_TOKEN}')"),
) -> None:
    """Restore a dataflash file to the device."""
    print_header("Write Dataflash")
    size = source.stat().st_size if source.exists() else 0
    safety = require_write_confirmation(write, "dataflash", size, confirm)
    result = run_operation(
        _settings(ctx),
        "write_dataflash",
        lambda transport, report: write_dataflash(transport, source, safety, report),
        "Writing dataflash...",
    )
    print_result(result, "Dataflash written")


@app.command("reset-dataflash")
def reset_dataflash_cmd(
    ctx: typer.Context,
    write: bool = typer.Option(False, "--write", help="Enable writing to the device"),
    confirm: Optional[str] = typer.Option(None, "--confirm", help=f"Non-interactive confirmation ('{CONFIRMATION_TOKEN}')"),
) -> None:
    """Restore factory dataflash."""
    safety = require_write_confirmation(write, "dataflash reset", confirm_token=confirm)
    result = run_operation(
        _settings(ctx),
        "reset_dataflash",
        lambda transport, _progress: reset_dataflash(transport, safety),
        "Resetting dataflash...",
        show_progress=False,
    )
    print_result(result, "Dataflash has been reset.")


@app.command("boot-mode")
def boot_mode_cmd(
    ctx: typer.Context,
    mode: str = typer.Argument("toggle", help="aprom, ldrom or toggle"),
    write: bool = typer.Option(False, "--write", help="Enable writing to the device"),
    confirm: Optional[str] = typer.Option(None, "--confirm", help=f"Non-interactive confirmation ('{CONFIRMATION_TOKEN}')"),
) -> None:
    """Switch the boot source between APROM and LDROM, then restart."""
    choices = {"aprom": BootSource.APROM, "ldrom": BootSource.LDROM, "toggle": None}
    key = mode.strip().lower()
    if key not in choices:
        raise typer.BadParameter(f"mode must be one of {', '.join(choices)}, got {mode!r}")
    target = choices[key]

    safety = require_write_confirmation(write, f"boot mode ({key})", confirm_token=confirm)
    result = run_operation(
        _settings(ctx),
        "change_boot_mode",
        lambda transport, report: change_boot_mode(transport, safety, target, report),
        "Switching boot mode...",
    )
    new_source = result.metadata["dataflash"].boot_source.value
    print_result(result, f"Boot mode is now {new_source}; device restarted")


@app.command("set-hw")
def set_hw_cmd(
    ctx: typer.Context,
    version: str = typer.Argument(..., help="Hardware version, e.g. 1.01"),
    write: bool = typer.Option(False, "--write", help="Enable writing to the device"),
    confirm: Optional[str] = typer.Option(None, "--confirm", help=f"Non-interactive confirmation ('{CONFIRMATION_TOKEN}')"),
) -> None:
    """Change the hardware version stored in dataflash, then restart."""
    safety = require_write_confirmation(write, f"hardware version {version}", confirm_token=confirm)
    result = run_operation(
        _settings(ctx),
        "change_hardware_version",
        lambda transport, report: change_hardware_version(transport, version, safety, report),
        "Writing dataflash...",
    )
    print_result(result, f"Hardware version set to {version}; device restarted")


# ============================================================================
# Firmware
# ============================================================================

@app.command()
def update(
    ctx: typer.Context,
    firmware: Path = typer.Argument(..., help="Firmware file (plain or vendor-encoded)"),
    write: bool = typer.Option(False, "--write", help="Enable writing to the device"),
    confirm: Optional[str] = typer.Option(None, "--confirm", help=f"Non-interactive confirmation ('{CONFIRMATION_TOKEN}')"),
    skip_validation: Optional[str] = typer.Option(
        None,
        "--skip-validation",
        help=f"Flash even if the firmware does not match the device. Must be exactly '{SKIP_VALIDATION_TOKEN}'.",
    ),
) -> None:
    """Update device firmware, switching to LDROM first when needed."""
    print_header("Firmware Update")
    settings = _settings(ctx)

    if skip_validation is not None and skip_validation != SKIP_VALIDATION_TOKEN:
        print_error(f"--skip-validation must be exactly '{SKIP_VALIDATION_TOKEN}'")
        raise typer.Exit(code=1)

    size = firmware.stat().st_size if firmware.exists() else 0
    safety = require_write_confirmation(write, "firmware", size, confirm, skip_validation)

    def on_state(state: UpdateState) -> None:
        if not state.is_terminal:
            console.print(f"[dim]→ {state.name.replace('_', ' ').lower()}[/dim]")

    result = run_operation(
        settings,
        "update_firmware",
        lambda transport, report: update_firmware(
            transport,
            firmware,
            safety,
            timings=settings.timings,
            state_cb=on_state,
            progress_cb=report,
        ),
        "Uploading firmware...",
    )
    if result.metadata.get("boot_mode_switched"):
        console.print("Device was switched to LDROM for the update")
    print_result(result, "Firmware successfully updated.")


@app.command("firmware-decode")
def firmware_decode(
    source: Path = typer.Argument(..., help="Firmware file"),
    output: Path = typer.Argument(..., help="Output file"),
    encode: bool = typer.Option(False, "--encode", help="Write the vendor-encoded form instead"),
) -> None:
    """Convert a firmware file between plain and vendor-encoded form."""
    result = convert_firmware(source, output, encode=encode)
    print_result(result, f"Wrote {result.metadata.get('path', output)} ({result.bytes_len:,} bytes)")
    if not result.ok:
        raise typer.Exit(code=1)


# ============================================================================
# Arctic Fox configuration
# ============================================================================

def _line_label(line) -> str:
    content = line.content
    label = content.name if hasattr(content, "name") else f"0x{content:02X}"
    return f"{label} + fire time" if line.fire_time else label


@app.command("config-show")
def config_show(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print the full configuration as JSON"),
) -> None:
    """Download and display the Arctic Fox configuration."""
    result = run_operation(
        _settings(ctx),
        "download_configuration",
        lambda transport, report: download_configuration(transport, report),
        "Downloading settings...",
        show_progress=not as_json,
    )
    configuration = result.metadata["configuration"]

    if as_json:
        typer.echo(json.dumps(configuration.to_dict(), indent=2))
        return

    info_rec = configuration.info
    console.print(Panel(
        f"Device:    {result.device}\n"
        f"Firmware:  {format_scaled(info_rec.firmware_version)} (build {info_rec.firmware_build})\n"
        f"Hardware:  {format_scaled(info_rec.hardware_version)}\n"
        f"Max power: {info_rec.max_power} W",
        title="Arctic Fox",
        expand=False,
    ))

    general = configuration.general
    table = Table(title="Profiles")
    table.add_column("#", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Enabled")
    table.add_column("Material")
    table.add_column("Power", justify="right")
    table.add_column("Temp", justify="right")
    table.add_column("Resistance", justify="right")
    for index, profile in enumerate(general.profiles):
        marker = "*" if index == general.selected_profile else ""
        material = profile.material.name if hasattr(profile.material, "name") else str(profile.material)
        unit = "C" if profile.is_celsius else "F"
        table.add_row(
            f"{index + 1}{marker}",
            profile.name,
            "yes" if profile.is_enabled else "no",
            material,
            f"{profile.power} W",
            f"{profile.temperature} {unit}",
            f"{profile.resistance} Ω",
        )
    console.print(table)

    ui = configuration.interface
    console.print(f"VW lines: {', '.join(_line_label(line) for line in ui.vw_lines)}")
    console.print(f"TC lines: {', '.join(_line_label(line) for line in ui.tc_lines)}")
    counters = configuration.counters
    console.print(f"Puffs: {counters.puffs_count}  Puff time: {counters.puffs_time} s")


@app.command("config-save")
def config_save(
    ctx: typer.Context,
    output: Path = typer.Argument(..., help="Output file for the raw configuration block"),
) -> None:
    """Save the Arctic Fox configuration to a file."""
    result = run_operation(
        _settings(ctx),
        "save_configuration",
        lambda transport, report: save_configuration(transport, output, report),
        "Downloading settings...",
    )
    print_result(result, f"Configuration saved to {output}")


@app.command("config-load")
def config_load(
    ctx: typer.Context,
    source: Path = typer.Argument(..., help="Configuration file saved with config-save"),
    sync_time: bool = typer.Option(True, "--sync-time/--no-sync-time", help="Set the device clock while uploading"),
    write: bool = typer.Option(False, "--write", help="Enable writing to the device"),
    confirm: Optional[str] = typer.Option(None, "--confirm", help=f"Non-interactive confirmation ('{CONFIRMATION_TOKEN}')"),
) -> None:
    """Upload a saved Arctic Fox configuration."""
    size = source.stat().st_size if source.exists() else 0
    safety = require_write_confirmation(write, "configuration", size, confirm)
    result = run_operation(
        _settings(ctx),
        "upload_configuration",
        lambda transport, report: restore_configuration(transport, source, safety, sync_time, report),
        "Uploading settings...",
    )
    print_result(result, "Configuration uploaded")


@app.command("config-sync-time")
def config_sync_time(
    ctx: typer.Context,
    write: bool = typer.Option(False, "--write", help="Enable writing to the device"),
    confirm: Optional[str] = typer.Option(None, "--confirm", help=f"Non-interactive confirmation ('{CONFIRMATION_TOKEN}')"),
) -> None:
    """Set the device clock to the host time."""
    safety = require_write_confirmation(write, "clock", confirm_token=confirm)
    result = run_operation(
        _settings(ctx),
        "sync_time",
        lambda transport, _progress: sync_device_time(transport, safety),
        "Setting clock...",
        show_progress=False,
    )
    print_result(result, f"Device clock set to {result.metadata['time']}")


@app.command("config-reset")
def config_reset(
    ctx: typer.Context,
    write: bool = typer.Option(False, "--write", help="Enable writing to the device"),
    confirm: Optional[str] = typer.Option(None, "--confirm", help=f"Non-interactive confirmation ('{CONFIRMATION_TOKEN}')"),
) -> None:
    """Reset settings to defaults and download them again."""
    safety = require_write_confirmation(write, "settings reset", confirm_token=confirm)
    result = run_operation(
        _settings(ctx),
        "reset_configuration",
        lambda transport, report: reset_configuration(transport, safety, report),
        "Resetting settings...",
    )
    print_result(result, "Settings reset to defaults")


# ============================================================================
# Monitoring
# ============================================================================

@app.command()
def watch(
    ctx: typer.Context,
    seconds: Optional[float] = typer.Option(None, "--seconds", help="Stop after this many seconds"),
) -> None:
    """Print connect/disconnect events until interrupted."""
    settings = _settings(ctx)
    transport = create_transport(settings)

    def on_change(connected: bool) -> None:
        stamp = time.strftime("%H:%M:%S")
        if connected:
            console.print(f"{stamp} [green]Device connected[/green]")
        else:
            console.print(f"{stamp} [yellow]Device disconnected[/yellow]")

    unsubscribe = transport.subscribe(on_change)
    transport.start_monitoring()
    console.print("[dim]Waiting for device... (Ctrl+C to stop)[/dim]")
    deadline = None if seconds is None else time.monotonic() + seconds
    try:
        while deadline is None or time.monotonic() < deadline:
            time.sleep(0.1)
    except KeyboardInterrupt:
        pass
    finally:
        transport.stop_monitoring()
        unsubscribe()


@app.command()
def version() -> None:
    """Show the ntoolbox version."""
    console.print(f"ntoolbox {__version__}")


def run() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)


if __name__ == "__main__":
    run()
