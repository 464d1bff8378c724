"""
Core workflow actions for ntoolbox.

Each function runs one complete user-level operation against a transport and
returns an OperationResult with the log lines it produced. Device writes go
through the safety context first. Expected failures (transport, format,
compatibility, storage, permission) become failed results; anything else
propagates to the operation serializer.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Optional, Union

from ..config import UpdateTimings
from ..errors import FormatError, NToolboxError, StorageError
from ..firmware_loader import FirmwareLoader, convert_firmware_file
from ..models.arcticfox import (
    CONFIGURATION_SIZE,
    decode_configuration,
    encode_configuration,
    ensure_supported,
    sync_clock,
)
from ..models.dataflash import (
    BootSource,
    Dataflash,
    dataflash_file_name,
    load_dataflash_file,
    save_dataflash_file,
)
from ..models.registry import device_name
from ..protocol.base import DeviceTransport, ProgressCallback
from ..structure_codec import Record
from .results import OperationResult
from .safety import SafetyContext, require_write_permission
from .updater import FirmwareUpdater, StateCallback

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "ntoolbox"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


def _failed(operation: str, exc: Exception, logs: list, device: str = "") -> OperationResult:
    logger.error(f"{operation} failed: {exc}")
    result = OperationResult.failure(operation=operation, error=str(exc), device=device)
    result.logs = logs
    return result


def _identify(dataflash: Dataflash) -> str:
    return device_name(dataflash.product_id)


# ============================================================================
# Dataflash
# ============================================================================

def read_device_info(transport: DeviceTransport) -> OperationResult:
    """
    Read dataflash and describe the connected device.

    Returns:
        OperationResult with:
            - device: display name
            - metadata["identity"]: DeviceIdentity
            - metadata["dataflash"]: Dataflash
            - metadata["firmware_build"]: build counter
    """
    with _capture_logs() as logs:
        try:
            dataflash = transport.read_dataflash()
            identity = dataflash.identity()
            result = OperationResult.success(operation="device_info", device=_identify(dataflash))
            result.metadata["identity"] = identity
            result.metadata["dataflash"] = dataflash
            result.metadata["firmware_build"] = dataflash.firmware_build
            if not identity.product_id:
                result.add_warning("Device reports an empty product id")
            result.logs = logs
            return result
        except (NToolboxError, OSError) as e:
            return _failed("device_info", e, logs)


def read_dataflash(
    transport: DeviceTransport,
    output: Optional[PathLike] = None,
    progress_cb: Optional[ProgressCallback] = None,
) -> OperationResult:
    """
    Read dataflash and save it as a raw 2044-byte file.

    Args:
        transport: Device transport
        output: Target file or directory. A directory (or None, meaning the
            current directory) gets the suggested "<device> HW v.. FW v...bin"
            name.
        progress_cb: Progress 0..100

    Returns:
        OperationResult with metadata["path"] and metadata["dataflash"].
    """
    with _capture_logs() as logs:
        try:
            logger.info("Reading dataflash...")
            dataflash = transport.read_dataflash(progress_cb)
            name = _identify(dataflash)

            target = Path(output) if output is not None else Path.cwd()
            if target.is_dir():
                target = target / dataflash_file_name(dataflash.identity(), name)
            save_dataflash_file(dataflash, target)
            logger.info(f"Reading dataflash... Done. Saved to {target}")

            result = OperationResult.success(
                operation="read_dataflash",
                device=name,
                bytes_len=len(dataflash.data),
            )
            result.metadata["path"] = str(target)
            result.metadata["dataflash"] = dataflash
            result.logs = logs
            return result
        except (NToolboxError, OSError) as e:
            return _failed("read_dataflash", e, logs)


def write_dataflash(
    transport: DeviceTransport,
    source: PathLike,
    safety_ctx: SafetyContext,
    progress_cb: Optional[ProgressCallback] = None,
) -> OperationResult:
    """
    Write a raw dataflash file to the device.

    The file size is checked before anything is sent.
    """
    with _capture_logs() as logs:
        try:
            dataflash = load_dataflash_file(source)
            require_write_permission(safety_ctx, "dataflash", len(dataflash.data))

            logger.info("Writing dataflash...")
            transport.write_dataflash(dataflash, progress_cb)
            logger.info("Writing dataflash... Done.")

            result = OperationResult.success(
                operation="write_dataflash",
                device=_identify(dataflash),
                bytes_len=len(dataflash.data),
            )
            result.metadata["path"] = str(source)
            result.logs = logs
            return result
        except (NToolboxError, OSError) as e:
            return _failed("write_dataflash", e, logs, safety_ctx.device)


def reset_dataflash(transport: DeviceTransport, safety_ctx: SafetyContext) -> OperationResult:
    """Restore factory dataflash on the device."""
    with _capture_logs() as logs:
        try:
            require_write_permission(safety_ctx, "dataflash reset")
            logger.info("Resetting dataflash...")
            transport.reset_dataflash()
            logger.info("Dataflash has been reset.")
            result = OperationResult.success(operation="reset_dataflash", device=safety_ctx.device)
            result.logs = logs
            return result
        except (NToolboxError, OSError) as e:
            return _failed("reset_dataflash", e, logs, safety_ctx.device)


def _rewrite_dataflash(
    operation: str,
    transport: DeviceTransport,
    safety_ctx: SafetyContext,
    mutate: Callable[[Dataflash], str],
    progress_cb: Optional[ProgressCallback],
) -> OperationResult:
    """Read, change, write back and restart."""
    with _capture_logs() as logs:
        try:
            dataflash = transport.read_dataflash()
            name = _identify(dataflash)
            description = mutate(dataflash)
            require_write_permission(safety_ctx, f"dataflash ({description})", len(dataflash.data))

            logger.info(f"{description}...")
            transport.write_dataflash(dataflash, progress_cb)
            transport.restart_device()
            logger.info(f"{description}... Done. Device restarted.")

            result = OperationResult.success(
                operation=operation,
                device=name,
                bytes_len=len(dataflash.data),
            )
            result.metadata["dataflash"] = dataflash
            result.logs = logs
            return result
        except (NToolboxError, OSError) as e:
            return _failed(operation, e, logs, safety_ctx.device)


def change_boot_mode(
    transport: DeviceTransport,
    safety_ctx: SafetyContext,
    target: Optional[BootSource] = None,
    progress_cb: Optional[ProgressCallback] = None,
) -> OperationResult:
    """
    Switch between APROM and LDROM boot and restart the device.

    Args:
        target: Boot source to select; None toggles the current one
    """

    def mutate(dataflash: Dataflash) -> str:
        wanted = target
        if wanted is None:
            wanted = BootSource.APROM if dataflash.load_from_ldrom else BootSource.LDROM
        dataflash.load_from_ldrom = wanted is BootSource.LDROM
        return f"Switching boot mode to {wanted.value}"

    return _rewrite_dataflash("change_boot_mode", transport, safety_ctx, mutate, progress_cb)


def change_hardware_version(
    transport: DeviceTransport,
    version: Union[Decimal, str],
    safety_ctx: SafetyContext,
    progress_cb: Optional[ProgressCallback] = None,
) -> OperationResult:
    """Rewrite the hardware version in dataflash (e.g. "1.01") and restart."""

    def mutate(dataflash: Dataflash) -> str:
        dataflash.hardware_version = version
        return f"Changing hardware version to {version}"

    return _rewrite_dataflash("change_hardware_version", transport, safety_ctx, mutate, progress_cb)


# ============================================================================
# Firmware
# ============================================================================

def update_firmware(
    transport: DeviceTransport,
    firmware_path: PathLike,
    safety_ctx: SafetyContext,
    timings: Optional[UpdateTimings] = None,
    state_cb: Optional[StateCallback] = None,
    progress_cb: Optional[ProgressCallback] = None,
    updater: Optional[FirmwareUpdater] = None,
) -> OperationResult:
    """
    Load a firmware file and flash it.

    Compatibility is checked against the product id read from the device
    unless ``safety_ctx`` carries the skip-validation override.
    """
    with _capture_logs() as logs:
        try:
            firmware = FirmwareLoader.load(firmware_path)
            logger.info(f"Loaded firmware {firmware_path} ({len(firmware)} bytes)")
            require_write_permission(safety_ctx, "firmware", len(firmware))
        except (NToolboxError, OSError) as e:
            return _failed("update_firmware", e, logs, safety_ctx.device)

        updater = updater or FirmwareUpdater(transport, timings)
        result = updater.run(
            firmware,
            skip_validation=safety_ctx.skip_validation,
            state_cb=state_cb,
            progress_cb=progress_cb,
        )
        result.metadata["path"] = str(firmware_path)
        result.logs = logs
        return result


def convert_firmware(source: PathLike, target: PathLike, encode: bool = False) -> OperationResult:
    """Decode (or encode) a firmware file offline."""
    operation = "encode_firmware" if encode else "decode_firmware"
    with _capture_logs() as logs:
        try:
            out = convert_firmware_file(source, target, encode=encode)
            result = OperationResult.success(operation=operation, bytes_len=out.stat().st_size)
            result.metadata["path"] = str(out)
            result.logs = logs
            return result
        except (NToolboxError, OSError) as e:
            return _failed(operation, e, logs)


# ============================================================================
# Arctic Fox configuration
# ============================================================================

def download_configuration(
    transport: DeviceTransport,
    progress_cb: Optional[ProgressCallback] = None,
) -> OperationResult:
    """
    Read and decode the Arctic Fox configuration.

    Returns:
        OperationResult with metadata["configuration"] (Record) and
        metadata["raw"] (bytes).
    """
    with _capture_logs() as logs:
        try:
            logger.info("Downloading settings...")
            raw = transport.read_configuration(CONFIGURATION_SIZE, progress_cb)
            configuration = decode_configuration(raw)
            ensure_supported(configuration)
            logger.info("Downloading settings... Done.")

            result = OperationResult.success(
                operation="download_configuration",
                device=device_name(configuration.info.product_id),
                bytes_len=len(raw),
            )
            result.metadata["configuration"] = configuration
            result.metadata["raw"] = raw
            result.logs = logs
            return result
        except (NToolboxError, OSError) as e:
            return _failed("download_configuration", e, logs)


def upload_configuration(
    transport: DeviceTransport,
    configuration: Record,
    safety_ctx: SafetyContext,
    sync_time: bool = True,
    progress_cb: Optional[ProgressCallback] = None,
    now: Optional[datetime] = None,
) -> OperationResult:
    """
    Encode and write an Arctic Fox configuration.

    With ``sync_time`` the counters section carries the host clock, so the
    device clock is set as part of the upload.
    """
    with _capture_logs() as logs:
        try:
            ensure_supported(configuration)
            if sync_time:
                sync_clock(configuration, now)
            data = encode_configuration(configuration)
            require_write_permission(safety_ctx, "configuration", len(data))

            logger.info("Uploading settings...")
            transport.write_configuration(data, progress_cb)
            logger.info("Uploading settings... Done.")

            result = OperationResult.success(
                operation="upload_configuration",
                device=device_name(configuration.info.product_id),
                bytes_len=len(data),
            )
            result.logs = logs
            return result
        except (NToolboxError, OSError) as e:
            return _failed("upload_configuration", e, logs, safety_ctx.device)


def save_configuration(
    transport: DeviceTransport,
    output: PathLike,
    progress_cb: Optional[ProgressCallback] = None,
) -> OperationResult:
    """Download the configuration and store the raw block in ``output``."""
    result = download_configuration(transport, progress_cb)
    if not result.ok:
        return result
    result.operation = "save_configuration"
    try:
        Path(output).write_bytes(result.metadata["raw"])
    except OSError as e:
        result.add_error(str(StorageError(f"Cannot write configuration file {output}: {e}")))
        return result
    result.metadata["path"] = str(output)
    return result


def load_configuration_file(path: PathLike) -> Record:
    """
    Read a raw configuration file saved by ``save_configuration``.

    Raises:
        StorageError: If the file cannot be read
        FormatError: If the file size or firmware build is wrong
    """
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise StorageError(f"Cannot read configuration file {path}: {e}") from e
    if len(data) != CONFIGURATION_SIZE:
        raise FormatError(
            f"Configuration file must be {CONFIGURATION_SIZE} bytes, got {len(data)}"
        )
    configuration = decode_configuration(data)
    ensure_supported(configuration)
    return configuration


def restore_configuration(
    transport: DeviceTransport,
    source: PathLike,
    safety_ctx: SafetyContext,
    sync_time: bool = True,
    progress_cb: Optional[ProgressCallback] = None,
) -> OperationResult:
    """Upload a configuration file previously saved from a device."""
    try:
        configuration = load_configuration_file(source)
    except NToolboxError as e:
        return _failed("upload_configuration", e, [], safety_ctx.device)
    result = upload_configuration(transport, configuration, safety_ctx, sync_time, progress_cb)
    result.metadata["path"] = str(source)
    return result


def reset_configuration(
    transport: DeviceTransport,
    safety_ctx: SafetyContext,
    progress_cb: Optional[ProgressCallback] = None,
) -> OperationResult:
    """Reset dataflash to defaults, then download the fresh configuration."""
    reset = reset_dataflash(transport, safety_ctx)
    if not reset.ok:
        reset.operation = "reset_configuration"
        return reset
    result = download_configuration(transport, progress_cb)
    result.operation = "reset_configuration"
    result.logs = reset.logs + result.logs
    return result


def sync_device_time(
    transport: DeviceTransport,
    safety_ctx: SafetyContext,
    now: Optional[datetime] = None,
) -> OperationResult:
    """Set the device clock to ``now`` (default: host time)."""
    moment = now or datetime.now()
    with _capture_logs() as logs:
        try:
            require_write_permission(safety_ctx, "clock")
            transport.set_datetime(moment)
            logger.info(f"Device clock set to {moment:%Y-%m-%d %H:%M:%S}")
            result = OperationResult.success(operation="sync_time", device=safety_ctx.device)
            result.metadata["time"] = moment.isoformat(timespec="seconds")
            result.logs = logs
            return result
        except (NToolboxError, OSError) as e:
            return _failed("sync_time", e, logs, safety_ctx.device)
