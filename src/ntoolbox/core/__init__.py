"""
Core module for ntoolbox.

This module provides the single source of truth for:
- Write gating / confirmation (safety.py)
- Result objects (results.py)
- The firmware update state machine (updater.py)
- One-at-a-time background execution (serializer.py)
- Dataflash, firmware and configuration workflows (actions.py)

Front ends call into this module rather than driving the transport directly.
"""

from .safety import (
    SafetyContext,
    require_write_permission,
    create_cli_safety_context,
    CONFIRMATION_TOKEN,
    SKIP_VALIDATION_TOKEN,
)
from .results import OperationResult
from .updater import FirmwareUpdater, UpdateState, RECONNECT_FAILED_MESSAGE
from .serializer import OperationSerializer, OperationTicket
from .actions import (
    read_device_info,
    read_dataflash,
    write_dataflash,
    reset_dataflash,
    change_boot_mode,
    change_hardware_version,
    update_firmware,
    convert_firmware,
    download_configuration,
    upload_configuration,
    save_configuration,
    load_configuration_file,
    restore_configuration,
    reset_configuration,
    sync_device_time,
)

__all__ = [
    # Safety
    "SafetyContext",
    "require_write_permission",
    "create_cli_safety_context",
    "CONFIRMATION_TOKEN",
    "SKIP_VALIDATION_TOKEN",
    # Results
    "OperationResult",
    # Update
    "FirmwareUpdater",
    "UpdateState",
    "RECONNECT_FAILED_MESSAGE",
    # Serializer
    "OperationSerializer",
    "OperationTicket",
    # Actions
    "read_device_info",
    "read_dataflash",
    "write_dataflash",
    "reset_dataflash",
    "change_boot_mode",
    "change_hardware_version",
    "update_firmware",
    "convert_firmware",
    "download_configuration",
    "upload_configuration",
    "save_configuration",
    "load_configuration_file",
    "restore_configuration",
    "reset_configuration",
    "sync_device_time",
]
