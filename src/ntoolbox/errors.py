"""
Exception hierarchy shared by the transport, codec, loader and workflows.

Every error raised on purpose by ntoolbox derives from NToolboxError so the
workflow layer can turn it into a failed OperationResult in one place.
"""

from typing import Optional


class NToolboxError(Exception):
    """Base error for ntoolbox."""


class DeviceTransportError(NToolboxError):
    """Base error for USB HID communication failures."""


class DeviceNotConnectedError(DeviceTransportError):
    """Raised when no matching HID device is present."""


class DeviceTimeoutError(DeviceTransportError, TimeoutError):
    """Raised when the device does not answer within the response timeout."""


class FormatError(NToolboxError, ValueError):
    """Raised when a byte buffer does not match the expected size or layout."""


class SchemaError(FormatError):
    """Raised when a structure layout is declared inconsistently."""


class CompatibilityError(NToolboxError):
    """Raised when a firmware image was not built for the connected device."""


class FirmwareDecodeError(NToolboxError):
    """Raised when a firmware file cannot be turned into a flashable payload."""


class StorageError(NToolboxError, OSError):
    """Raised when a local file cannot be read or written."""


class WritePermissionError(NToolboxError):
    """
    Raised when a write operation is not permitted.

    Attributes:
        reason: Human-readable explanation of why write was denied
        details: Additional context (device, target, byte count)
    """

    def __init__(self, reason: str, details: Optional[dict] = None):
        self.reason = reason
        self.details = details or {}
        super().__init__(reason)
