"""
Result objects for core operations.

Every workflow (dataflash, firmware update, configuration) returns one
OperationResult. Metadata may hold live objects (a Dataflash, a decoded
configuration Record, a DeviceIdentity); ``to_dict`` flattens them so a
front end can dump the result as JSON.
"""

import enum
from dataclasses import asdict, dataclass, field, is_dataclass
from decimal import Decimal
from typing import Any, Dict, List

# Metadata keys shown in the one-line-per-item summary
_SUMMARY_KEYS = ("path", "product_id", "boot_mode_switched", "time")


@dataclass
class OperationResult:
    """
    Outcome of one device or file operation.

    Attributes:
        ok: Whether the operation completed successfully
        operation: Name of the operation (e.g., "update_firmware")
        device: Display name of the device the operation ran against
        bytes_len: Bytes transferred to or from the device (or written to disk)
        warnings: Non-blocking issues encountered
        errors: Blocking errors; the first one is the user-facing message
        metadata: Operation-specific data ("path", "dataflash", "states", ...)
        logs: Log lines captured while the operation ran
    """
    ok: bool
    operation: str
    device: str = ""
    bytes_len: int = 0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        """Record a blocking error; the result becomes a failure."""
        self.errors.append(message)
        self.ok = False

    def add_log(self, message: str) -> None:
        self.logs.append(message)

    @property
    def message(self) -> str:
        """First error for failures, empty for successes."""
        return self.errors[0] if self.errors else ""

    def to_summary(self) -> str:
        status = "OK" if self.ok else "FAILED"
        lines = [f"{self.operation}: {status}"]
        if self.device:
            lines.append(f"  device: {self.device}")
        if self.bytes_len:
            lines.append(f"  bytes: {self.bytes_len:,}")
        for key in _SUMMARY_KEYS:
            if key in self.metadata:
                lines.append(f"  {key}: {self.metadata[key]}")
        if "states" in self.metadata:
            lines.append(f"  states: {' > '.join(self.metadata['states'])}")
        lines.extend(f"  warning: {warn}" for warn in self.warnings)
        lines.extend(f"  error: {err}" for err in self.errors)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready view, with device objects in metadata flattened."""
        return {
            "ok": self.ok,
            "operation": self.operation,
            "device": self.device,
            "bytes_len": self.bytes_len,
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "metadata": {key: _jsonable(value) for key, value in self.metadata.items()},
            "logs": list(self.logs),
        }

    @classmethod
    def success(cls, operation: str, device: str = "", bytes_len: int = 0, **kwargs) -> "OperationResult":
        return cls(ok=True, operation=operation, device=device, bytes_len=bytes_len, **kwargs)

    @classmethod
    def failure(cls, operation: str, error: str, device: str = "", **kwargs) -> "OperationResult":
        result = cls(ok=False, operation=operation, device=device, **kwargs)
        result.errors.append(error)
        return result


def _jsonable(value: Any) -> Any:
    # Records expose to_dict(); Dataflash is shown by its raw payload
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if hasattr(value, "to_wire") and hasattr(value, "data"):
        return value.data.hex()
    if is_dataclass(value) and not isinstance(value, type):
        return {key: _jsonable(item) for key, item in asdict(value).items()}
    if isinstance(value, enum.Enum):
        return value.value if isinstance(value.value, str) else value.name
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value
