"""
Dataflash: the device's 2044-byte persistent configuration block.

On the wire the device sends 2048 bytes: a little-endian additive checksum of
the payload followed by the 2044 payload bytes. Only the payload is modeled
here; the transport adds and checks the checksum.

Modeled fields (offsets into the 2044-byte payload):

| Offset | Size | Field            | Notes                          |
|--------|------|------------------|--------------------------------|
| 0      | 4    | hardware_version | scale 100 (101 -> "1.01")      |
| 9      | bit0 | load_from_ldrom  | boot source, LDROM when set    |
| 256    | 4    | firmware_version | scale 100, 0 = never flashed   |
| 260    | 4    | firmware_build   | build counter                  |
| 312    | 4    | product_id       | ASCII, e.g. "E052"             |

Everything else is preserved byte-for-byte by the structure codec.
"""

import enum
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional, Union

from ..errors import FormatError, StorageError
from ..structure_codec import Flag, Record, StructureLayout, Text, UInt, format_scaled

DATAFLASH_SIZE = 2044
DATAFLASH_WIRE_SIZE = DATAFLASH_SIZE + 4

DATAFLASH_LAYOUT = StructureLayout(
    "Dataflash",
    DATAFLASH_SIZE,
    {
        "hardware_version": UInt(0, 4, scale=100),
        "load_from_ldrom": Flag(9, 0x01),
        "firmware_version": UInt(256, 4, scale=100),
        "firmware_build": UInt(260, 4),
        "product_id": Text(312, 4),
    },
)


class BootSource(enum.Enum):
    """Program memory region the device boots from."""
    APROM = "APROM"  # application
    LDROM = "LDROM"  # loader


def dataflash_checksum(payload: bytes) -> int:
    """Additive 32-bit checksum the device stores in front of the payload."""
    return sum(payload) & 0xFFFFFFFF


@dataclass(frozen=True)
class DeviceIdentity:
    """Read-only snapshot of who the connected device is."""
    product_id: str
    hardware_version: Decimal
    firmware_version: Decimal
    boot_source: BootSource

    @property
    def is_flashed(self) -> bool:
        return self.firmware_version > 0

    @property
    def hardware_version_text(self) -> str:
        return format_scaled(self.hardware_version)

    @property
    def firmware_version_text(self) -> str:
        return format_scaled(self.firmware_version)


class Dataflash:
    """
    Typed view over one dataflash payload.

    Mutations go to the decoded record; ``data`` re-encodes the full block so a
    write always sends every byte.
    """

    def __init__(self, data: bytes):
        if len(data) != DATAFLASH_SIZE:
            raise FormatError(
                f"Dataflash must be exactly {DATAFLASH_SIZE} bytes, got {len(data)}"
            )
        self._record: Record = DATAFLASH_LAYOUT.decode(data)

    @classmethod
    def from_wire(cls, blob: bytes) -> "Dataflash":
        """Build from the 2048-byte device response, verifying the checksum."""
        if len(blob) != DATAFLASH_WIRE_SIZE:
            raise FormatError(
                f"Dataflash response must be {DATAFLASH_WIRE_SIZE} bytes, got {len(blob)}"
            )
        stored = int.from_bytes(blob[:4], "little")
        payload = bytes(blob[4:])
        actual = dataflash_checksum(payload)
        if stored != actual:
            raise FormatError(
                f"Dataflash checksum mismatch (stored 0x{stored:08X}, computed 0x{actual:08X})"
            )
        return cls(payload)

    def to_wire(self) -> bytes:
        payload = self.data
        return dataflash_checksum(payload).to_bytes(4, "little") + payload

    @property
    def record(self) -> Record:
        return self._record

    @property
    def data(self) -> bytes:
        return DATAFLASH_LAYOUT.encode(self._record)

    @property
    def product_id(self) -> str:
        return self._record.product_id

    @property
    def hardware_version(self) -> Decimal:
        return self._record.hardware_version

    @hardware_version.setter
    def hardware_version(self, value: Union[Decimal, int, str]) -> None:
        try:
            version = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise FormatError(f"Invalid hardware version {value!r}") from exc
        if not version.is_finite():
            raise FormatError(f"Invalid hardware version {value!r}")
        # Range and 1/100 precision are checked now rather than at the next encode
        DATAFLASH_LAYOUT.fields["hardware_version"].to_raw(version)
        self._record.hardware_version = version

    @property
    def firmware_version(self) -> Decimal:
        return self._record.firmware_version

    @property
    def firmware_build(self) -> int:
        return self._record.firmware_build

    @property
    def load_from_ldrom(self) -> bool:
        return self._record.load_from_ldrom

    @load_from_ldrom.setter
    def load_from_ldrom(self, value: bool) -> None:
        self._record.load_from_ldrom = bool(value)

    @property
    def boot_source(self) -> BootSource:
        return BootSource.LDROM if self.load_from_ldrom else BootSource.APROM

    def identity(self) -> DeviceIdentity:
        return DeviceIdentity(
            product_id=self.product_id,
            hardware_version=self.hardware_version,
            firmware_version=self.firmware_version,
            boot_source=self.boot_source,
        )

    def copy(self) -> "Dataflash":
        return Dataflash(self.data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Dataflash):
            return NotImplemented
        return self.data == other.data

    __hash__ = None

    def __repr__(self) -> str:
        return (
            f"Dataflash(product_id={self.product_id!r}, "
            f"hw={format_scaled(self.hardware_version)}, "
            f"fw={format_scaled(self.firmware_version)}, "
            f"boot={self.boot_source.value})"
        )


def load_dataflash_file(path: Union[str, Path]) -> Dataflash:
    """
    Read a raw dataflash dump from disk.

    Raises:
        StorageError: If the file cannot be read
        FormatError: If the file is not exactly 2044 bytes
    """
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise StorageError(f"Cannot read dataflash file {path}: {exc}") from exc
    if len(data) != DATAFLASH_SIZE:
        raise FormatError(
            f"Seems that the dataflash file has the wrong format "
            f"({len(data)} bytes, expected {DATAFLASH_SIZE})"
        )
    return Dataflash(data)


def save_dataflash_file(dataflash: Dataflash, path: Union[str, Path]) -> Path:
    """Write the raw 2044-byte payload to ``path``."""
    target = Path(path)
    try:
        target.write_bytes(dataflash.data)
    except OSError as exc:
        raise StorageError(f"Cannot write dataflash file {path}: {exc}") from exc
    return target


def dataflash_file_name(identity: DeviceIdentity, device_name: Optional[str] = None) -> str:
    """Suggested dump name, e.g. "eVic-VTC Mini HW v1.01 FW v3.03.bin"."""
    name = device_name or identity.product_id or "Unknown device"
    return (
        f"{name} HW v{identity.hardware_version_text} "
        f"FW v{identity.firmware_version_text}.bin"
    )
