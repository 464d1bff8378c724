"""
Declarative binary structure codec.

Maps a fixed-size block of device memory (dataflash, Arctic Fox configuration)
to a tree of typed values and back. A layout is a set of field descriptors
bound to byte offsets and bit masks:

| Descriptor | Python value            | Notes                                   |
|------------|-------------------------|-----------------------------------------|
| UInt       | int / Decimal           | little-endian, optional fixed-point scale |
| Flag       | bool                    | one or more bits of a single byte       |
| Bits       | int / IntEnum           | masked value, shifted down to bit 0     |
| Text       | str                     | fixed width, NUL padded                 |
| Raw        | bytes                   | opaque bytes                            |
| Nested     | Record                  | sub-layout at an offset                 |
| Array      | list                    | repeated element with a fixed stride    |

Reserved bits are preserved: a decoded Record keeps its backing bytes and
encoding starts from them, rewriting only fields whose value changed. This
makes ``encode(decode(data)) == data`` hold for every buffer of the declared
size, including bits the layout does not model.

Layout mistakes (a field outside the block, two fields claiming the same bit)
raise SchemaError when the layout is built, never while decoding.
"""

from __future__ import annotations

import copy
import enum
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterator, List, Mapping, Optional, Type, Union

from .errors import FormatError, SchemaError

ByteLike = Union[bytes, bytearray, memoryview]

_RECORD_ATTRIBUTES = frozenset({"layout", "raw", "to_dict", "copy", "keys", "items"})


class Field:
    """Base field descriptor. Offsets are relative to the enclosing layout."""

    def __init__(self, offset: int, size: int):
        if offset < 0:
            raise SchemaError(f"Field offset must not be negative, got {offset}")
        if size <= 0:
            raise SchemaError(f"Field size must be positive, got {size}")
        self.offset = offset
        self.size = size

    @property
    def end(self) -> int:
        return self.offset + self.size

    def footprint(self) -> Dict[int, int]:
        """Map of byte index -> bit mask claimed by this field."""
        return {self.offset + i: 0xFF for i in range(self.size)}

    def read(self, buf: ByteLike, base: int) -> Any:
        raise NotImplementedError

    def write(self, buf: bytearray, base: int, value: Any) -> None:
        raise NotImplementedError

    def store(self, buf: bytearray, base: int, value: Any) -> None:
        """Write ``value`` unless the backing bytes already decode to it."""
        if self.read(buf, base) == value:
            return
        self.write(buf, base, value)

    def _slice(self, buf: ByteLike, base: int) -> bytes:
        start = base + self.offset
        return bytes(buf[start:start + self.size])


class UInt(Field):
    """
    Little-endian integer, optionally fixed-point.

    With ``scale=100`` a stored 161 decodes to ``Decimal("1.61")``; encoding
    multiplies back and rejects values that are not exact multiples of 1/scale.
    """

    def __init__(self, offset: int, size: int = 1, scale: int = 1, signed: bool = False):
        if size not in (1, 2, 4, 8):
            raise SchemaError(f"Unsupported integer width: {size} bytes")
        if scale < 1:
            raise SchemaError(f"Scale must be >= 1, got {scale}")
        super().__init__(offset, size)
        self.scale = scale
        self.signed = signed

    @property
    def limits(self) -> tuple:
        bits = self.size * 8
        if self.signed:
            return -(1 << (bits - 1)), (1 << (bits - 1)) - 1
        return 0, (1 << bits) - 1

    def read(self, buf: ByteLike, base: int) -> Union[int, Decimal]:
        raw = int.from_bytes(self._slice(buf, base), "little", signed=self.signed)
        if self.scale == 1:
            return raw
        return Decimal(raw) / self.scale

    def to_raw(self, value: Any) -> int:
        if isinstance(value, bool):
            raise FormatError(f"Expected a number, got {value!r}")
        try:
            number = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise FormatError(f"Expected a number, got {value!r}") from exc
        scaled = number * self.scale
        if scaled != scaled.to_integral_value():
            raise FormatError(f"{value} is not a multiple of 1/{self.scale}")
        raw = int(scaled)
        low, high = self.limits
        if not low <= raw <= high:
            raise FormatError(f"{value} does not fit in {self.size} byte(s)")
        return raw

    def write(self, buf: bytearray, base: int, value: Any) -> None:
        start = base + self.offset
        buf[start:start + self.size] = self.to_raw(value).to_bytes(
            self.size, "little", signed=self.signed
        )


class Flag(Field):
    """Boolean stored in the bits of ``mask`` within one byte."""

    def __init__(self, offset: int, mask: int = 0x01):
        if not 0 < mask <= 0xFF:
            raise SchemaError(f"Flag mask must fit in one byte, got 0x{mask:X}")
        super().__init__(offset, 1)
        self.mask = mask

    def footprint(self) -> Dict[int, int]:
        return {self.offset: self.mask}

    def read(self, buf: ByteLike, base: int) -> bool:
        return bool(buf[base + self.offset] & self.mask)

    @staticmethod
    def coerce(value: Any) -> bool:
        """Accept bools and the ints 0/1; anything else is a FormatError."""
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        raise FormatError(f"Expected a boolean, got {value!r}")

    def write(self, buf: bytearray, base: int, value: Any) -> None:
        index = base + self.offset
        if self.coerce(value):
            buf[index] |= self.mask
        else:
            buf[index] &= ~self.mask & 0xFF


class Bits(Field):
    """
    Masked integer shifted down to bit 0, optionally converted to an IntEnum.

    Values outside the enum decode as plain ints so unknown firmware values
    survive a round trip.
    """

    def __init__(
        self,
        offset: int,
        mask: int = 0xFF,
        enum_type: Optional[Type[enum.IntEnum]] = None,
        size: int = 1,
    ):
        super().__init__(offset, size)
        if mask <= 0 or mask >> (size * 8):
            raise SchemaError(f"Mask 0x{mask:X} does not fit in {size} byte(s)")
        self.mask = mask
        self.shift = (mask & -mask).bit_length() - 1
        self.enum_type = enum_type

    def footprint(self) -> Dict[int, int]:
        claimed = {}
        for i in range(self.size):
            byte_mask = (self.mask >> (8 * i)) & 0xFF
            if byte_mask:
                claimed[self.offset + i] = byte_mask
        return claimed

    def _word(self, buf: ByteLike, base: int) -> int:
        return int.from_bytes(self._slice(buf, base), "little")

    def read(self, buf: ByteLike, base: int) -> Union[int, enum.IntEnum]:
        value = (self._word(buf, base) & self.mask) >> self.shift
        if self.enum_type is not None:
            try:
                return self.enum_type(value)
            except ValueError:
                return value
        return value

    def write(self, buf: bytearray, base: int, value: Any) -> None:
        try:
            number = int(value)
        except (TypeError, ValueError) as exc:
            raise FormatError(f"Expected an integer or enum member, got {value!r}") from exc
        if number < 0 or (number << self.shift) & ~self.mask:
            raise FormatError(f"{value!r} does not fit in mask 0x{self.mask:X}")
        word = (self._word(buf, base) & ~self.mask) | (number << self.shift)
        start = base + self.offset
        buf[start:start + self.size] = word.to_bytes(self.size, "little")


class Text(Field):
    """Fixed-width string, NUL padded. Decoding stops at the first NUL."""

    def __init__(self, offset: int, length: int, encoding: str = "latin-1"):
        super().__init__(offset, length)
        self.encoding = encoding

    def read(self, buf: ByteLike, base: int) -> str:
        return self._slice(buf, base).split(b"\x00", 1)[0].decode(self.encoding)

    def write(self, buf: bytearray, base: int, value: Any) -> None:
        try:
            encoded = str(value).encode(self.encoding)
        except UnicodeEncodeError as exc:
            raise FormatError(f"Cannot encode {value!r} as {self.encoding}") from exc
        if len(encoded) > self.size:
            raise FormatError(f"{value!r} is longer than {self.size} bytes")
        start = base + self.offset
        buf[start:start + self.size] = encoded.ljust(self.size, b"\x00")


class Raw(Field):
    """Opaque bytes."""

    def read(self, buf: ByteLike, base: int) -> bytes:
        return self._slice(buf, base)

    def write(self, buf: bytearray, base: int, value: Any) -> None:
        data = bytes(value)
        if len(data) != self.size:
            raise FormatError(f"Expected {self.size} bytes, got {len(data)}")
        start = base + self.offset
        buf[start:start + self.size] = data


class Nested(Field):
    """A sub-layout embedded at ``offset``."""

    def __init__(self, offset: int, layout: "StructureLayout"):
        super().__init__(offset, layout.size)
        self.layout = layout

    def footprint(self) -> Dict[int, int]:
        return {self.offset + i: mask for i, mask in self.layout.footprint().items()}

    def read(self, buf: ByteLike, base: int) -> "Record":
        return self.layout.decode_from(buf, base + self.offset)

    def write(self, buf: bytearray, base: int, value: Any) -> None:
        self.store(buf, base, value)

    def store(self, buf: bytearray, base: int, value: Any) -> None:
        if not isinstance(value, (Record, Mapping)):
            raise FormatError(f"Expected a {self.layout.name} record, got {type(value).__name__}")
        for name, field in self.layout.fields.items():
            if name in value.keys():
                field.store(buf, base + self.offset, value[name])


class Array(Field):
    """``count`` elements laid out every ``stride`` bytes."""

    def __init__(
        self,
        offset: int,
        element: Union[Field, "StructureLayout"],
        count: int,
        stride: Optional[int] = None,
    ):
        if isinstance(element, StructureLayout):
            element = Nested(0, element)
        if count <= 0:
            raise SchemaError(f"Array count must be positive, got {count}")
        stride = element.end if stride is None else stride
        if stride < element.end:
            raise SchemaError(f"Array stride {stride} is smaller than its element ({element.end} bytes)")
        super().__init__(offset, stride * (count - 1) + element.end)
        self.element = element
        self.count = count
        self.stride = stride

    def footprint(self) -> Dict[int, int]:
        claimed: Dict[int, int] = {}
        for i in range(self.count):
            for index, mask in self.element.footprint().items():
                claimed[self.offset + i * self.stride + index] = mask
        return claimed

    def read(self, buf: ByteLike, base: int) -> List[Any]:
        start = base + self.offset
        return [self.element.read(buf, start + i * self.stride) for i in range(self.count)]

    def write(self, buf: bytearray, base: int, value: Any) -> None:
        self.store(buf, base, value)

    def store(self, buf: bytearray, base: int, value: Any) -> None:
        items = list(value)
        if len(items) != self.count:
            raise FormatError(f"Expected {self.count} elements, got {len(items)}")
        start = base + self.offset
        for i, item in enumerate(items):
            self.element.store(buf, start + i * self.stride, item)


class StructureLayout:
    """
    Fixed-size block described by named fields.

    Args:
        name: Layout name, used in error messages and Record reprs
        size: Block size in bytes
        fields: Ordered mapping of field name -> descriptor

    Raises:
        SchemaError: If a field falls outside the block, two fields claim the
            same bits, or a field name clashes with Record attributes
    """

    def __init__(self, name: str, size: int, fields: Mapping[str, Field]):
        if size <= 0:
            raise SchemaError(f"{name}: size must be positive")
        self.name = name
        self.size = size
        self.fields: Dict[str, Field] = dict(fields)
        self._footprint = self._validate()

    def _validate(self) -> Dict[int, int]:
        claimed: Dict[int, int] = {}
        owners: Dict[int, str] = {}
        for field_name, field in self.fields.items():
            if field_name.startswith("_") or field_name in _RECORD_ATTRIBUTES:
                raise SchemaError(f"{self.name}: invalid field name '{field_name}'")
            if field.end > self.size:
                raise SchemaError(
                    f"{self.name}.{field_name}: bytes {field.offset}..{field.end - 1} "
                    f"fall outside the {self.size}-byte block"
                )
            for index, mask in field.footprint().items():
                if claimed.get(index, 0) & mask:
                    raise SchemaError(
                        f"{self.name}.{field_name} overlaps {owners[index]} at byte {index}"
                    )
                claimed[index] = claimed.get(index, 0) | mask
                owners[index] = field_name
        return claimed

    def footprint(self) -> Dict[int, int]:
        return dict(self._footprint)

    def decode(self, data: ByteLike) -> "Record":
        if len(data) != self.size:
            raise FormatError(f"{self.name}: expected {self.size} bytes, got {len(data)}")
        return self.decode_from(data, 0)

    def decode_from(self, buf: ByteLike, base: int) -> "Record":
        values = {name: field.read(buf, base) for name, field in self.fields.items()}
        return Record(self, values, bytes(buf[base:base + self.size]))

    def encode(self, record: "Record") -> bytes:
        if record.layout is not self:
            raise FormatError(f"Record of {record.layout.name} cannot be encoded as {self.name}")
        buf = bytearray(record.raw)
        for name, field in self.fields.items():
            field.store(buf, 0, record[name])
        return bytes(buf)

    def blank(self, **values: Any) -> "Record":
        """New record over an all-zero block, with ``values`` applied."""
        record = self.decode(bytes(self.size))
        for name, value in values.items():
            record[name] = value
        return record

    def __repr__(self) -> str:
        return f"StructureLayout({self.name!r}, size={self.size}, fields={len(self.fields)})"


class Record:
    """
    Decoded values of one layout, addressable as attributes or items.

    The backing bytes the record was decoded from are kept so encoding does not
    disturb bits the layout does not model.
    """

    __slots__ = ("_layout", "_values", "_raw")

    def __init__(self, layout: StructureLayout, values: Dict[str, Any], raw: bytes):
        object.__setattr__(self, "_layout", layout)
        object.__setattr__(self, "_values", values)
        object.__setattr__(self, "_raw", raw)

    @property
    def layout(self) -> StructureLayout:
        return self._layout

    @property
    def raw(self) -> bytes:
        return self._raw

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._values[name]
        except KeyError:
            raise AttributeError(f"{self._layout.name} has no field '{name}'") from None

    def __setattr__(self, name: str, value: Any) -> None:
        field = self._layout.fields.get(name)
        if field is None:
            raise AttributeError(f"{self._layout.name} has no field '{name}'")
        if isinstance(field, Flag):
            value = field.coerce(value)
        self._values[name] = value

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self.__setattr__(name, value)

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def keys(self):
        return self._values.keys()

    def items(self):
        return self._values.items()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return self._layout is other._layout and self._values == other._values

    __hash__ = None

    def __repr__(self) -> str:
        inner = ", ".join(f"{k}={v!r}" for k, v in self._values.items())
        return f"{self._layout.name}({inner})"

    def __deepcopy__(self, memo: dict) -> "Record":
        return Record(self._layout, copy.deepcopy(self._values, memo), self._raw)

    def copy(self) -> "Record":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly view: enums by name, Decimals as strings, bytes as hex."""
        return {name: _plain(value) for name, value in self._values.items()}


def _plain(value: Any) -> Any:
    if isinstance(value, Record):
        return value.to_dict()
    if isinstance(value, list):
        return [_plain(item) for item in value]
    if isinstance(value, enum.Enum):
        return value.name
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, bytes):
        return value.hex()
    return value


def decode(data: ByteLike, layout: StructureLayout) -> Record:
    """Decode ``data`` (exactly ``layout.size`` bytes) into a Record."""
    return layout.decode(data)


def encode(record: Record, layout: Optional[StructureLayout] = None) -> bytes:
    """Encode a Record back into a block of ``layout.size`` bytes."""
    return (layout or record.layout).encode(record)


def format_scaled(value: Union[int, Decimal], places: int = 2) -> str:
    """Render a fixed-point value for display, e.g. Decimal("1.61") -> "1.61"."""
    return f"{Decimal(value):.{places}f}"
