"""
Vendor firmware container transform.

Firmware images published by the vendor are XOR-scrambled with a key stream
derived from the image size:

    key(i) = (size + 408376 + i - size // 408376) & 0xFF

The transform is symmetric (the same function encodes and decodes). A decoded
application image carries the ASCII marker ``Joyetech APROM``.
"""

from __future__ import annotations


class FirmwareEncoder:
    """Shared firmware container helpers (symmetric transforms)."""

    KEY_BASE = 408376
    APROM_MARKER = b"Joyetech APROM"

    @classmethod
    def key_byte(cls, size: int, index: int) -> int:
        return (size + cls.KEY_BASE + index - size // cls.KEY_BASE) & 0xFF

    @classmethod
    def xor_crypt(cls, data: bytes) -> bytes:
        """
        Encode or decode a whole firmware image.

        The key stream depends on the total length, so the image must be
        transformed in one piece, never chunk by chunk.
        """
        if not data:
            return bytes(data)
        size = len(data)
        out = bytearray(size)
        for i, byte in enumerate(data):
            out[i] = byte ^ cls.key_byte(size, i)
        return bytes(out)

    @classmethod
    def is_decoded(cls, data: bytes) -> bool:
        """True when ``data`` is a plain application image."""
        return cls.APROM_MARKER in data
