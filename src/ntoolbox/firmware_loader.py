"""
Firmware image loading and validation.

A firmware file is either a plain application image or the vendor's
XOR-scrambled container (see ``utils.crypto``). Loading returns the plain
image in both cases:

1. Read the file.
2. If the bytes already contain the APROM marker, use them as-is.
3. Otherwise decode and use the result if it contains the marker.
4. Anything else is rejected with FirmwareDecodeError.

Validation is a product-id substring check: images built for a device embed
its 4-character product id ("E052", "W033", ...) in ASCII.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

from .errors import CompatibilityError, FirmwareDecodeError, StorageError
from .utils.crypto import FirmwareEncoder

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def decode_firmware(data: bytes) -> bytes:
    """Decode a vendor container into a plain image."""
    return FirmwareEncoder.xor_crypt(data)


def encode_firmware(data: bytes) -> bytes:
    """Encode a plain image into the vendor container format."""
    return FirmwareEncoder.xor_crypt(data)


def validate_firmware(data: bytes, product_id: str) -> bool:
    """
    Check that a firmware image was built for ``product_id``.

    Args:
        data: Plain firmware image
        product_id: Product id read from the device dataflash

    Returns:
        True when the product id occurs anywhere in the image.
    """
    if not product_id:
        return False
    return product_id.encode("utf-8") in data


def ensure_compatible(data: bytes, product_id: str) -> None:
    """
    Raises:
        CompatibilityError: If the image does not mention ``product_id``
    """
    if not validate_firmware(data, product_id):
        raise CompatibilityError(
            f"Opened firmware file is not suitable for the connected device ({product_id or 'unknown'})."
        )


class FirmwareLoader:
    """Reads firmware files and hands back flashable plain images."""

    @staticmethod
    def read_file(path: PathLike) -> bytes:
        try:
            return Path(path).read_bytes()
        except OSError as exc:
            raise StorageError(f"Cannot read firmware file {path}: {exc}") from exc

    @classmethod
    def load(cls, path: PathLike) -> bytes:
        """
        Load a firmware image, transparently decoding the vendor container.

        Raises:
            StorageError: If the file cannot be read
            FirmwareDecodeError: If the file is neither a plain image nor a
                vendor container
        """
        raw = cls.read_file(path)
        return cls.load_bytes(raw, source=str(path))

    @staticmethod
    def load_bytes(raw: bytes, source: str = "<memory>") -> bytes:
        if not raw:
            raise FirmwareDecodeError(f"Firmware file {source} is empty")

        if FirmwareEncoder.is_decoded(raw):
            logger.debug(f"{source}: plain firmware image ({len(raw)} bytes)")
            return raw

        decoded = decode_firmware(raw)
        if FirmwareEncoder.is_decoded(decoded):
            logger.debug(f"{source}: decoded vendor container ({len(raw)} bytes)")
            return decoded

        raise FirmwareDecodeError(
            f"{source} is not a firmware image: APROM marker not found "
            f"in plain or decoded data"
        )


def convert_firmware_file(source: PathLike, target: PathLike, encode: bool = False) -> Path:
    """
    Write the plain (or, with ``encode``, the vendor-encoded) form of a
    firmware file to ``target``.
    """
    plain = FirmwareLoader.load(source)
    payload = encode_firmware(plain) if encode else plain
    out = Path(target)
    try:
        out.write_bytes(payload)
    except OSError as exc:
        raise StorageError(f"Cannot write firmware file {target}: {exc}") from exc
    logger.info(f"Wrote {'encoded' if encode else 'decoded'} firmware to {out} ({len(payload)} bytes)")
    return out
