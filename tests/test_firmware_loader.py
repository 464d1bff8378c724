"""Tests for firmware container decoding and validation."""

import pytest

from ntoolbox.errors import CompatibilityError, FirmwareDecodeError, StorageError
from ntoolbox.firmware_loader import (
    FirmwareLoader,
    convert_firmware_file,
    decode_firmware,
    encode_firmware,
    ensure_compatible,
    validate_firmware,
)
from ntoolbox.utils.crypto import FirmwareEncoder


def test_key_stream_depends_on_size():
    assert FirmwareEncoder.key_byte(10, 0) == 0x42
    assert FirmwareEncoder.key_byte(10, 1) == 0x43
    assert FirmwareEncoder.key_byte(11, 0) == 0x43


def test_xor_is_symmetric(make_firmware):
    image = make_firmware(size=4096)
    encoded = encode_firmware(image)
    assert encoded != image
    assert decode_firmware(encoded) == image


def test_empty_transform():
    assert FirmwareEncoder.xor_crypt(b"") == b""


class TestLoad:
    def test_plain_image_returned_unchanged(self, tmp_path, make_firmware):
        image = make_firmware(size=2048)
        path = tmp_path / "plain.bin"
        path.write_bytes(image)
        assert FirmwareLoader.load(path) == image

    def test_encoded_image_is_decoded(self, tmp_path, make_firmware):
        image = make_firmware(size=2048)
        path = tmp_path / "vendor.bin"
        path.write_bytes(encode_firmware(image))
        assert FirmwareLoader.load(path) == image

    def test_garbage_rejected(self):
        with pytest.raises(FirmwareDecodeError) as ei:
            FirmwareLoader.load_bytes(b"\x00" * 100, source="junk.bin")
        assert "junk.bin" in str(ei.value)

    def test_empty_file_rejected(self, tmp_path):
        path = tmp_path / "empty.bin"
        path.write_bytes(b"")
        with pytest.raises(FirmwareDecodeError):
            FirmwareLoader.load(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(StorageError):
            FirmwareLoader.load(tmp_path / "missing.bin")


class TestValidate:
    def test_matching_product_id(self, make_firmware):
        assert validate_firmware(make_firmware(product_id="W033"), "W033") is True

    def test_other_product_id(self, make_firmware):
        assert validate_firmware(make_firmware(product_id="W033"), "E052") is False

    def test_empty_product_id_never_matches(self, make_firmware):
        assert validate_firmware(make_firmware(), "") is False

    def test_ensure_compatible_raises(self, make_firmware):
        with pytest.raises(CompatibilityError) as ei:
            ensure_compatible(make_firmware(product_id="W033"), "E052")
        assert "not suitable" in str(ei.value)


class TestConvert:
    def test_decode_to_file(self, tmp_path, make_firmware):
        image = make_firmware(size=1024)
        source = tmp_path / "vendor.bin"
        source.write_bytes(encode_firmware(image))

        out = convert_firmware_file(source, tmp_path / "plain.bin")
        assert out.read_bytes() == image

    def test_encode_to_file(self, tmp_path, make_firmware):
        image = make_firmware(size=1024)
        source = tmp_path / "plain.bin"
        source.write_bytes(image)

        out = convert_firmware_file(source, tmp_path / "vendor.bin", encode=True)
        assert out.read_bytes() == encode_firmware(image)
        assert FirmwareLoader.load(out) == image
