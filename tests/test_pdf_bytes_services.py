import pytest

from app.services.pdf_bytes import UnsupportedBinaryShape, normalize_pdf_bytes, sha256_hex


class _BufferLike:
    def __init__(self, buffer):
        self.buffer = buffer


class TestNormalizePdfBytes:
    def test_none_means_absent(self):
        assert normalize_pdf_bytes(None) is None

    @pytest.mark.parametrize(
        "value", [b"%PDF-1.4", bytearray(b"%PDF-1.4"), memoryview(b"%PDF-1.4")]
    )
    def test_native_buffers(self, value):
        assert normalize_pdf_bytes(value) == b"%PDF-1.4"

    def test_serialized_buffer_envelope(self):
        value = {"type": "Buffer", "data": list(b"%PDF")}
        assert normalize_pdf_bytes(value) == b"%PDF"

    def test_buffer_attribute(self):
        assert normalize_pdf_bytes(_BufferLike(b"abc")) == b"abc"
        assert normalize_pdf_bytes(_BufferLike([97, 98])) == b"ab"

    def test_unknown_envelope_rejected(self):
        with pytest.raises(UnsupportedBinaryShape):
            normalize_pdf_bytes({"type": "Blob", "data": [1, 2]})

    def test_out_of_range_envelope_rejected(self):
        with pytest.raises(UnsupportedBinaryShape):
            normalize_pdf_bytes({"type": "Buffer", "data": [300]})

    def test_string_rejected(self):
        with pytest.raises(UnsupportedBinaryShape):
            normalize_pdf_bytes("%PDF-1.4")


def test_sha256_hex():
    assert sha256_hex(b"") == (
        "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    )
