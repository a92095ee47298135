import hashlib


class UnsupportedBinaryShape(ValueError):
    pass


def normalize_pdf_bytes(value) -> bytes | None:
    """Coerce a stored binary payload to ``bytes``.

    Accepts native binary buffers, buffer-like objects exposing ``.buffer``,
    and the serialized ``{"type": "Buffer", "data": [...]}`` envelope.
    ``None`` means no payload was stored.
    """
    if value is None:
        return None
    if isinstance(value, bytes):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, dict):
        data = value.get("data")
        if value.get("type") == "Buffer" and isinstance(data, list):
            try:
                return bytes(data)
            except (TypeError, ValueError) as exc:
                raise UnsupportedBinaryShape(f"Invalid Buffer envelope: {exc}") from exc
        raise UnsupportedBinaryShape("Unrecognized binary envelope")
    buffer = getattr(value, "buffer", None)
    if buffer is not None:
        if isinstance(buffer, (bytes, bytearray, memoryview)):
            return bytes(buffer)
        if isinstance(buffer, list):
            try:
                return bytes(buffer)
            except (TypeError, ValueError) as exc:
                raise UnsupportedBinaryShape(f"Invalid buffer contents: {exc}") from exc
    raise UnsupportedBinaryShape(
        f"Unsupported binary payload type: {type(value).__name__}"
    )


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
