from __future__ import annotations

import base64
import binascii
import gzip
import zlib

from marksync.core.errors import DecompressionError

GZIP_MAGIC = b"\x1f\x8b"
PAYLOAD_CONTENT_TYPE = "text/plain; charset=us-ascii"


def encode_payload(text: str) -> bytes:
    """Base64 text wrapping gzip, the body format browser-extension replicas read."""
    return base64.b64encode(gzip.compress(text.encode("utf-8")))


def decode_payload(raw: bytes, compressed: bool = True) -> str:
    """Decode a downloaded backup body.

    Compressed bodies are base64 text wrapping gzip (what every replica
    writes), or raw gzip.
    """
    if not compressed:
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecompressionError(f"payload_not_utf8: {e}") from e

    data = raw
    if not data.startswith(GZIP_MAGIC):
        try:
            data = base64.b64decode(raw.strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecompressionError(f"payload_not_gzip: {e}") from e
        if not data.startswith(GZIP_MAGIC):
            raise DecompressionError("payload_not_gzip")

    try:
        return gzip.decompress(data).decode("utf-8")
    except (OSError, EOFError, zlib.error, UnicodeDecodeError) as e:
        raise DecompressionError(f"gunzip_failed: {e}") from e
