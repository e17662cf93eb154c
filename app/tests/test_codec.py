import base64
import gzip

import pytest

from marksync.core.errors import DecompressionError
from marksync.storage.codec import decode_payload, encode_payload

PAYLOAD = '{"metadata":{"timestamp":1},"data":[{"title":"Ünïcode"}]}'


def _decode_like_extension(body: bytes) -> str:
    # Extension replicas read the body as text, atob() it and gunzip the result.
    return gzip.decompress(base64.b64decode(body.decode("ascii"), validate=True)).decode("utf-8")


def test_upload_body_is_base64_text_readable_by_extensions():
    body = encode_payload(PAYLOAD)

    assert body.isascii()
    assert not body.startswith(b"\x1f\x8b")
    assert _decode_like_extension(body) == PAYLOAD
    assert decode_payload(body) == PAYLOAD


def test_raw_gzip_body_still_decodes():
    raw = gzip.compress(PAYLOAD.encode("utf-8"))
    assert decode_payload(raw) == PAYLOAD


def test_base64_body_with_trailing_newline():
    assert decode_payload(encode_payload(PAYLOAD) + b"\n") == PAYLOAD


def test_plain_json_body_when_uncompressed():
    assert decode_payload(PAYLOAD.encode("utf-8"), compressed=False) == PAYLOAD


@pytest.mark.parametrize(
    "raw",
    [
        b"definitely not gzip",
        base64.b64encode(b"plain text, not gzip"),
        b"\x1f\x8b\x08\x00broken",
    ],
)
def test_undecodable_bodies_raise(raw):
    with pytest.raises(DecompressionError):
        decode_payload(raw)
