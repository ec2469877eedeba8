"""
auth/codec.py -- base64url (no padding) codec for token segments.

Encoding and decoding delegate to python-jose's base64url helpers, the same
library family the rest of the JWT ecosystem uses. Decoding is strict: the
stdlib decoder underneath silently skips characters outside the alphabet, so
the input is validated first and re-encoded afterwards to reject any text
that is not the exact encoding of some byte string.

Pure functions, no state, no locking.
"""

from __future__ import annotations

import binascii
import re

from jose.utils import base64url_decode, base64url_encode

from auth.errors import MalformedEncodingError

_ALPHABET = re.compile(r"[A-Za-z0-9_-]*")


def encode(data: bytes) -> str:
    """Return data as unpadded URL-safe base64 text."""
    return base64url_encode(data).decode("ascii")


def decode(text: str) -> bytes:
    """Decode unpadded URL-safe base64 text.

    Raises MalformedEncodingError for characters outside [A-Za-z0-9_-], for a
    length that no byte count produces (len % 4 == 1) and for non-canonical
    trailing bits.
    """
    if not _ALPHABET.fullmatch(text):
        raise MalformedEncodingError("Invalid character in base64url text")
    if len(text) % 4 == 1:
        raise MalformedEncodingError("Invalid base64url length")
    raw = text.encode("ascii")
    try:
        data = base64url_decode(raw)
    except (binascii.Error, ValueError) as e:
        raise MalformedEncodingError() from e
    if base64url_encode(data) != raw:
        raise MalformedEncodingError("Non-canonical base64url text")
    return data
