"""Hex codec and exact-length validation for envelope fields.

All binary values travel as lowercase hex so records survive JSON transport.
Decoding is a hard gate that runs before any cryptographic call.
"""
import binascii
import re
from typing import Optional

from txvault.errors import LengthMismatch, MalformedEncoding

KEY_BYTES = 32    # AES-256
NONCE_BYTES = 12  # 96-bit GCM nonce
TAG_BYTES = 16    # 128-bit GCM tag

_HEX_RE = re.compile(r"[0-9a-fA-F]*")


def decode_hex(text: str, expected_length: Optional[int] = None, label: str = "value") -> bytes:
    """Decode ``text`` as hex, optionally enforcing the decoded byte count.

    Raises:
        MalformedEncoding: non-hex characters or odd length.
        LengthMismatch: decoded length differs from ``expected_length``.
    """
    if not isinstance(text, str) or not _HEX_RE.fullmatch(text) or len(text) % 2 != 0:
        raise MalformedEncoding(label)

    data = binascii.unhexlify(text)

    if expected_length is not None and len(data) != expected_length:
        raise LengthMismatch(label, expected_length, len(data))

    return data


def encode_hex(data: bytes) -> str:
    return binascii.hexlify(data).decode("ascii")
