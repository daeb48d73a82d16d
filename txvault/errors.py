"""Envelope error taxonomy.

Every failure the engine reports is one of the six kinds below. Callers
branch on ``kind`` (or the exception class), never on the message text.
Messages never carry plaintext, DEK or master key material.
"""
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    NO_KEYS_CONFIGURED = "NO_KEYS_CONFIGURED"
    MALFORMED_ENCODING = "MALFORMED_ENCODING"
    LENGTH_MISMATCH = "LENGTH_MISMATCH"
    UNKNOWN_KEY_VERSION = "UNKNOWN_KEY_VERSION"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    CORRUPT_PAYLOAD = "CORRUPT_PAYLOAD"


class EnvelopeError(Exception):
    """Base class for all envelope engine failures."""

    kind: ErrorKind

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}

    @property
    def code(self) -> str:
        return self.kind.value

    def to_dict(self) -> Dict[str, Any]:
        """Render the standardized error body.

        Shape: ``{"error": {"code": ..., "message": ..., "details": ...}}``,
        with ``details`` omitted when empty.
        """
        error_body: Dict[str, Any] = {
            "code": self.code,
            "message": self.message
        }
        if self.details:
            error_body["details"] = self.details
        return {"error": error_body}


class NoKeysConfigured(EnvelopeError):
    """No usable master key was found in the configuration (setup-time, fatal)."""

    kind = ErrorKind.NO_KEYS_CONFIGURED

    def __init__(self, message: str = "No master keys found. Set MASTER_KEY_V1 (or MASTER_KEY)."):
        super().__init__(message)


class MalformedEncoding(EnvelopeError):
    kind = ErrorKind.MALFORMED_ENCODING

    def __init__(self, field: str, reason: str = "invalid hex encoding"):
        super().__init__(f"{field}: {reason}", {"field": field})
        self.field = field


class LengthMismatch(EnvelopeError):
    kind = ErrorKind.LENGTH_MISMATCH

    def __init__(self, field: str, expected: int, actual: int):
        super().__init__(
            f"{field}: expected {expected} bytes, got {actual} bytes",
            {"field": field, "expected": expected, "actual": actual}
        )
        self.field = field
        self.expected = expected
        self.actual = actual


class UnknownKeyVersion(EnvelopeError):
    """The requested master key version is not in the registry (retired or invalid)."""

    kind = ErrorKind.UNKNOWN_KEY_VERSION

    def __init__(self, requested: int, available: List[int]):
        super().__init__(
            f"Master key version {requested} not found. "
            f"Available versions: {', '.join(str(v) for v in available)}",
            {"requested": requested, "available": list(available)}
        )
        self.requested = requested
        self.available = list(available)


class AuthenticationFailed(EnvelopeError):
    """AEAD tag verification failed.

    Deliberately uniform: wrong key, tampered ciphertext or tag, and a
    mismatched party binding all produce the same message.
    """

    kind = ErrorKind.AUTHENTICATION_FAILED

    def __init__(self):
        super().__init__("Decryption failed: authentication tag mismatch (data may be tampered).")


class CorruptPayload(EnvelopeError):
    """Authentication succeeded but the plaintext is not valid JSON."""

    kind = ErrorKind.CORRUPT_PAYLOAD

    def __init__(self):
        super().__init__("Decryption produced invalid JSON - possible data corruption.")
