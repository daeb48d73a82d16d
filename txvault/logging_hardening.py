"""Logging Hardening and Redaction.

This module provides filters to prevent record key material (nonces, tags,
wrapped DEKs, ciphertext) and master keys from appearing in application logs.
"""
import logging
import re

from txvault.settings import Settings

_HEX_FIELDS = ("payload_nonce", "payload_ct", "payload_tag", "dek_wrap_nonce", "dek_wrapped", "dek_wrap_tag")

SECRET_PATTERNS = [
    # JSON-rendered record fields
    (re.compile(r'("(?:' + "|".join(_HEX_FIELDS) + r')":\s*")[0-9a-fA-F]+(")'), r'\1[REDACTED]\2'),
    # Keyword-style assignments
    (re.compile(r'\b(' + "|".join(_HEX_FIELDS) + r')=[0-9a-fA-F]+'), r'\1=[REDACTED]'),
    # Master key configuration
    (re.compile(r'\b(MASTER_KEY(?:_V[0-9]+)?["\']?\s*[=:]\s*["\']?)[0-9a-fA-F]{64}'), r'\1[REDACTED]'),
]


def redact(text: str) -> str:
    for pattern, replacement in SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class SecretRedactionFilter(logging.Filter):
    """Filter that redacts secret-like patterns from log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)

        # Also redact arguments if they are strings
        if isinstance(record.args, tuple) and record.args:
            record.args = tuple(redact(a) if isinstance(a, str) else a for a in record.args)

        return True


def setup_logging_redaction() -> None:
    """Apply the SecretRedactionFilter to the root logger and all existing loggers."""
    redact_filter = SecretRedactionFilter()

    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)

    # Remove existing filters if any (to avoid duplicates)
    for target in [root_logger, *handlers]:
        for f in target.filters[:]:
            if isinstance(f, SecretRedactionFilter):
                target.removeFilter(f)
        target.addFilter(redact_filter)

    # Logger filters do not run for records propagated from child loggers,
    # so attach to every known logger as well.
    for name in logging.root.manager.loggerDict:
        logger = logging.getLogger(name)
        if not any(isinstance(f, SecretRedactionFilter) for f in logger.filters):
            logger.addFilter(redact_filter)

    logging.getLogger(__name__).debug("Logging redaction filters active.")


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    if settings.LOG_REDACTION_ENABLED:
        setup_logging_redaction()
