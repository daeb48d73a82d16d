"""Tests for log redaction of record and key material."""
import json
import logging
import os

from txvault.domain.envelope.engine import encrypt
from txvault.domain.envelope.registry import build_registry
from txvault.logging_hardening import SecretRedactionFilter, redact, setup_logging_redaction


def _make_record(msg, args=()):
    return logging.LogRecord("test", logging.INFO, __file__, 1, msg, args, None)


def test_redacts_json_rendered_record():
    key = os.urandom(32).hex()
    record = encrypt(build_registry({"MASTER_KEY_V1": key}), "tx-1", "party-a", {"a": 1})
    text = redact(record.to_json())
    data = json.loads(text)

    for field in ("payload_nonce", "payload_ct", "payload_tag", "dek_wrap_nonce", "dek_wrapped", "dek_wrap_tag"):
        assert data[field] == "[REDACTED]"
    assert data["partyId"] == "party-a"
    assert data["mk_version"] == 1


def test_redacts_keyword_assignments():
    assert redact("dek_wrapped=abcdef0123 ok") == "dek_wrapped=[REDACTED] ok"
    assert redact("payload_tag=00ff") == "payload_tag=[REDACTED]"


def test_redacts_master_keys():
    key = os.urandom(32).hex()
    assert key not in redact(f"MASTER_KEY_V2={key}")
    assert key not in redact(f'"MASTER_KEY": "{key}"')
    assert redact(f"MASTER_KEY={key}") == "MASTER_KEY=[REDACTED]"


def test_filter_redacts_message_and_args():
    f = SecretRedactionFilter()
    rec = _make_record("unwrap %s with %s", ("dek_wrap_tag=abcd", 42))

    assert f.filter(rec) is True
    assert rec.getMessage() == "unwrap dek_wrap_tag=[REDACTED] with 42"


def test_filter_ignores_non_string_messages():
    f = SecretRedactionFilter()
    rec = _make_record({"dek_wrapped": "abcd"})

    assert f.filter(rec) is True
    assert rec.msg == {"dek_wrapped": "abcd"}


def test_setup_is_idempotent():
    setup_logging_redaction()
    setup_logging_redaction()

    root = logging.getLogger()
    assert sum(isinstance(f, SecretRedactionFilter) for f in root.filters) == 1

    for f in root.filters[:]:
        if isinstance(f, SecretRedactionFilter):
            root.removeFilter(f)


def test_configure_logging_installs_redaction():
    from txvault.logging_hardening import configure_logging
    from txvault.settings import Settings

    configure_logging(Settings(LOG_LEVEL="debug", LOG_REDACTION_ENABLED=True, _env_file=None))

    root = logging.getLogger()
    installed = [f for f in root.filters if isinstance(f, SecretRedactionFilter)]
    assert len(installed) == 1

    root.removeFilter(installed[0])
