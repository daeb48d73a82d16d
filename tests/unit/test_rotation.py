"""Tests for DEK re-wrapping and the rotation service."""
import logging
import os

import pytest

from txvault.domain.envelope.engine import decrypt, encrypt, rewrap
from txvault.domain.envelope.registry import build_registry
from txvault.domain.envelope.rotation import RotationService
from txvault.errors import AuthenticationFailed, UnknownKeyVersion

K1 = os.urandom(32).hex()
K2 = os.urandom(32).hex()
K3 = os.urandom(32).hex()
PAYLOAD = {"amount": 10, "note": "rotation"}


@pytest.fixture
def registry_v1():
    return build_registry({"MASTER_KEY_V1": K1})


@pytest.fixture
def registry_v12():
    return build_registry({"MASTER_KEY_V1": K1, "MASTER_KEY_V2": K2})


def test_rewrap_moves_to_latest_version(registry_v1, registry_v12):
    record = encrypt(registry_v1, "r-1", "party-a", PAYLOAD)

    rotated = rewrap(registry_v12, record)

    assert rotated.mk_version == 2
    # Payload layer untouched
    assert rotated.payload_ct == record.payload_ct
    assert rotated.payload_nonce == record.payload_nonce
    assert rotated.payload_tag == record.payload_tag
    assert rotated.id == record.id
    assert rotated.party_id == record.party_id
    assert rotated.created_at == record.created_at
    # Wrap layer replaced
    assert rotated.dek_wrap_nonce != record.dek_wrap_nonce
    assert rotated.dek_wrapped != record.dek_wrapped

    # V1 can now be retired
    registry_v2_only = build_registry({"MASTER_KEY_V2": K2})
    assert decrypt(registry_v2_only, rotated).payload == PAYLOAD


def test_rewrap_latest_is_noop(registry_v12):
    record = encrypt(registry_v12, "r-2", "party-a", PAYLOAD)
    assert rewrap(registry_v12, record) is record


def test_rewrap_keeps_party_binding(registry_v1, registry_v12):
    record = encrypt(registry_v1, "r-3", "party-a", PAYLOAD)
    rotated = rewrap(registry_v12, record)

    with pytest.raises(AuthenticationFailed):
        decrypt(registry_v12, rotated.model_copy(update={"party_id": "party-b"}))


def test_rewrap_rejects_tampered_party(registry_v1, registry_v12):
    record = encrypt(registry_v1, "r-4", "party-a", PAYLOAD)

    with pytest.raises(AuthenticationFailed):
        rewrap(registry_v12, record.model_copy(update={"party_id": "party-b"}))


def test_rewrap_requires_original_version(registry_v1):
    record = encrypt(registry_v1, "r-5", "party-a", PAYLOAD)
    registry_v2_only = build_registry({"MASTER_KEY_V2": K2})

    with pytest.raises(UnknownKeyVersion):
        rewrap(registry_v2_only, record)


def test_rotate_batch_counts(registry_v1, registry_v12, caplog):
    old = [encrypt(registry_v1, f"old-{i}", "party-a", PAYLOAD) for i in range(3)]
    current = encrypt(registry_v12, "current", "party-a", PAYLOAD)
    broken = encrypt(registry_v1, "broken", "party-a", PAYLOAD).model_copy(update={"party_id": "party-x"})

    service = RotationService(registry_v12)
    assert service.stale_counts(old + [current, broken]) == {1: 4, 2: 1}

    with caplog.at_level(logging.INFO, logger="txvault.domain.envelope.rotation"):
        result = service.rotate_batch(old + [current, broken])

    assert result.rotated == 3
    assert result.skipped == 1
    assert result.failed == 1
    assert result.scanned == 5
    assert [r.id for r in result.records] == ["old-0", "old-1", "old-2", "current", "broken"]
    assert result.records[3] is current
    assert result.records[4] is broken
    assert service.stale_counts(result.records) == {1: 1, 2: 4}

    assert "Failed to rotate record broken: AUTHENTICATION_FAILED" in caplog.text
    assert "rotated=3 skipped=1 failed=1" in caplog.text

    for r in result.records[:4]:
        assert decrypt(registry_v12, r).payload == PAYLOAD


def test_rotate_batch_across_multiple_versions():
    registry_v123 = build_registry({"MASTER_KEY_V1": K1, "MASTER_KEY_V2": K2, "MASTER_KEY_V3": K3})
    records = [
        encrypt(build_registry({"MASTER_KEY_V1": K1}), "a", "p", PAYLOAD),
        encrypt(build_registry({"MASTER_KEY_V1": K1, "MASTER_KEY_V2": K2}), "b", "p", PAYLOAD),
    ]

    result = RotationService(registry_v123).rotate_batch(records)

    assert result.rotated == 2
    assert {r.mk_version for r in result.records} == {3}


def test_rotate_empty_batch(registry_v12):
    result = RotationService(registry_v12).rotate_batch([])
    assert result.scanned == 0
    assert result.records == []
