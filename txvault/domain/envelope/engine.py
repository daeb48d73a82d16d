"""Envelope Encryption using AES-256-GCM.

Two layers:

Layer 1 - data encryption:
    A fresh random Data Encryption Key (DEK) is generated per record and the
    JSON payload is encrypted under it.

Layer 2 - key wrapping:
    The DEK itself is encrypted ("wrapped") under the latest master key from
    the registry. The master key never touches payload bytes.

``partyId`` is bound as AAD to both layers. It is stored in clear but any
change to it after encryption makes both authentication tags fail.

Rotation only needs the DEK re-wrapped (see ``rewrap``); payload ciphertext
is never re-encrypted.
"""
import json
import logging
import os
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from uuid6 import uuid7

from txvault.domain.envelope.codec import KEY_BYTES, NONCE_BYTES, TAG_BYTES, decode_hex, encode_hex
from txvault.domain.envelope.models import ALGORITHM_AES_256_GCM, DecryptResult, SecureRecord, utc_timestamp
from txvault.domain.envelope.registry import MasterKeyRegistry, get_key, latest_version
from txvault.errors import AuthenticationFailed, CorruptPayload, MalformedEncoding

logger = logging.getLogger(__name__)

DEK_BYTES = KEY_BYTES


@contextmanager
def _scoped_key(material: bytes) -> Iterator[bytearray]:
    """Hold key material in a mutable buffer that is zeroed on exit."""
    buf = bytearray(material)
    try:
        yield buf
    finally:
        for i in range(len(buf)):
            buf[i] = 0


def _seal(key: bytes, plaintext: bytes, aad: bytes) -> Tuple[bytes, bytes, bytes]:
    """AES-256-GCM encrypt with a fresh random nonce. Returns (nonce, ciphertext, tag)."""
    # Nonce reuse under one key breaks GCM; always draw a new one.
    nonce = os.urandom(NONCE_BYTES)
    ct_and_tag = AESGCM(key).encrypt(nonce, plaintext, aad)
    return nonce, ct_and_tag[:-TAG_BYTES], ct_and_tag[-TAG_BYTES:]


def _open(key: bytes, nonce: bytes, ciphertext: bytes, tag: bytes, aad: bytes, layer: str) -> bytes:
    """AES-256-GCM decrypt. Every tag failure maps to the same AuthenticationFailed."""
    try:
        return AESGCM(key).decrypt(nonce, ciphertext + tag, aad)
    except InvalidTag:
        logger.debug(f"Authentication failed at {layer} layer")
        raise AuthenticationFailed() from None


def serialize_payload(payload: Any) -> bytes:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _aad(party_id: str) -> bytes:
    return party_id.encode("utf-8")


def validate_record(record: SecureRecord) -> None:
    """Check algorithm, hex encoding and exact byte lengths of every binary field.

    This is the gate in front of all cryptography: nothing is decrypted
    until the whole record passes.

    Raises:
        MalformedEncoding: unsupported ``alg`` or a field that is not hex.
        LengthMismatch: nonce, tag or wrapped DEK of the wrong size.
    """
    if record.alg != ALGORITHM_AES_256_GCM:
        raise MalformedEncoding("alg", f"unsupported algorithm {record.alg!r}")

    decode_hex(record.payload_nonce, NONCE_BYTES, label="payload_nonce")
    decode_hex(record.payload_ct, label="payload_ct")
    decode_hex(record.payload_tag, TAG_BYTES, label="payload_tag")
    decode_hex(record.dek_wrap_nonce, NONCE_BYTES, label="dek_wrap_nonce")
    decode_hex(record.dek_wrapped, DEK_BYTES, label="dek_wrapped")
    decode_hex(record.dek_wrap_tag, TAG_BYTES, label="dek_wrap_tag")


def _unwrap_dek(registry: MasterKeyRegistry, record: SecureRecord, aad: bytes) -> bytes:
    master_key = get_key(registry, record.mk_version)
    return _open(
        master_key,
        decode_hex(record.dek_wrap_nonce, NONCE_BYTES, label="dek_wrap_nonce"),
        decode_hex(record.dek_wrapped, DEK_BYTES, label="dek_wrapped"),
        decode_hex(record.dek_wrap_tag, TAG_BYTES, label="dek_wrap_tag"),
        aad,
        layer="dek_wrap",
    )


def encrypt(
    registry: MasterKeyRegistry,
    record_id: Optional[str],
    party_id: str,
    payload: Any,
) -> SecureRecord:
    """Encrypt a JSON-serializable payload into a SecureRecord.

    Args:
        registry: master key registry; the latest version wraps the DEK.
        record_id: record identifier, or None to generate a UUIDv7.
        party_id: owning party, bound as AAD to both layers.
        payload: any JSON-serializable value.
    """
    if record_id is None:
        record_id = str(uuid7())
    if not record_id:
        raise ValueError("record_id must be a non-empty string")
    if not party_id:
        raise ValueError("party_id must be a non-empty string")

    mk_version = latest_version(registry)
    master_key = get_key(registry, mk_version)
    aad = _aad(party_id)
    plaintext = serialize_payload(payload)

    with _scoped_key(os.urandom(DEK_BYTES)) as dek:
        payload_nonce, payload_ct, payload_tag = _seal(dek, plaintext, aad)
        wrap_nonce, wrapped_dek, wrap_tag = _seal(master_key, dek, aad)

    logger.debug(f"Encrypted record {record_id} under master key version {mk_version}")

    return SecureRecord(
        id=record_id,
        party_id=party_id,
        created_at=utc_timestamp(),
        payload_nonce=encode_hex(payload_nonce),
        payload_ct=encode_hex(payload_ct),
        payload_tag=encode_hex(payload_tag),
        dek_wrap_nonce=encode_hex(wrap_nonce),
        dek_wrapped=encode_hex(wrapped_dek),
        dek_wrap_tag=encode_hex(wrap_tag),
        alg=ALGORITHM_AES_256_GCM,
        mk_version=mk_version,
    )


def decrypt(registry: MasterKeyRegistry, record: SecureRecord) -> DecryptResult:
    """Decrypt a SecureRecord.

    Order of checks: field validation, key lookup, DEK unwrap, payload
    decryption, JSON parsing. The first failure is raised.

    Raises:
        MalformedEncoding, LengthMismatch, UnknownKeyVersion,
        AuthenticationFailed, CorruptPayload
    """
    validate_record(record)
    aad = _aad(record.party_id)

    with _scoped_key(_unwrap_dek(registry, record, aad)) as dek:
        plaintext = _open(
            dek,
            decode_hex(record.payload_nonce, NONCE_BYTES, label="payload_nonce"),
            decode_hex(record.payload_ct, label="payload_ct"),
            decode_hex(record.payload_tag, TAG_BYTES, label="payload_tag"),
            aad,
            layer="payload",
        )

    try:
        payload = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        logger.error(f"Record {record.id} authenticated but payload is not valid JSON")
        raise CorruptPayload() from None

    return DecryptResult(id=record.id, party_id=record.party_id, payload=payload)


def rewrap(registry: MasterKeyRegistry, record: SecureRecord) -> SecureRecord:
    """Re-wrap the record's DEK under the registry's latest master key.

    The payload ciphertext, ``id``, ``partyId`` and ``createdAt`` are kept
    as they are. A record already on the latest version is returned unchanged.
    Needs the record's original version to still be in the registry.
    """
    validate_record(record)

    target_version = latest_version(registry)
    if record.mk_version == target_version:
        return record

    aad = _aad(record.party_id)
    target_key = get_key(registry, target_version)

    with _scoped_key(_unwrap_dek(registry, record, aad)) as dek:
        wrap_nonce, wrapped_dek, wrap_tag = _seal(target_key, dek, aad)

    logger.debug(f"Re-wrapped record {record.id}: v{record.mk_version} -> v{target_version}")

    return record.model_copy(update={
        "dek_wrap_nonce": encode_hex(wrap_nonce),
        "dek_wrapped": encode_hex(wrapped_dek),
        "dek_wrap_tag": encode_hex(wrap_tag),
        "mk_version": target_version,
    })
