"""Envelope Domain Models."""
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from txvault.errors import MalformedEncoding

ALGORITHM_AES_256_GCM = "AES-256-GCM"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class SecureRecord(BaseModel):
    """
    Envelope-encrypted record (wire/storage format).

    All binary fields are lowercase hex strings. Field names on the wire are
    fixed; ``partyId`` and ``createdAt`` keep their camelCase aliases.
    Hex encoding and byte lengths are checked by the engine before decryption,
    not here, so a tampered record can still be loaded and rejected with a
    precise error.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    party_id: str = Field(..., alias="partyId")
    created_at: str = Field(default_factory=utc_timestamp, alias="createdAt")

    # Layer 1: payload under the DEK
    payload_nonce: str   # 24 hex char (12 bytes)
    payload_ct: str      # Hex
    payload_tag: str     # 32 hex char (16 bytes)

    # Layer 2: DEK under the master key
    dek_wrap_nonce: str  # 24 hex char (12 bytes)
    dek_wrapped: str     # 64 hex char (32 bytes)
    dek_wrap_tag: str    # 32 hex char (16 bytes)

    alg: str = ALGORITHM_AES_256_GCM
    mk_version: int = Field(..., ge=1)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "SecureRecord":
        """Parse a wire-format dict, reporting structural problems as MalformedEncoding."""
        try:
            return SecureRecord.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first["loc"]) or "record"
            raise MalformedEncoding(field, f"invalid record structure ({first['msg']})") from e


class DecryptResult(BaseModel):
    """Result of a successful decryption."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    party_id: str = Field(..., alias="partyId")
    payload: Any

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
