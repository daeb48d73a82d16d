"""Master Key Registry - Key Rotation Support.

Holds versioned AES-256 master keys. New encryptions always use the highest
version; decryption looks up whatever version the record was wrapped under.
Removing a version from the configuration retires it: records wrapped under
it can no longer be decrypted.

Configuration names:
    MASTER_KEY_V1=<64 hex chars>
    MASTER_KEY_V2=<64 hex chars>   (optional, for rotation)
    MASTER_KEY=<64 hex chars>      (legacy, treated as V1 only when no
                                    versioned key is configured)
"""
import logging
import re
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from txvault.domain.envelope.codec import KEY_BYTES, decode_hex
from txvault.errors import LengthMismatch, NoKeysConfigured, UnknownKeyVersion

logger = logging.getLogger(__name__)

LEGACY_KEY_NAME = "MASTER_KEY"
VERSIONED_KEY_PREFIX = "MASTER_KEY_V"
# Positive integer without leading zeros, so V01 can never shadow V1.
VERSIONED_KEY_PATTERN = re.compile(r"^MASTER_KEY_V([1-9][0-9]*)$")


class MasterKeyRegistry:
    """Immutable mapping of version number to 32-byte master key.

    Rotating keys means building a new registry; an existing instance is
    never mutated, so concurrent readers always see a complete key set.
    """

    __slots__ = ("_keys",)

    def __init__(self, keys: Mapping[int, bytes]):
        validated: Dict[int, bytes] = {}
        for version, key in keys.items():
            if isinstance(version, bool) or not isinstance(version, int) or version < 1:
                raise ValueError(f"Master key version must be a positive integer. Got {version!r}")
            if len(key) != KEY_BYTES:
                raise LengthMismatch(f"{VERSIONED_KEY_PREFIX}{version}", KEY_BYTES, len(key))
            validated[version] = bytes(key)

        if not validated:
            raise NoKeysConfigured()

        object.__setattr__(self, "_keys", MappingProxyType(validated))

    def __setattr__(self, name, value):
        raise AttributeError("MasterKeyRegistry is immutable")

    def __repr__(self) -> str:
        return f"MasterKeyRegistry(versions={self.versions}, latest={self.latest_version})"

    def __contains__(self, version: object) -> bool:
        return version in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    @classmethod
    def from_config(cls, config: Mapping[str, Optional[str]]) -> "MasterKeyRegistry":
        """Build a registry from a flat name -> hex string mapping.

        Scans ``MASTER_KEY_V<n>`` entries and validates each as a 32-byte key.
        Falls back to ``MASTER_KEY`` as version 1 only when no versioned key
        is present; the two sources are never merged.

        Raises:
            NoKeysConfigured: nothing usable in ``config``.
            MalformedEncoding / LengthMismatch: a key is not 64 hex chars.
        """
        keys: Dict[int, bytes] = {}

        for name, value in config.items():
            match = VERSIONED_KEY_PATTERN.match(name)
            if not match:
                if name.startswith(VERSIONED_KEY_PREFIX):
                    logger.warning(f"Ignoring unrecognized master key name: {name}")
                continue
            if not value:
                logger.debug(f"Skipping empty master key entry: {name}")
                continue
            version = int(match.group(1))
            keys[version] = decode_hex(value, KEY_BYTES, label=name)
            logger.debug(f"Loaded master key version {version}")

        legacy = config.get(LEGACY_KEY_NAME)
        if not keys and legacy:
            keys[1] = decode_hex(legacy, KEY_BYTES, label=LEGACY_KEY_NAME)
            logger.info(f"Loaded legacy {LEGACY_KEY_NAME} as version 1")
        elif keys and legacy:
            logger.info(f"Versioned master keys present; ignoring legacy {LEGACY_KEY_NAME}")

        return cls(keys)

    @property
    def versions(self) -> List[int]:
        return sorted(self._keys)

    @property
    def latest_version(self) -> int:
        """Highest available version; new encryptions always use it."""
        return max(self._keys)

    def get(self, version: int) -> bytes:
        """Return the key for ``version``.

        Raises:
            UnknownKeyVersion: the version is not (or no longer) configured.
        """
        key = self._keys.get(version)
        if key is None:
            raise UnknownKeyVersion(version, self.versions)
        return key


def build_registry(config: Mapping[str, Optional[str]]) -> MasterKeyRegistry:
    return MasterKeyRegistry.from_config(config)


def latest_version(registry: MasterKeyRegistry) -> int:
    return registry.latest_version


def get_key(registry: MasterKeyRegistry, version: int) -> bytes:
    return registry.get(version)
