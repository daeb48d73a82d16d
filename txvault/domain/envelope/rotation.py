"""Master Key Rotation Service.

Re-wraps record DEKs under the latest master key so an old version can be
retired from the registry. Payload ciphertext is never touched.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from txvault.domain.envelope.engine import rewrap
from txvault.domain.envelope.models import SecureRecord
from txvault.domain.envelope.registry import MasterKeyRegistry
from txvault.errors import EnvelopeError

logger = logging.getLogger(__name__)


@dataclass
class RotationResult:
    rotated: int = 0
    skipped: int = 0
    failed: int = 0
    records: List[SecureRecord] = field(default_factory=list)

    @property
    def scanned(self) -> int:
        return self.rotated + self.skipped + self.failed


class RotationService:
    """Service for re-wrapping records onto the current master key version."""

    def __init__(self, registry: MasterKeyRegistry):
        self.registry = registry

    @property
    def current_version(self) -> int:
        return self.registry.latest_version

    def rotate_batch(self, records: Iterable[SecureRecord]) -> RotationResult:
        """
        Re-wraps a batch of records to the latest master key version.

        Records already on the latest version are skipped. Records that fail
        (malformed, retired version, tampered) are passed through unchanged
        and counted as failed; one bad record never aborts the batch.

        Returns:
            RotationResult with counts and the output records in input order.
        """
        result = RotationResult()
        current = self.current_version

        for record in records:
            if record.mk_version == current:
                result.skipped += 1
                result.records.append(record)
                continue

            try:
                rotated = rewrap(self.registry, record)
            except EnvelopeError as e:
                result.failed += 1
                result.records.append(record)
                logger.warning(f"Failed to rotate record {record.id}: {e.code}")
                continue

            result.rotated += 1
            result.records.append(rotated)
            logger.debug(f"Rotated record {record.id} (v{record.mk_version} -> v{current})")

        logger.info(
            f"Rotation batch complete: rotated={result.rotated} skipped={result.skipped} "
            f"failed={result.failed} target_version={current}"
        )
        return result

    @staticmethod
    def stale_counts(records: Iterable[SecureRecord]) -> Dict[int, int]:
        """Return counts of records per master key version."""
        return dict(sorted(Counter(r.mk_version for r in records).items()))
