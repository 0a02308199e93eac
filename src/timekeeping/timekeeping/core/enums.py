from __future__ import annotations

from enum import Enum


class FindingKind(str, Enum):
    """Findings produced while walking the hash chain."""

    GAP_DETECTED = "gap_detected"
    HASH_MISMATCH = "hash_mismatch"


class ErrorReason(str, Enum):
    """Per-entry materialization failures. None of them abort the batch."""

    HASH_VERIFICATION_FAILED = "hash_verification_failed"
    CANNOT_RESOLVE_EMPLOYEE = "cannot_resolve_employee"
    MISSING_SCAN_TIMESTAMP = "missing_scan_timestamp"
    CREATION_FAILED = "creation_failed"

    @property
    def is_permanent(self) -> bool:
        # The ledger row is immutable, so retrying cannot change the outcome.
        return self in (ErrorReason.HASH_VERIFICATION_FAILED, ErrorReason.MISSING_SCAN_TIMESTAMP)


class GapPolicy(str, Enum):
    """Whether sequence gaps make a chain report invalid."""

    INFORMATIONAL = "informational"
    STRICT = "strict"


class DuplicatePolicy(str, Enum):
    """What happens to window duplicates once they are classified."""

    MARK_PROCESSED = "mark_processed"
    RETAIN_FOR_AUDIT = "retain_for_audit"
