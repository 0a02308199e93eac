from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional, Union

from ..core.enums import FindingKind

RawPayload = Union[str, Mapping[str, Any]]


@dataclass(frozen=True)
class LedgerEntry:
    """One immutable, sequence-numbered RFID tap as written by an edge device.

    Only ``processed``/``processed_at`` ever change after insertion, and only
    through the ledger repository.
    """

    sequence_id: int
    employee_rfid: str
    device_id: str
    event_type: str
    scan_timestamp: Optional[datetime]
    raw_payload: RawPayload
    hash_chain: str
    hash_previous: Optional[str] = None
    processed: bool = False
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def dedup_key(self) -> tuple[str, str, str]:
        return (self.employee_rfid, self.device_id, self.event_type)


@dataclass(frozen=True)
class LedgerStats:
    """Raw counts behind the ledger health report."""

    total_unprocessed: int
    stale_unprocessed: int
    last_entry: Optional[LedgerEntry]


@dataclass(frozen=True)
class ChainFinding:
    sequence_id: int
    kind: FindingKind
    details: str

    def as_dict(self) -> dict:
        return {"sequence_id": self.sequence_id, "reason": self.kind.value, "details": self.details}


@dataclass(frozen=True)
class ChainValidationReport:
    valid: bool
    total_validated: int
    invalid_hashes: int
    sequence_gaps: int
    failed_at_sequence_id: Optional[int]
    findings: tuple[ChainFinding, ...] = ()
    verified_sequence_ids: frozenset[int] = frozenset()

    @classmethod
    def empty(cls) -> "ChainValidationReport":
        return cls(
            valid=True,
            total_validated=0,
            invalid_hashes=0,
            sequence_gaps=0,
            failed_at_sequence_id=None,
        )

    def as_dict(self) -> dict:
        return {
            "valid": self.valid,
            "total_validated": self.total_validated,
            "invalid_hashes": self.invalid_hashes,
            "sequence_gaps": self.sequence_gaps,
            "failed_at_sequence_id": self.failed_at_sequence_id,
            "findings": [f.as_dict() for f in self.findings],
        }
