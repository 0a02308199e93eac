from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional

from ..attendance.model import AttendanceEvent
from ..common.datetime_utils import isoformat_or_none
from ..core.enums import ErrorReason
from ..ledger.model import ChainFinding, ChainValidationReport, LedgerEntry


@dataclass(frozen=True)
class AnnotatedEntry:
    """A ledger entry plus the flags each ingestion stage attached to it.

    Stages return new instances (``dataclasses.replace``) instead of mutating
    the entry, so the ledger row itself stays exactly as read.
    """

    entry: LedgerEntry
    is_deduplicated: bool = False
    is_already_processed: bool = False
    existing_event_id: Optional[int] = None
    hash_verified: bool = False

    @property
    def sequence_id(self) -> int:
        return self.entry.sequence_id

    @property
    def is_candidate(self) -> bool:
        return not self.is_deduplicated and not self.is_already_processed


@dataclass(frozen=True)
class IngestionError:
    sequence_id: int
    reason: ErrorReason
    error: Optional[str] = None

    def as_dict(self) -> dict:
        out: dict[str, Any] = {"sequence_id": self.sequence_id, "reason": self.reason.value}
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass(frozen=True)
class DeduplicationStats:
    total: int
    duplicates: int
    unique: int
    already_processed: int


@dataclass(frozen=True)
class MaterializationResult:
    created: int
    failed: int
    errors: tuple[IngestionError, ...] = ()
    events: tuple[AttendanceEvent, ...] = ()
    skipped_sequence_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class IngestionReport:
    """Everything one poll cycle did, aggregated across stages."""

    started_at: datetime
    polled: int
    duplicates: int
    already_processed: int
    candidates: int
    validation: ChainValidationReport
    created: int
    failed: int
    skipped: int
    marked_processed: int
    errors: tuple[IngestionError, ...] = ()
    created_event_ids: tuple[int, ...] = field(default_factory=tuple)

    @property
    def findings(self) -> tuple[ChainFinding, ...]:
        return self.validation.findings

    def as_dict(self) -> dict:
        return {
            "started_at": isoformat_or_none(self.started_at),
            "polled": self.polled,
            "duplicates": self.duplicates,
            "already_processed": self.already_processed,
            "candidates": self.candidates,
            "validated": self.validation.total_validated,
            "valid_hashes": self.validation.total_validated - self.validation.invalid_hashes,
            "created_attendance_events": self.created,
            "failed": self.failed,
            "skipped": self.skipped,
            "marked_processed": self.marked_processed,
            "hash_validation": self.validation.as_dict(),
            "errors": [f.as_dict() for f in self.findings] + [e.as_dict() for e in self.errors],
        }


@dataclass(frozen=True)
class LedgerHealthReport:
    total_unprocessed: int
    last_sequence_id: Optional[int]
    last_scan_timestamp: Optional[datetime]
    processing_lag_seconds: Optional[int]
    stale_unprocessed_entries: int

    def as_dict(self) -> dict:
        out = asdict(self)
        out["last_scan_timestamp"] = isoformat_or_none(self.last_scan_timestamp)
        return out
