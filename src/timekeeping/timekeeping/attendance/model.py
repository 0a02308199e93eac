from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional


@dataclass(frozen=True)
class NewAttendanceEvent:
    """Attendance event about to be inserted (no id yet)."""

    employee_id: int
    event_date: date
    event_time: datetime
    event_type: str
    ledger_sequence_id: int
    is_deduplicated: bool
    ledger_hash_verified: bool
    source: str
    device_id: Optional[str]
    notes: Optional[str] = None


@dataclass(frozen=True)
class AttendanceEvent:
    """Canonical attendance record derived from exactly one ledger entry.

    ``ledger_sequence_id`` is the idempotency key: at most one event exists per
    ledger entry. Ingestion creates these and never updates or deletes them.
    """

    event_id: int
    employee_id: int
    event_date: date
    event_time: datetime
    event_type: str
    ledger_sequence_id: int
    is_deduplicated: bool
    ledger_hash_verified: bool
    source: str
    device_id: Optional[str]
    notes: Optional[str] = None

    @classmethod
    def from_new(cls, event_id: int, new: NewAttendanceEvent) -> "AttendanceEvent":
        return cls(
            event_id=int(event_id),
            employee_id=new.employee_id,
            event_date=new.event_date,
            event_time=new.event_time,
            event_type=new.event_type,
            ledger_sequence_id=new.ledger_sequence_id,
            is_deduplicated=new.is_deduplicated,
            ledger_hash_verified=new.ledger_hash_verified,
            source=new.source,
            device_id=new.device_id,
            notes=new.notes,
        )
