from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Sequence

from ..core.constants import LEDGER_EVENT_SOURCE
from ..core.enums import ErrorReason
from ..core.exceptions import PersistenceError, StoreUnavailableError
from ..employees.repository import EmployeeDirectory
from ..ingestion.model import AnnotatedEntry, IngestionError, MaterializationResult
from .model import AttendanceEvent, NewAttendanceEvent
from .repository import AttendanceEventRepository

logger = logging.getLogger(__name__)


class EventMaterializer:
    """Turn validated, non-duplicate ledger entries into attendance events.

    Each entry fails on its own: the failure is recorded and the loop moves on.
    Only ``StoreUnavailableError`` escapes, because it means the whole cycle
    has to be retried.
    """

    def __init__(
        self,
        events: AttendanceEventRepository,
        directory: EmployeeDirectory,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._events = events
        self._directory = directory
        self._clock = clock

    def materialize(
        self,
        candidates: Sequence[AnnotatedEntry],
        *,
        validate_hash_chain: bool = True,
        deadline: Optional[float] = None,
    ) -> MaterializationResult:
        """Create one AttendanceEvent per candidate.

        ``deadline`` is a value of the materializer's clock; once it has passed,
        no further entry is started and the rest are returned as skipped.
        """

        errors: list[IngestionError] = []
        created: list[AttendanceEvent] = []
        skipped: list[int] = []

        pending = [c for c in candidates if c.is_candidate]
        for index, item in enumerate(pending):
            if deadline is not None and self._clock() >= deadline:
                skipped = [c.sequence_id for c in pending[index:]]
                logger.warning("time budget exhausted, leaving %d entries for the next cycle", len(skipped))
                break

            error = self._materialize_one(item, validate_hash_chain=validate_hash_chain, created=created)
            if error is not None:
                logger.warning(
                    "ledger sequence %s not materialized: %s%s",
                    error.sequence_id,
                    error.reason.value,
                    f" ({error.error})" if error.error else "",
                )
                errors.append(error)

        return MaterializationResult(
            created=len(created),
            failed=len(errors),
            errors=tuple(errors),
            events=tuple(created),
            skipped_sequence_ids=tuple(skipped),
        )

    def _materialize_one(
        self,
        item: AnnotatedEntry,
        *,
        validate_hash_chain: bool,
        created: list[AttendanceEvent],
    ) -> Optional[IngestionError]:
        entry = item.entry

        if validate_hash_chain and not item.hash_verified:
            return IngestionError(entry.sequence_id, ErrorReason.HASH_VERIFICATION_FAILED)

        try:
            employee_id = self._directory.resolve(entry.employee_rfid)
        except PersistenceError as exc:
            return IngestionError(entry.sequence_id, ErrorReason.CANNOT_RESOLVE_EMPLOYEE, str(exc))
        if employee_id is None:
            return IngestionError(entry.sequence_id, ErrorReason.CANNOT_RESOLVE_EMPLOYEE)

        if entry.scan_timestamp is None:
            return IngestionError(entry.sequence_id, ErrorReason.MISSING_SCAN_TIMESTAMP)

        new_event = NewAttendanceEvent(
            employee_id=int(employee_id),
            event_date=entry.scan_timestamp.date(),
            event_time=entry.scan_timestamp,
            event_type=entry.event_type,
            ledger_sequence_id=entry.sequence_id,
            is_deduplicated=item.is_deduplicated,
            ledger_hash_verified=item.hash_verified,
            source=LEDGER_EVENT_SOURCE,
            device_id=entry.device_id,
            notes=f"Ledger sequence #{entry.sequence_id}",
        )

        try:
            created.append(self._events.create(new_event))
        except StoreUnavailableError:
            raise
        except Exception as exc:
            return IngestionError(entry.sequence_id, ErrorReason.CREATION_FAILED, str(exc))
        return None
