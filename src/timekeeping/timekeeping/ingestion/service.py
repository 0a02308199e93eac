from __future__ import annotations

import logging
import time
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional, Sequence

from ..attendance.materializer import EventMaterializer
from ..common.validators import require_positive
from ..core.constants import DEFAULT_BATCH_LIMIT
from ..core.enums import DuplicatePolicy
from ..ledger.marker import ProcessedMarker
from ..ledger.model import ChainValidationReport, LedgerEntry
from ..ledger.repository import LedgerRepository
from ..ledger.validator import HashChainValidator, resolve_anchor_hashes
from .deduplicator import Deduplicator, window_context
from .lock import CycleLock, InProcessCycleLock
from .model import AnnotatedEntry, IngestionReport, MaterializationResult

logger = logging.getLogger(__name__)


class IngestionOrchestrator:
    """Drive one poll cycle: fetch -> dedupe -> validate -> materialize -> mark.

    Per entry: ``Unprocessed`` becomes ``Duplicate``, ``Stale`` (already
    materialized) or a ``Candidate``; a candidate ends ``Materialized`` or
    ``MaterializationFailed``. Materialized and stale entries are always marked
    processed. Duplicates follow ``duplicate_policy``; failed entries stay
    unprocessed for the next poll unless the failure is permanent and
    ``mark_permanent_failures`` is set.

    The whole cycle runs under ``lock``: concurrent cycles could both see the
    same entry as a fresh candidate and create two events for it.
    """

    def __init__(
        self,
        ledger: LedgerRepository,
        deduplicator: Deduplicator,
        validator: HashChainValidator,
        materializer: EventMaterializer,
        marker: ProcessedMarker,
        *,
        lock: Optional[CycleLock] = None,
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.MARK_PROCESSED,
        mark_permanent_failures: bool = True,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        validate_hash_chain: bool = True,
        time_budget_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ledger = ledger
        self._deduplicator = deduplicator
        self._validator = validator
        self._materializer = materializer
        self._marker = marker
        self._lock = lock or InProcessCycleLock()
        self._duplicate_policy = DuplicatePolicy(duplicate_policy)
        self._mark_permanent_failures = bool(mark_permanent_failures)
        self._batch_limit = require_positive(batch_limit, "batch_limit")
        self._validate_hash_chain = bool(validate_hash_chain)
        self._time_budget_seconds = time_budget_seconds
        self._clock = clock

    @property
    def duplicate_policy(self) -> DuplicatePolicy:
        return self._duplicate_policy

    def run_cycle(
        self,
        *,
        now: datetime,
        batch_limit: Optional[int] = None,
        validate_hash_chain: Optional[bool] = None,
        from_sequence_id: Optional[int] = None,
    ) -> IngestionReport:
        """Run one bounded cycle and report what happened.

        ``now`` stamps ``processed_at``. ``from_sequence_id`` switches the fetch
        to recovery mode (unprocessed entries from that sequence on).
        Store failures propagate; per-entry failures are only reported.
        """

        limit = require_positive(batch_limit if batch_limit is not None else self._batch_limit, "batch_limit")
        validate = self._validate_hash_chain if validate_hash_chain is None else bool(validate_hash_chain)

        with self._lock.hold():
            entries, annotated = self._fetch_batch(limit=limit, from_sequence_id=from_sequence_id)
            if not entries:
                logger.debug("ledger poll: nothing to ingest")
                return self._empty_report(now)

            validation = self._validator.validate(entries, anchors=resolve_anchor_hashes(self._ledger, entries))
            annotated = [
                replace(a, hash_verified=a.sequence_id in validation.verified_sequence_ids) for a in annotated
            ]

            candidates = [a for a in annotated if a.is_candidate]
            deadline = self._clock() + self._time_budget_seconds if self._time_budget_seconds else None
            result = self._materializer.materialize(candidates, validate_hash_chain=validate, deadline=deadline)

            marked = self._marker.mark(self._sequences_to_mark(annotated, result), at=now)

        report = IngestionReport(
            started_at=now,
            polled=len(annotated),
            duplicates=sum(1 for a in annotated if a.is_deduplicated),
            already_processed=sum(1 for a in annotated if a.is_already_processed),
            candidates=len(candidates),
            validation=validation,
            created=result.created,
            failed=result.failed,
            skipped=len(result.skipped_sequence_ids),
            marked_processed=marked,
            errors=result.errors,
            created_event_ids=tuple(e.event_id for e in result.events),
        )
        logger.info(
            "ledger poll: polled=%d duplicates=%d stale=%d created=%d failed=%d skipped=%d marked=%d chain_valid=%s",
            report.polled,
            report.duplicates,
            report.already_processed,
            report.created,
            report.failed,
            report.skipped,
            report.marked_processed,
            validation.valid,
        )
        return report

    def _fetch(self, *, limit: int, from_sequence_id: Optional[int]) -> Sequence[LedgerEntry]:
        if from_sequence_id is not None:
            return self._ledger.fetch_from_sequence(int(from_sequence_id), limit)
        return self._ledger.fetch_unprocessed(limit)

    def _annotate(self, entries: Sequence[LedgerEntry]) -> list[AnnotatedEntry]:
        context: Sequence[LedgerEntry] = ()
        if self._duplicate_policy == DuplicatePolicy.RETAIN_FOR_AUDIT:
            # Retained duplicates come back without the tap they repeat.
            context = window_context(self._ledger, entries)
        return self._deduplicator.annotate(entries, context=context)

    def _fetch_batch(
        self,
        *,
        limit: int,
        from_sequence_id: Optional[int],
    ) -> tuple[Sequence[LedgerEntry], list[AnnotatedEntry]]:
        """Fetch and annotate the batch for this cycle.

        Retained duplicates stay at the head of the unprocessed queue; a full
        page holding nothing but them is skipped so new taps behind it still
        get ingested.
        """

        entries = self._fetch(limit=limit, from_sequence_id=from_sequence_id)
        annotated = self._annotate(entries)
        while (
            self._duplicate_policy == DuplicatePolicy.RETAIN_FOR_AUDIT
            and len(entries) >= limit
            and all(a.is_deduplicated for a in annotated)
        ):
            logger.debug("skipping %d retained duplicates up to sequence %d", len(entries), entries[-1].sequence_id)
            entries = self._ledger.fetch_from_sequence(entries[-1].sequence_id + 1, limit)
            annotated = self._annotate(entries)
        return entries, annotated

    def _sequences_to_mark(self, annotated: Sequence[AnnotatedEntry], result: MaterializationResult) -> list[int]:
        to_mark = [e.ledger_sequence_id for e in result.events]
        for a in annotated:
            if a.is_already_processed:
                to_mark.append(a.sequence_id)
            elif a.is_deduplicated and self._duplicate_policy == DuplicatePolicy.MARK_PROCESSED:
                to_mark.append(a.sequence_id)

        if self._mark_permanent_failures:
            to_mark.extend(e.sequence_id for e in result.errors if e.reason.is_permanent)
        return to_mark

    @staticmethod
    def _empty_report(now: datetime) -> IngestionReport:
        return IngestionReport(
            started_at=now,
            polled=0,
            duplicates=0,
            already_processed=0,
            candidates=0,
            validation=ChainValidationReport.empty(),
            created=0,
            failed=0,
            skipped=0,
            marked_processed=0,
        )
