from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from ..common.validators import require_positive
from ..core.constants import DEFAULT_AUDIT_LIMIT, DEFAULT_BATCH_LIMIT, STALE_UNPROCESSED_AFTER
from ..core.enums import DuplicatePolicy
from ..ledger.model import ChainValidationReport
from ..ledger.repository import LedgerRepository
from ..ledger.validator import HashChainValidator, resolve_anchor_hashes
from .deduplicator import Deduplicator, window_context
from .model import LedgerHealthReport

logger = logging.getLogger(__name__)


class LedgerHealthService:
    """Read-only views of the ledger for operational dashboards."""

    def __init__(
        self,
        ledger: LedgerRepository,
        validator: HashChainValidator,
        deduplicator: Deduplicator,
        *,
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.MARK_PROCESSED,
        stale_after: timedelta = STALE_UNPROCESSED_AFTER,
        window_limit: int = DEFAULT_BATCH_LIMIT,
    ):
        self._ledger = ledger
        self._validator = validator
        self._deduplicator = deduplicator
        self._duplicate_policy = DuplicatePolicy(duplicate_policy)
        self._stale_after = stale_after
        self._window_limit = require_positive(window_limit, "window_limit")

    def report(self, *, now: datetime) -> LedgerHealthReport:
        stats = self._ledger.get_stats(now=now, stale_after=self._stale_after)
        total_unprocessed = stats.total_unprocessed
        stale = stats.stale_unprocessed

        if self._duplicate_policy == DuplicatePolicy.RETAIN_FOR_AUDIT and total_unprocessed:
            # Retained duplicates are unprocessed on purpose; counting them would raise false alarms.
            retained, retained_stale = self._retained_duplicates(now=now)
            total_unprocessed = max(0, total_unprocessed - retained)
            stale = max(0, stale - retained_stale)

        last = stats.last_entry
        lag: Optional[int] = None
        if last is not None and last.created_at is not None:
            lag = int((now - last.created_at).total_seconds())

        return LedgerHealthReport(
            total_unprocessed=total_unprocessed,
            last_sequence_id=last.sequence_id if last else None,
            last_scan_timestamp=last.scan_timestamp if last else None,
            processing_lag_seconds=lag,
            stale_unprocessed_entries=stale,
        )

    def _retained_duplicates(self, *, now: datetime) -> tuple[int, int]:
        entries = self._ledger.fetch_unprocessed(self._window_limit)
        context = window_context(self._ledger, entries)
        flagged = self._deduplicator.flag_window_duplicates(entries, context=context)
        duplicates = [a.entry for a in flagged if a.is_deduplicated]
        cutoff = now - self._stale_after
        stale = sum(1 for e in duplicates if e.created_at is not None and e.created_at < cutoff)
        return len(duplicates), stale

    def verify_processed_chain(
        self,
        *,
        from_sequence_id: Optional[int] = None,
        limit: int = DEFAULT_AUDIT_LIMIT,
    ) -> ChainValidationReport:
        """Re-walk the chain over already consumed entries (the audit view)."""

        entries = self._ledger.fetch_processed(from_sequence_id=from_sequence_id, limit=require_positive(limit, "limit"))
        if not entries:
            return ChainValidationReport.empty()

        report = self._validator.validate(entries, anchors=resolve_anchor_hashes(self._ledger, entries))
        if not report.valid:
            logger.warning("processed ledger chain invalid, first mismatch at %s", report.failed_at_sequence_id)
        return report

    def is_chain_valid(self, *, from_sequence_id: Optional[int] = None, limit: int = DEFAULT_AUDIT_LIMIT) -> bool:
        return self.verify_processed_chain(from_sequence_id=from_sequence_id, limit=limit).valid
