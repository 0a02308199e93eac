from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Sequence

from ..attendance.repository import AttendanceEventRepository
from ..core.constants import DEDUPLICATION_WINDOW
from ..ledger.model import LedgerEntry
from ..ledger.repository import LedgerRepository
from .model import AnnotatedEntry, DeduplicationStats

logger = logging.getLogger(__name__)


class Deduplicator:
    """Flag repeat taps and entries that were already turned into events.

    Two independent checks:

    - window duplicates: same ``(employee_rfid, device_id, event_type)`` within
      15 seconds (inclusive) of the last *unflagged* tap for that key. A
      duplicate never moves the window, so a burst of bounces all collapse
      onto the first tap.
    - already materialized: an AttendanceEvent exists for the sequence id.
      This is what keeps recovery after a crash between creating the event
      and marking the ledger row from creating a second event.

    Nothing is dropped; every input entry comes back annotated.
    """

    def __init__(self, events: AttendanceEventRepository):
        self._events = events

    def flag_window_duplicates(
        self,
        entries: Sequence[LedgerEntry],
        *,
        context: Sequence[LedgerEntry] = (),
    ) -> list[AnnotatedEntry]:
        """Flag repeat taps in ``entries``.

        ``context`` holds already processed taps that take part in the window
        walk but are not returned (see ``window_context``).
        """

        batch_ids = {e.sequence_id for e in entries}
        walk = list(entries)
        if context:
            walk = sorted(walk + [c for c in context if c.sequence_id not in batch_ids], key=lambda e: e.sequence_id)

        last_seen: dict[tuple[str, str, str], datetime] = {}
        out: list[AnnotatedEntry] = []

        for entry in walk:
            ts = entry.scan_timestamp
            in_batch = entry.sequence_id in batch_ids
            if ts is None:
                if in_batch:
                    out.append(AnnotatedEntry(entry=entry))
                continue

            prior = last_seen.get(entry.dedup_key)
            if prior is not None and abs(ts - prior) <= DEDUPLICATION_WINDOW:
                if in_batch:
                    out.append(AnnotatedEntry(entry=entry, is_deduplicated=True))
                continue

            last_seen[entry.dedup_key] = ts
            if in_batch:
                out.append(AnnotatedEntry(entry=entry))

        return out

    def flag_already_materialized(self, annotated: Sequence[AnnotatedEntry]) -> list[AnnotatedEntry]:
        if not annotated:
            return []

        existing = self._events.find_ids_by_ledger_sequences([a.sequence_id for a in annotated])
        if not existing:
            return list(annotated)

        return [
            replace(a, is_already_processed=True, existing_event_id=int(existing[a.sequence_id]))
            if a.sequence_id in existing
            else a
            for a in annotated
        ]

    def annotate(
        self,
        entries: Sequence[LedgerEntry],
        *,
        context: Sequence[LedgerEntry] = (),
    ) -> list[AnnotatedEntry]:
        annotated = self.flag_already_materialized(self.flag_window_duplicates(entries, context=context))
        stats = self.stats(annotated)
        logger.debug(
            "dedup: total=%d duplicates=%d already_processed=%d unique=%d",
            stats.total,
            stats.duplicates,
            stats.already_processed,
            stats.unique,
        )
        return annotated

    @staticmethod
    def stats(annotated: Sequence[AnnotatedEntry]) -> DeduplicationStats:
        duplicates = sum(1 for a in annotated if a.is_deduplicated)
        already_processed = sum(1 for a in annotated if a.is_already_processed)
        return DeduplicationStats(
            total=len(annotated),
            duplicates=duplicates,
            unique=len(annotated) - duplicates - already_processed,
            already_processed=already_processed,
        )


def window_context(ledger: LedgerRepository, entries: Sequence[LedgerEntry]) -> Sequence[LedgerEntry]:
    """Processed taps that can still open a dedup window over ``entries``.

    Only needed when duplicates are left unprocessed: by the next poll the tap
    they repeat has been consumed and is no longer part of the batch.
    """

    timed = [e for e in entries if e.scan_timestamp is not None]
    if not timed:
        return []

    since = min(e.scan_timestamp for e in timed) - DEDUPLICATION_WINDOW
    until = max(e.scan_timestamp for e in timed) + DEDUPLICATION_WINDOW
    return ledger.fetch_processed_taps({e.dedup_key for e in timed}, since=since, until=until)
