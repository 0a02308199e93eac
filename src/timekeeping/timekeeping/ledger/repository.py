from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Optional, Protocol, Sequence

from .model import LedgerEntry, LedgerStats


class LedgerRepository(Protocol):
    """Storage contract for the append-only RFID ledger.

    Note (DIP): ingestion services depend on this interface, never on MySQL.
    Every fetch returns entries ordered by ``sequence_id`` ascending.
    """

    def fetch_unprocessed(self, limit: int) -> Sequence[LedgerEntry]:
        raise NotImplementedError

    def fetch_from_sequence(self, min_sequence_id: int, limit: int) -> Sequence[LedgerEntry]:
        """Unprocessed entries with ``sequence_id >= min_sequence_id`` (recovery/backfill)."""

        raise NotImplementedError

    def find_predecessor(self, sequence_id: int) -> Optional[LedgerEntry]:
        """Entry with the highest ``sequence_id`` below the given one, processed or not."""

        raise NotImplementedError

    def fetch_processed(self, *, from_sequence_id: Optional[int] = None, limit: int) -> Sequence[LedgerEntry]:
        """Processed entries from ``from_sequence_id``, or the most recent ``limit`` of them."""

        raise NotImplementedError

    def fetch_processed_taps(
        self,
        keys: Iterable[tuple[str, str, str]],
        *,
        since: datetime,
        until: datetime,
    ) -> Sequence[LedgerEntry]:
        """Processed entries for the given dedup keys scanned within ``[since, until]``."""

        raise NotImplementedError

    def mark_processed(self, sequence_ids: Sequence[int], at: datetime) -> int:
        """Idempotent bulk update; returns the number of rows matched."""

        raise NotImplementedError

    def get_stats(self, *, now: datetime, stale_after: timedelta) -> LedgerStats:
        raise NotImplementedError
