from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from .repository import LedgerRepository

logger = logging.getLogger(__name__)


class ProcessedMarker:
    """Commit the terminal "consumed" state back to the ledger."""

    def __init__(self, ledger: LedgerRepository):
        self._ledger = ledger

    def mark(self, sequence_ids: Iterable[int], *, at: datetime) -> int:
        ids = sorted({int(s) for s in sequence_ids})
        if not ids:
            return 0

        marked = self._ledger.mark_processed(ids, at)
        logger.debug("marked %d/%d ledger entries processed", marked, len(ids))
        return marked
