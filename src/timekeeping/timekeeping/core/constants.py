"""Constants and defaults.

Note: Keep constants here to avoid magic numbers spread across code.
"""

from datetime import timedelta

DEDUPLICATION_WINDOW = timedelta(seconds=15)
DEFAULT_BATCH_LIMIT = 1000
DEFAULT_AUDIT_LIMIT = 1000
STALE_UNPROCESSED_AFTER = timedelta(minutes=5)

LEDGER_EVENT_SOURCE = "edge_machine"
DEFAULT_LOCK_NAME = "timekeeping.ledger_ingestion"
DEFAULT_LOCK_TIMEOUT_SECONDS = 0
