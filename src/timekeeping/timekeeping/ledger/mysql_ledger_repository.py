from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Optional, Sequence

from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone, in_clause, normalize_mysql_text
from .model import LedgerEntry, LedgerStats
from .repository import LedgerRepository

_COLUMNS = """
    sequence_id, employee_rfid, device_id, event_type, scan_timestamp,
    raw_payload, hash_previous, hash_chain, processed, processed_at, created_at
"""


def _to_entry(r: Dict[str, Any]) -> LedgerEntry:
    return LedgerEntry(
        sequence_id=int(r["sequence_id"]),
        employee_rfid=str(r["employee_rfid"]),
        device_id=str(r["device_id"]),
        event_type=str(r["event_type"]),
        scan_timestamp=r.get("scan_timestamp"),
        raw_payload=normalize_mysql_text(r["raw_payload"]) or "",
        hash_chain=str(r["hash_chain"]),
        hash_previous=r.get("hash_previous") or None,
        processed=bool(r.get("processed")),
        processed_at=r.get("processed_at"),
        created_at=r.get("created_at"),
    )


class MySQLLedgerRepository(LedgerRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def fetch_unprocessed(self, limit: int) -> Sequence[LedgerEntry]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_COLUMNS}
                FROM rfid_ledger
                WHERE processed=0
                ORDER BY sequence_id ASC
                LIMIT %s
                """,
                (int(limit),),
            )
            return [_to_entry(r) for r in fetchall(cur)]

    def fetch_from_sequence(self, min_sequence_id: int, limit: int) -> Sequence[LedgerEntry]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_COLUMNS}
                FROM rfid_ledger
                WHERE processed=0 AND sequence_id >= %s
                ORDER BY sequence_id ASC
                LIMIT %s
                """,
                (int(min_sequence_id), int(limit)),
            )
            return [_to_entry(r) for r in fetchall(cur)]

    def find_predecessor(self, sequence_id: int) -> Optional[LedgerEntry]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_COLUMNS} FROM rfid_ledger WHERE sequence_id < %s ORDER BY sequence_id DESC LIMIT 1",
                (int(sequence_id),),
            )
            r = fetchone(cur)
            return _to_entry(r) if r else None

    def fetch_processed(self, *, from_sequence_id: Optional[int] = None, limit: int) -> Sequence[LedgerEntry]:
        with db_cursor(self._conn_factory) as (_, cur):
            if from_sequence_id is not None:
                cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM rfid_ledger
                    WHERE processed=1 AND sequence_id >= %s
                    ORDER BY sequence_id ASC
                    LIMIT %s
                    """,
                    (int(from_sequence_id), int(limit)),
                )
                return [_to_entry(r) for r in fetchall(cur)]

            cur.execute(
                f"""
                SELECT {_COLUMNS}
                FROM rfid_ledger
                WHERE processed=1
                ORDER BY sequence_id DESC
                LIMIT %s
                """,
                (int(limit),),
            )
            rows = fetchall(cur)
            return [_to_entry(r) for r in reversed(rows)]

    def fetch_processed_taps(
        self,
        keys: Iterable[tuple[str, str, str]],
        *,
        since: datetime,
        until: datetime,
    ) -> Sequence[LedgerEntry]:
        wanted = set(keys)
        rfids = sorted({k[0] for k in wanted})
        if not rfids:
            return []

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_COLUMNS}
                FROM rfid_ledger
                WHERE processed=1
                  AND scan_timestamp BETWEEN %s AND %s
                  AND employee_rfid IN ({in_clause(rfids)})
                ORDER BY sequence_id ASC
                """,
                (since, until, *rfids),
            )
            entries = [_to_entry(r) for r in fetchall(cur)]
        return [e for e in entries if e.dedup_key in wanted]

    def mark_processed(self, sequence_ids: Sequence[int], at: datetime) -> int:
        ids = [int(s) for s in sequence_ids]
        if not ids:
            return 0

        with db_cursor(self._conn_factory) as (_, cur):
            # processed_at is only set on the transition, so re-marking is a no-op.
            cur.execute(
                f"""
                UPDATE rfid_ledger
                SET processed_at = IF(processed=1, processed_at, %s), processed=1
                WHERE sequence_id IN ({in_clause(ids)})
                """,
                (at, *ids),
            )
            cur.execute(
                f"SELECT COUNT(*) AS n FROM rfid_ledger WHERE processed=1 AND sequence_id IN ({in_clause(ids)})",
                tuple(ids),
            )
            row = fetchone(cur)
            return int(row["n"]) if row else 0

    def get_stats(self, *, now: datetime, stale_after: timedelta) -> LedgerStats:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT
                    COUNT(*) AS total_unprocessed,
                    COALESCE(SUM(created_at < %s), 0) AS stale_unprocessed
                FROM rfid_ledger
                WHERE processed=0
                """,
                (now - stale_after,),
            )
            counts = fetchone(cur) or {}

            cur.execute(f"SELECT {_COLUMNS} FROM rfid_ledger ORDER BY sequence_id DESC LIMIT 1")
            last = fetchone(cur)

            return LedgerStats(
                total_unprocessed=int(counts.get("total_unprocessed") or 0),
                stale_unprocessed=int(counts.get("stale_unprocessed") or 0),
                last_entry=_to_entry(last) if last else None,
            )
