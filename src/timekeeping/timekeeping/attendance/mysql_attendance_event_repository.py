from __future__ import annotations

from typing import Mapping, Sequence

from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, in_clause
from .model import AttendanceEvent, NewAttendanceEvent
from .repository import AttendanceEventRepository


class MySQLAttendanceEventRepository(AttendanceEventRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def find_ids_by_ledger_sequences(self, sequence_ids: Sequence[int]) -> Mapping[int, int]:
        ids = [int(s) for s in sequence_ids]
        if not ids:
            return {}

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT ledger_sequence_id, event_id
                FROM attendance_events
                WHERE ledger_sequence_id IN ({in_clause(ids)})
                """,
                tuple(ids),
            )
            return {int(r["ledger_sequence_id"]): int(r["event_id"]) for r in fetchall(cur)}

    def create(self, event: NewAttendanceEvent) -> AttendanceEvent:
        # UNIQUE(ledger_sequence_id) turns a racing second insert into a PersistenceError.
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO attendance_events(
                    employee_id, event_date, event_time, event_type, ledger_sequence_id,
                    is_deduplicated, ledger_hash_verified, source, device_id, notes
                )
                VALUES(%s,%s,%s,%s,%s,%s,%s,%s,%s,%s)
                """,
                (
                    event.employee_id,
                    event.event_date,
                    event.event_time,
                    event.event_type,
                    event.ledger_sequence_id,
                    int(event.is_deduplicated),
                    int(event.ledger_hash_verified),
                    event.source,
                    event.device_id,
                    event.notes,
                ),
            )
            return AttendanceEvent.from_new(int(cur.lastrowid), event)
