from __future__ import annotations

from typing import Optional

from ..common.validators import require_non_empty
from ..core.exceptions import ValidationError
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchone
from .repository import EmployeeDirectory


class MySQLEmployeeDirectory(EmployeeDirectory):
    """Card lookup against ``rfid_cards``; only active cards of active employees resolve."""

    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def resolve(self, rfid: str) -> Optional[int]:
        try:
            card = require_non_empty(rfid, "employee_rfid")
        except ValidationError:
            return None

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT c.employee_id
                FROM rfid_cards c
                JOIN employees e ON e.employee_id = c.employee_id
                WHERE c.card_uid=%s AND c.is_active=1 AND e.is_active=1
                """,
                (card,),
            )
            row = fetchone(cur)
            return int(row["employee_id"]) if row else None
