from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence

import mysql.connector
from mysql.connector import errors as mysql_errors

from ..core.exceptions import PersistenceError, StoreUnavailableError
from .connection import DatabaseConnection


def translate_mysql_error(exc: mysql.connector.Error) -> Exception:
    """Map connector errors onto the domain taxonomy.

    Connection-level failures are fatal to a cycle; anything else is a
    statement-level rejection the caller may handle per row.
    """

    if isinstance(exc, (mysql_errors.InterfaceError, mysql_errors.OperationalError)):
        return StoreUnavailableError(str(exc))
    return PersistenceError(str(exc))


@contextmanager
def db_cursor(conn_factory: DatabaseConnection, *, dictionary: bool = True):
    try:
        conn = conn_factory.connect()
    except mysql.connector.Error as exc:
        raise translate_mysql_error(exc) from exc

    try:
        cur = conn.cursor(dictionary=dictionary)
        try:
            yield conn, cur
            conn.commit()
        finally:
            cur.close()
    except mysql.connector.Error as exc:
        conn.rollback()
        raise translate_mysql_error(exc) from exc
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def fetchone(cur) -> Optional[Dict[str, Any]]:
    row = cur.fetchone()
    return row if row else None


def fetchall(cur) -> List[Dict[str, Any]]:
    rows = cur.fetchall()
    return list(rows or [])


def in_clause(values: Sequence[Any]) -> str:
    """Placeholder list for ``WHERE col IN (...)``; callers never pass an empty sequence."""

    return ",".join(["%s"] * len(values))


def normalize_mysql_text(value: Any) -> Optional[str]:
    """Normalize TEXT columns across connector implementations.

    mysql-connector can return TEXT as:
    - str (pure-python connector)
    - bytes / bytearray (C extension, binary collations)

    The ledger payload is stored as LONGTEXT rather than JSON because MySQL
    rewrites JSON documents, and the hash chain covers the exact text the edge
    device wrote.
    """

    if value is None:
        return None

    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8")

    if isinstance(value, str):
        return value

    raise TypeError(f"Unsupported MySQL TEXT value type: {type(value)!r}")
