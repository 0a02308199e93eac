"""Cycle locks.

Two ingestion cycles must never overlap: the dedup window lives in memory per
call, and the "already materialized" check is not atomic with event creation.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import ContextManager, Iterator, Protocol

import mysql.connector

from ..core.constants import DEFAULT_LOCK_NAME, DEFAULT_LOCK_TIMEOUT_SECONDS
from ..core.exceptions import CycleAlreadyRunningError
from ..database.connection import DatabaseConnection
from ..database.mysql_base import translate_mysql_error

logger = logging.getLogger(__name__)


class CycleLock(Protocol):
    def hold(self) -> ContextManager[None]:
        """Hold the lock for the duration of the block.

        Raises CycleAlreadyRunningError when someone else holds it.
        """

        raise NotImplementedError


class InProcessCycleLock(CycleLock):
    """Serializes cycles inside one process (tests, single-worker deployments)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    @contextmanager
    def hold(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise CycleAlreadyRunningError("ingestion cycle already running in this process")
        try:
            yield
        finally:
            self._lock.release()


class MySQLAdvisoryLock(CycleLock):
    """Named MySQL lock (``GET_LOCK``) shared by every worker on the database.

    MySQL ties the lock to the session, so a dedicated connection stays open
    while the lock is held.
    """

    def __init__(
        self,
        conn_factory: DatabaseConnection,
        *,
        name: str = DEFAULT_LOCK_NAME,
        timeout_seconds: int = DEFAULT_LOCK_TIMEOUT_SECONDS,
    ):
        self._conn_factory = conn_factory
        self._name = name
        self._timeout_seconds = int(timeout_seconds)

    @contextmanager
    def hold(self) -> Iterator[None]:
        try:
            conn = self._conn_factory.connect()
        except mysql.connector.Error as exc:
            raise translate_mysql_error(exc) from exc

        try:
            cur = conn.cursor()
            try:
                cur.execute("SELECT GET_LOCK(%s, %s)", (self._name, self._timeout_seconds))
                row = cur.fetchone()
            except mysql.connector.Error as exc:
                raise translate_mysql_error(exc) from exc

            if not row or row[0] != 1:
                logger.info("advisory lock %r is held by another worker", self._name)
                raise CycleAlreadyRunningError(f"advisory lock {self._name!r} is held elsewhere")

            try:
                yield
            finally:
                try:
                    cur.execute("SELECT RELEASE_LOCK(%s)", (self._name,))
                    cur.fetchone()
                except mysql.connector.Error:
                    # Closing the session releases the lock anyway.
                    logger.warning("could not release advisory lock %r explicitly", self._name)
                cur.close()
        finally:
            conn.close()
