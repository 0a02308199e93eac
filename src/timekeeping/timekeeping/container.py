from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .attendance.materializer import EventMaterializer
from .attendance.mysql_attendance_event_repository import MySQLAttendanceEventRepository
from .core.constants import DEFAULT_BATCH_LIMIT, DEFAULT_LOCK_NAME, DEFAULT_LOCK_TIMEOUT_SECONDS
from .core.enums import DuplicatePolicy, GapPolicy
from .database.connection import DBConfig, DatabaseConnection
from .employees.mysql_employee_directory import MySQLEmployeeDirectory
from .ingestion.deduplicator import Deduplicator
from .ingestion.health import LedgerHealthService
from .ingestion.lock import MySQLAdvisoryLock
from .ingestion.service import IngestionOrchestrator
from .ledger.marker import ProcessedMarker
from .ledger.mysql_ledger_repository import MySQLLedgerRepository
from .ledger.validator import HashChainValidator


@dataclass(frozen=True)
class Container:
    conn: DatabaseConnection

    ledger_repo: MySQLLedgerRepository
    events_repo: MySQLAttendanceEventRepository
    employee_directory: MySQLEmployeeDirectory

    orchestrator: IngestionOrchestrator
    health_service: LedgerHealthService


def build_container(
    *,
    db_config: dict,
    batch_limit: int = DEFAULT_BATCH_LIMIT,
    validate_hash_chain: bool = True,
    gap_policy: GapPolicy | str = GapPolicy.INFORMATIONAL,
    duplicate_policy: DuplicatePolicy | str = DuplicatePolicy.MARK_PROCESSED,
    mark_permanent_failures: bool = True,
    lock_name: str = DEFAULT_LOCK_NAME,
    lock_timeout_seconds: int = DEFAULT_LOCK_TIMEOUT_SECONDS,
    time_budget_seconds: Optional[float] = None,
) -> Container:
    conn = DatabaseConnection.get_instance(DBConfig.from_dict(db_config))

    ledger_repo = MySQLLedgerRepository(conn)
    events_repo = MySQLAttendanceEventRepository(conn)
    employee_directory = MySQLEmployeeDirectory(conn)

    deduplicator = Deduplicator(events_repo)
    validator = HashChainValidator(gap_policy=GapPolicy(gap_policy))

    orchestrator = IngestionOrchestrator(
        ledger_repo,
        deduplicator,
        validator,
        EventMaterializer(events_repo, employee_directory),
        ProcessedMarker(ledger_repo),
        lock=MySQLAdvisoryLock(conn, name=lock_name, timeout_seconds=lock_timeout_seconds),
        duplicate_policy=DuplicatePolicy(duplicate_policy),
        mark_permanent_failures=mark_permanent_failures,
        batch_limit=batch_limit,
        validate_hash_chain=validate_hash_chain,
        time_budget_seconds=time_budget_seconds,
    )
    health_service = LedgerHealthService(
        ledger_repo,
        validator,
        deduplicator,
        duplicate_policy=DuplicatePolicy(duplicate_policy),
        window_limit=batch_limit,
    )

    return Container(
        conn=conn,
        ledger_repo=ledger_repo,
        events_repo=events_repo,
        employee_directory=employee_directory,
        orchestrator=orchestrator,
        health_service=health_service,
    )


def build_container_from_settings(settings) -> Container:
    """Wire the container from a ``config.*`` settings module."""

    return build_container(
        db_config=dict(settings.DB_CONFIG),
        batch_limit=int(getattr(settings, "INGEST_BATCH_LIMIT", DEFAULT_BATCH_LIMIT)),
        validate_hash_chain=bool(getattr(settings, "INGEST_VALIDATE_HASH_CHAIN", True)),
        gap_policy=getattr(settings, "INGEST_GAP_POLICY", GapPolicy.INFORMATIONAL),
        duplicate_policy=getattr(settings, "INGEST_DUPLICATE_POLICY", DuplicatePolicy.MARK_PROCESSED),
        mark_permanent_failures=bool(getattr(settings, "INGEST_MARK_PERMANENT_FAILURES", True)),
        lock_name=str(getattr(settings, "INGEST_LOCK_NAME", DEFAULT_LOCK_NAME)),
        lock_timeout_seconds=int(getattr(settings, "INGEST_LOCK_TIMEOUT_SECONDS", DEFAULT_LOCK_TIMEOUT_SECONDS)),
        time_budget_seconds=getattr(settings, "INGEST_TIME_BUDGET_SECONDS", None),
    )
