import os


def env_bool(name: str, default: str = "0") -> bool:
    return bool(int(os.getenv(name, default)))


def env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def env_float_or_none(name: str):
    value = os.getenv(name, "").strip()
    return float(value) if value else None


def db_config_from_env(*, default_password: str = "") -> dict:
    return {
        "host": os.getenv("DB_HOST", "localhost"),
        "port": env_int("DB_PORT", 3306),
        "user": os.getenv("DB_USER", "root"),
        "password": os.getenv("DB_PASSWORD", default_password),
        "database": os.getenv("DB_NAME", "timekeeping_db"),
    }


# Ingestion defaults shared by every environment.
INGEST_BATCH_LIMIT = env_int("INGEST_BATCH_LIMIT", 1000)
INGEST_VALIDATE_HASH_CHAIN = env_bool("INGEST_VALIDATE_HASH_CHAIN", "1")
# informational | strict
INGEST_GAP_POLICY = os.getenv("INGEST_GAP_POLICY", "informational").lower()
# mark_processed | retain_for_audit
INGEST_DUPLICATE_POLICY = os.getenv("INGEST_DUPLICATE_POLICY", "mark_processed").lower()
INGEST_MARK_PERMANENT_FAILURES = env_bool("INGEST_MARK_PERMANENT_FAILURES", "1")
INGEST_LOCK_NAME = os.getenv("INGEST_LOCK_NAME", "timekeeping.ledger_ingestion")
INGEST_LOCK_TIMEOUT_SECONDS = env_int("INGEST_LOCK_TIMEOUT_SECONDS", 0)
INGEST_TIME_BUDGET_SECONDS = env_float_or_none("INGEST_TIME_BUDGET_SECONDS")
