import os

from .config import *  # noqa: F401,F403
from .config import db_config_from_env, env_bool

DB_CONFIG = db_config_from_env()

DEBUG = False
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

AUTO_INIT_DB = env_bool("AUTO_INIT_DB", "0")

# Cycles stop between entries after this many seconds.
INGEST_TIME_BUDGET_SECONDS = float(os.getenv("INGEST_TIME_BUDGET_SECONDS", "50"))
