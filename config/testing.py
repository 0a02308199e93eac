import os

from .config import *  # noqa: F401,F403
from .config import db_config_from_env, env_bool

DB_CONFIG = db_config_from_env(default_password="12345")

DEBUG = False
TESTING = True
LOG_LEVEL = os.getenv("LOG_LEVEL", "WARNING")

AUTO_INIT_DB = env_bool("AUTO_INIT_DB", "0")
INGEST_BATCH_LIMIT = 100
