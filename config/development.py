import os

from .config import *  # noqa: F401,F403
from .config import db_config_from_env, env_bool

DB_CONFIG = db_config_from_env(default_password="timekeeping")

DEBUG = True
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")

# If enabled, app will apply schema.sql on startup (idempotent: CREATE IF NOT EXISTS)
AUTO_INIT_DB = env_bool("AUTO_INIT_DB", "1")
