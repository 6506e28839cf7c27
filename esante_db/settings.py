"""
esante_db/settings.py

Configuration for the eSanté persistence layer.
Every value can be overridden through an environment variable.
"""

from __future__ import annotations

import os
from pathlib import Path


PROJECT_DIR = Path(__file__).resolve().parents[1]


def _env_flag(name: str, default: bool = False) -> bool:
    v = os.getenv(name, "").strip().lower()
    if not v:
        return default
    return v in ["1", "true", "yes", "on"]


# ============================================================
# Store
# ============================================================

# "sql" (SQLAlchemy table), "json" (one file per key) or "memory"
STORE_BACKEND = os.getenv("ESANTE_STORE_BACKEND", "sql").strip().lower()

DATABASE_URL = os.getenv("ESANTE_DATABASE_URL", f"sqlite:///{PROJECT_DIR / 'esante.db'}")
SQL_ECHO = _env_flag("ESANTE_SQL_ECHO")

JSON_STORE_DIR = Path(os.getenv("ESANTE_JSON_STORE_DIR", str(PROJECT_DIR / "db_store")))

# Run read-modify-write cycles on a collection one at a time
SERIALIZE_WRITES = _env_flag("ESANTE_SERIALIZE_WRITES")


# ============================================================
# Security
# ============================================================

PBKDF2_ITERATIONS = int(os.getenv("ESANTE_PBKDF2_ITERATIONS", "100000"))
PASSWORD_SALT_BYTES = 16


# ============================================================
# Logging
# ============================================================

LOG_LEVEL = os.getenv("ESANTE_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
