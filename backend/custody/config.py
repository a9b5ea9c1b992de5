# backend/custody/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/custody.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///custody.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Ledger unit-of-work retry policy (optimistic locking / lock timeouts)
    LEDGER_RETRY_ATTEMPTS = int(os.environ.get("LEDGER_RETRY_ATTEMPTS", "3"))
    LEDGER_RETRY_BACKOFF = float(os.environ.get("LEDGER_RETRY_BACKOFF", "0.1"))

    # True keeps the historical "stock must exceed the request" rule.
    LEDGER_STRICT_STOCK_CHECK = _env_bool("LEDGER_STRICT_STOCK_CHECK", True)

    MAINTENANCE_BATCH_SIZE = int(os.environ.get("MAINTENANCE_BATCH_SIZE", "100"))

    DEMOB_REQUIRE_CONTRACT_END = _env_bool("DEMOB_REQUIRE_CONTRACT_END", False)
