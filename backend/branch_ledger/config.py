# backend/branch_ledger/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the process working directory by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///branch_ledger.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # SQLite serializes writers; wait for the lock instead of failing fast
    SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 15}} if SQLALCHEMY_DATABASE_URI.startswith("sqlite") else {}

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Branch cash may be overdrawn by refunds unless this is switched off
    ALLOW_NEGATIVE_CASH_BALANCE = _env_flag("ALLOW_NEGATIVE_CASH_BALANCE", True)

    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))
    # Attempts per unit of work on lock/version conflicts; 1 means the caller retries
    RETRY_ATTEMPTS = int(os.environ.get("RETRY_ATTEMPTS", "1"))

    CORS_ALLOWED_ORIGINS = tuple(
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:4173,http://127.0.0.1:4173",
        ).split(",")
        if origin.strip()
    )
