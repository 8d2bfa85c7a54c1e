# backend/retailcore/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _engine_options(database_uri: str) -> dict:
    # Detect and recover from stale pooled connections.
    options: dict[str, object] = {"pool_pre_ping": True}

    if not database_uri.lower().startswith("sqlite"):
        # Networked databases: bound the pool and push timeouts down to the transport
        options.update(
            {
                "pool_size": _int_env("DB_POOL_SIZE", 20),
                "max_overflow": _int_env("DB_MAX_OVERFLOW", 10),
                "pool_timeout": _int_env("DB_POOL_TIMEOUT_SECONDS", 30),
                "pool_recycle": _int_env("DB_POOL_RECYCLE_SECONDS", 1800),
                "connect_args": {
                    "connect_timeout": _int_env("DB_CONNECT_TIMEOUT_SECONDS", 10),
                    "options": f"-c statement_timeout={_int_env('DB_STATEMENT_TIMEOUT_MS', 30000)}",
                },
            }
        )
    return options


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file in the working directory unless DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///retailcore.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = _engine_options(SQLALCHEMY_DATABASE_URI)

    # Data access retry policy
    DB_RETRY_ATTEMPTS = _int_env("DB_RETRY_ATTEMPTS", 3)
    DB_RETRY_BASE_DELAY_MS = _int_env("DB_RETRY_BASE_DELAY_MS", 1000)
    DB_RETRY_MAX_DELAY_MS = _int_env("DB_RETRY_MAX_DELAY_MS", 5000)
    DB_SLOW_QUERY_MS = _int_env("DB_SLOW_QUERY_MS", 1000)

    # Bearer tokens for staff and mobile customers
    SESSION_TTL_HOURS = _int_env("SESSION_TTL_HOURS", 24 * 30)

    # Real-time order stream
    SSE_HEARTBEAT_SECONDS = _int_env("SSE_HEARTBEAT_SECONDS", 30)
    ORDER_EVENT_QUEUE_SIZE = _int_env("ORDER_EVENT_QUEUE_SIZE", 100)

    # Browser origins allowed to call the API (comma separated)
    CORS_ALLOWED_ORIGINS = {
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    }
