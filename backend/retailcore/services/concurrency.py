# Overview: Row locking, transient-error classification and retry backoff for the data access layer.

from __future__ import annotations

import socket

from sqlalchemy.exc import DBAPIError, IntegrityError

# SQLSTATE codes worth retrying: the server went away or asked us to try again.
TRANSIENT_SQLSTATES = frozenset({
    "57P01",  # admin_shutdown
    "57P02",  # crash_shutdown
    "57P03",  # cannot_connect_now
    "57014",  # query_canceled (statement_timeout)
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "53300",  # too_many_connections
    "08000",  # connection_exception
    "08001",  # sqlclient_unable_to_establish_sqlconnection
    "08003",  # connection_does_not_exist
    "08006",  # connection_failure
})

TRANSIENT_MESSAGE_MARKERS = (
    "connection refused",
    "econnrefused",
    "timeout",
    "timed out",
    "etimedout",
    "could not translate host name",
    "name or service not known",
    "enotfound",
    "terminating connection due to administrator command",
    "server closed the connection unexpectedly",
    "too many connections",
    "too many clients",
    "database is locked",
    "deadlock detected",
    "could not serialize access",
)


def lock_for_update(query):
    """
    Apply row-level locking for critical read-modify-write sequences.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; the data access layer opens
    SQLite write transactions with BEGIN IMMEDIATE instead, which serializes
    writers for the whole transaction.
    """
    return query.with_for_update()


def _sqlstate(error: BaseException | None) -> str | None:
    if error is None:
        return None
    # psycopg2 exposes pgcode, psycopg 3 exposes sqlstate
    return getattr(error, "pgcode", None) or getattr(error, "sqlstate", None)


def is_transient_error(exc: BaseException) -> bool:
    """
    Classify a failure as transient (retry the unit of work) or not.

    Business errors, integrity violations and programming errors are never
    transient.
    """
    if isinstance(exc, IntegrityError):
        return False

    if isinstance(exc, (ConnectionRefusedError, TimeoutError, socket.gaierror)):
        return True

    if not isinstance(exc, DBAPIError):
        return False

    if exc.connection_invalidated:
        return True

    orig = exc.orig
    if isinstance(orig, (ConnectionRefusedError, TimeoutError, socket.gaierror)):
        return True

    if _sqlstate(orig) in TRANSIENT_SQLSTATES:
        return True

    message = str(orig if orig is not None else exc).lower()
    return any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS)


def backoff_delay_ms(attempt: int, *, base_ms: int = 1000, cap_ms: int = 5000) -> int:
    """Exponential backoff after the given (1-based) failed attempt: min(base * 2^(attempt-1), cap)."""
    if attempt < 1:
        return 0
    return min(base_ms * (2 ** (attempt - 1)), cap_ms)
