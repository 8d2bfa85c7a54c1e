"""
Resilient Data Access Layer

Three entry points, all tenant-scoped and retried on transient failures:

- query(statement)      read rows inside its own short transaction
- execute(statement)    write inside its own short transaction
- transaction(callback) run a caller-supplied unit of work on one
                        session/connection, commit or roll back as a whole

TENANT SCOPING:
- The tenant bound by tenant_service is read when the transaction opens
- The id is checked against [A-Za-z0-9_-] before it is interpolated into
  SET LOCAL app.current_tenant_id (PostgreSQL row-level security reads it)
- No bound tenant means unscoped access. On PostgreSQL the forced policies
  then hide every business-table row, so only identity tables (tenants,
  users, customers, session_tokens) are usable without a tenant

RETRY:
- Transient errors (see concurrency.is_transient_error) re-run the whole unit
  of work after min(base * 2^(attempt-1), cap) ms
- Callbacks must be safe to re-execute from scratch: no externally visible
  side effects before commit
- Exhaustion raises DatabaseUnavailableError; nothing partial was committed

OBSERVABILITY:
- Slow statements are logged as warnings, never raised
- Disconnects and pool failures are reported through the engine
  handle_error hook to the application logger
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from flask import current_app
from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError

from .concurrency import backoff_delay_ms, is_transient_error, lock_for_update
from .tenant_service import current_tenant_id, validate_tenant_id

T = TypeVar("T")

LOG_STATEMENT_CHARS = 200


class DatabaseUnavailableError(Exception):
    """Raised when a unit of work still fails after the retry budget is spent."""

    def __init__(self, message: str = "Database temporarily unavailable", attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 5000


def _truncate(value: object) -> str:
    s = " ".join(str(value).split())
    if len(s) <= LOG_STATEMENT_CHARS:
        return s
    return s[:LOG_STATEMENT_CHARS] + "..."


def _coerce_statement(statement):
    if isinstance(statement, str):
        return text(statement)
    return statement


class TransactionHandle:
    """
    Handle passed to transaction callbacks.

    Bound to the single session (and connection) the unit of work runs on.
    """

    def __init__(self, session, tenant_id: str | None):
        self.session = session
        self.tenant_id = tenant_id

    def query(self, statement, params: dict | None = None, *, scalars: bool = False) -> list:
        result = self.session.execute(_coerce_statement(statement), params or {})
        if scalars:
            return list(result.scalars().all())
        return list(result.all())

    def execute(self, statement, params: dict | None = None) -> int:
        result = self.session.execute(_coerce_statement(statement), params or {})
        return result.rowcount if result.rowcount is not None else 0

    def lock(self, statement):
        """Run a select with FOR UPDATE and return the single entity or None."""
        return self.session.execute(lock_for_update(statement)).scalar_one_or_none()

    def add(self, instance) -> None:
        self.session.add(instance)

    def flush(self) -> None:
        self.session.flush()


class DatabaseService:
    """
    Tenant-scoped, retrying access to the relational store.

    Constructed once by create_app() and registered as
    app.extensions["database_service"].
    """

    def __init__(
        self,
        database,
        *,
        logger,
        retry_policy: RetryPolicy | None = None,
        slow_query_ms: int = 1000,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._db = database
        self._logger = logger
        self.retry_policy = retry_policy or RetryPolicy()
        self.slow_query_ms = slow_query_ms
        self._sleep = sleep

    @classmethod
    def from_app(cls, app, database) -> "DatabaseService":
        service = cls(
            database,
            logger=app.logger,
            retry_policy=RetryPolicy(
                attempts=app.config["DB_RETRY_ATTEMPTS"],
                base_delay_ms=app.config["DB_RETRY_BASE_DELAY_MS"],
                max_delay_ms=app.config["DB_RETRY_MAX_DELAY_MS"],
            ),
            slow_query_ms=app.config["DB_SLOW_QUERY_MS"],
        )
        with app.app_context():
            service.install_engine_listeners(database.engine)
        return service

    # ------------------------------------------------------------------
    # Engine instrumentation
    # ------------------------------------------------------------------

    def install_engine_listeners(self, engine) -> None:
        if not event.contains(engine, "before_cursor_execute", self._before_cursor_execute):
            event.listen(engine, "before_cursor_execute", self._before_cursor_execute)
            event.listen(engine, "after_cursor_execute", self._after_cursor_execute)
            event.listen(engine, "handle_error", self._handle_error)

    # The start time lives on the execution context, which is discarded with
    # the statement whether it succeeds or fails.
    def _before_cursor_execute(self, conn, cursor, statement, parameters, context, executemany):
        if context is not None:
            context._retailcore_query_start = time.perf_counter()

    def _after_cursor_execute(self, conn, cursor, statement, parameters, context, executemany):
        started = getattr(context, "_retailcore_query_start", None)
        if started is None:
            return
        elapsed_ms = (time.perf_counter() - started) * 1000
        if elapsed_ms > self.slow_query_ms:
            self._logger.warning(
                "Slow query (%.1f ms): %s", elapsed_ms, _truncate(statement)
            )

    def _handle_error(self, exception_context):
        if exception_context.is_disconnect:
            self._logger.error(
                "Unexpected database pool error: %s",
                _truncate(exception_context.original_exception),
            )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    @property
    def dialect(self) -> str:
        return self._db.engine.dialect.name

    def query(self, statement, params: dict | None = None, *, scalars: bool = False) -> list:
        """Read rows (or scalar values / ORM entities) in a short scoped transaction."""
        return self._run_with_retry(
            lambda: self._unit_of_work(
                lambda handle: handle.query(statement, params, scalars=scalars),
                write=False,
            ),
            label=statement,
        )

    def execute(self, statement, params: dict | None = None) -> int:
        """Run a write statement in a short scoped transaction. Returns rowcount."""
        return self._run_with_retry(
            lambda: self._unit_of_work(
                lambda handle: handle.execute(statement, params),
                write=True,
            ),
            label=statement,
        )

    def transaction(self, callback: Callable[[TransactionHandle], T], *, read_only: bool = False) -> T:
        """
        Run callback as one atomic, tenant-scoped unit of work.

        The callback may be invoked more than once when a transient failure
        forces a retry. read_only skips the up-front SQLite write lock.
        """
        label = getattr(callback, "__qualname__", repr(callback))
        return self._run_with_retry(
            lambda: self._unit_of_work(callback, write=not read_only),
            label=label,
        )

    def health_check(self) -> bool:
        try:
            self.query("SELECT 1")
            return True
        except (SQLAlchemyError, DatabaseUnavailableError):
            self._logger.exception("Database health check failed")
            return False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _unit_of_work(self, callback: Callable[[TransactionHandle], T], *, write: bool) -> T:
        session = self._db.session
        tenant_id = current_tenant_id()
        if tenant_id is not None:
            # Rejected ids never reach the database and are never retried
            validate_tenant_id(tenant_id)

        try:
            self._begin(session, tenant_id, write=write)
            result = callback(TransactionHandle(session, tenant_id))
            session.commit()
            return result
        except Exception:
            session.rollback()
            raise

    def _begin(self, session, tenant_id: str | None, *, write: bool) -> None:
        dialect = session.get_bind().dialect.name

        if dialect == "sqlite":
            # SQLite ignores FOR UPDATE; take the write lock up front instead
            if write:
                raw = session.connection().connection.dbapi_connection
                if not raw.in_transaction:
                    session.execute(text("BEGIN IMMEDIATE"))
            return

        if tenant_id is not None and dialect == "postgresql":
            session.execute(text(f"SET LOCAL app.current_tenant_id = '{tenant_id}'"))

    def _run_with_retry(self, work: Callable[[], T], *, label: Any) -> T:
        policy = self.retry_policy
        attempts = max(1, policy.attempts)

        for attempt in range(1, attempts + 1):
            try:
                return work()
            except Exception as exc:
                if not is_transient_error(exc):
                    raise
                if attempt >= attempts:
                    self._logger.error(
                        "Database operation failed after %d attempts: %s (%s)",
                        attempt, _truncate(label), _truncate(exc),
                    )
                    raise DatabaseUnavailableError(attempts=attempt) from exc

                delay_ms = backoff_delay_ms(
                    attempt, base_ms=policy.base_delay_ms, cap_ms=policy.max_delay_ms
                )
                self._logger.warning(
                    "Transient database error on attempt %d/%d, retrying in %d ms: %s (%s)",
                    attempt, attempts, delay_ms, _truncate(label), _truncate(exc),
                )
                self._sleep(delay_ms / 1000)

        raise DatabaseUnavailableError(attempts=attempts)


def get_database_service() -> DatabaseService:
    """The DatabaseService registered on the running app."""
    return current_app.extensions["database_service"]
