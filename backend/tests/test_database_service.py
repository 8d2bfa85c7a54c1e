# Overview: Pytest coverage for the resilient data access layer (transactions, retry, error classification).

import logging
import socket
import sqlite3

import pytest
from sqlalchemy import event, select
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from retailcore.extensions import db
from retailcore.models import Tenant
from retailcore.services.concurrency import backoff_delay_ms, is_transient_error
from retailcore.services.database_service import (
    DatabaseService,
    DatabaseUnavailableError,
    RetryPolicy,
)


def _locked_error():
    return OperationalError("UPDATE inventory_records ...", {}, sqlite3.OperationalError("database is locked"))


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def service(app, db_session, sleeps):
    """DatabaseService with a recording sleep so retries cost nothing."""
    return DatabaseService(
        db,
        logger=logging.getLogger("retailcore.tests"),
        retry_policy=RetryPolicy(attempts=3, base_delay_ms=10, max_delay_ms=15),
        sleep=sleeps.append,
    )


class TestTransientClassification:

    def test_locked_database_is_transient(self):
        assert is_transient_error(_locked_error()) is True

    def test_connection_refused_is_transient(self):
        assert is_transient_error(ConnectionRefusedError()) is True
        assert is_transient_error(socket.gaierror()) is True

    def test_invalidated_connection_is_transient(self):
        exc = OperationalError("SELECT 1", {}, Exception("boom"), connection_invalidated=True)
        assert is_transient_error(exc) is True

    def test_sqlstate_serialization_failure_is_transient(self):
        orig = Exception("could not complete")
        orig.pgcode = "40001"
        assert is_transient_error(OperationalError("SELECT 1", {}, orig)) is True

    def test_integrity_error_is_not_transient(self):
        exc = IntegrityError("INSERT", {}, sqlite3.IntegrityError("UNIQUE constraint failed"))
        assert is_transient_error(exc) is False

    def test_programming_error_is_not_transient(self):
        exc = ProgrammingError("SELEC 1", {}, sqlite3.ProgrammingError("syntax error"))
        assert is_transient_error(exc) is False

    def test_business_errors_are_not_transient(self):
        assert is_transient_error(ValueError("bad input")) is False


class TestBackoff:

    @pytest.mark.parametrize("attempt,expected", [(0, 0), (1, 1000), (2, 2000), (3, 4000), (4, 5000), (10, 5000)])
    def test_default_schedule(self, attempt, expected):
        assert backoff_delay_ms(attempt) == expected

    def test_custom_base_and_cap(self):
        assert backoff_delay_ms(3, base_ms=100, cap_ms=250) == 250


class TestTransaction:

    def test_commits_callback_work(self, service, db_session):
        service.transaction(lambda handle: handle.add(Tenant(id="shop_x", name="X", slug="x")))

        assert db_session.get(Tenant, "shop_x") is not None

    def test_rolls_back_on_error(self, service, db_session):
        def _op(handle):
            handle.add(Tenant(id="shop_x", name="X", slug="x"))
            handle.flush()
            raise RuntimeError("abort")

        with pytest.raises(RuntimeError):
            service.transaction(_op)

        assert db_session.get(Tenant, "shop_x") is None

    def test_query_and_execute(self, service, tenant_a):
        rows = service.query(select(Tenant.id).order_by(Tenant.id), scalars=True)
        assert rows == [tenant_a.id]

        updated = service.execute(
            "UPDATE tenants SET name = :name WHERE id = :id", {"name": "Renamed", "id": tenant_a.id}
        )
        assert updated == 1
        assert service.query("SELECT name FROM tenants WHERE id = :id", {"id": tenant_a.id})[0][0] == "Renamed"

    def test_health_check(self, service):
        assert service.health_check() is True


class TestRetry:

    def test_transient_failure_retried_then_succeeds(self, service, sleeps):
        attempts = []

        def _flaky(handle):
            attempts.append(1)
            if len(attempts) < 3:
                raise _locked_error()
            return "ok"

        assert service.transaction(_flaky) == "ok"
        assert len(attempts) == 3
        assert sleeps == [0.01, 0.015]

    def test_exhaustion_raises_database_unavailable(self, service, sleeps, caplog):
        def _always_locked(handle):
            raise _locked_error()

        with caplog.at_level(logging.WARNING, logger="retailcore.tests"):
            with pytest.raises(DatabaseUnavailableError) as excinfo:
                service.transaction(_always_locked)

        assert excinfo.value.attempts == 3
        assert isinstance(excinfo.value.__cause__, OperationalError)
        assert len(sleeps) == 2
        assert any("failed after 3 attempts" in r.getMessage() for r in caplog.records)

    def test_non_transient_error_not_retried(self, service, sleeps):
        attempts = []

        def _broken(handle):
            attempts.append(1)
            raise ValueError("bad")

        with pytest.raises(ValueError):
            service.transaction(_broken)

        assert len(attempts) == 1
        assert sleeps == []

    def test_retry_reruns_whole_unit_of_work(self, service, db_session):
        attempts = []

        def _op(handle):
            attempts.append(1)
            handle.add(Tenant(id=f"shop_try{len(attempts)}", name="T", slug=f"try{len(attempts)}"))
            handle.flush()
            if len(attempts) == 1:
                raise _locked_error()

        service.transaction(_op)

        # The first attempt's insert was rolled back with it
        assert db_session.get(Tenant, "shop_try1") is None
        assert db_session.get(Tenant, "shop_try2") is not None


class TestSlowQueryLogging:

    def test_slow_statement_logged(self, app, db_session, caplog):
        service = DatabaseService(db, logger=logging.getLogger("retailcore.tests.slow"), slow_query_ms=-1)
        with app.app_context():
            service.install_engine_listeners(db.engine)

        try:
            with caplog.at_level(logging.WARNING, logger="retailcore.tests.slow"):
                service.query("SELECT 1")
        finally:
            with app.app_context():
                event.remove(db.engine, "before_cursor_execute", service._before_cursor_execute)
                event.remove(db.engine, "after_cursor_execute", service._after_cursor_execute)
                event.remove(db.engine, "handle_error", service._handle_error)

        assert any(r.getMessage().startswith("Slow query") for r in caplog.records)

    def test_failed_statements_leave_no_timing_state(self, app, database_service):
        for _ in range(5):
            with pytest.raises(OperationalError):
                database_service.query("SELECT * FROM no_such_table")

        database_service.query("SELECT 1")

        with app.app_context():
            with db.engine.connect() as conn:
                assert "query_start_time" not in conn.info
