"""
Multi-Tenant Service: Tenant Context Propagation and Scoping Helpers

Every logical operation runs for exactly one tenant. The tenant is bound
once at the request boundary and read back by the data access layer when
it opens a transaction, so service functions never thread it through
their signatures.

SECURITY INVARIANTS:
1. The binding lives in a ContextVar: each thread and each asyncio task
   sees its own value, so concurrent requests never observe each other
2. Nested bindings override the outer one for their scope only and the
   outer binding is restored on exit, including on exceptions
3. Tenant ids are restricted to [A-Za-z0-9_-] before they reach any
   statement text
4. Warehouse ids from client input are checked against the bound tenant

USAGE:
    from retailcore.services.tenant_service import TenantContext, run_with_tenant_context

    run_with_tenant_context(TenantContext(tenant_id), place)

    with tenant_scope(TenantContext(tenant_id, user_id=user.id)):
        ...
"""

from __future__ import annotations

import re
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Callable, Iterator, TypeVar

from sqlalchemy import select

from ..models import Warehouse

T = TypeVar("T")

TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class TenantAccessError(Exception):
    """Raised when cross-tenant access is attempted."""
    pass


class TenantScopeError(Exception):
    """
    Raised when a tenant id cannot be used for session scoping.

    Configuration error: never retried and never bypassed.
    """
    pass


@dataclass(frozen=True)
class TenantContext:
    """Identity of the tenant (and acting principal) for one logical operation."""
    tenant_id: str
    user_id: str | None = None
    customer_id: str | None = None


_current_context: ContextVar[TenantContext | None] = ContextVar("tenant_context", default=None)


def validate_tenant_id(tenant_id: object) -> str:
    """Return tenant_id unchanged if it matches the allow-list, else raise TenantScopeError."""
    if not isinstance(tenant_id, str) or not TENANT_ID_PATTERN.match(tenant_id):
        raise TenantScopeError(f"Invalid tenant id for session scoping: {tenant_id!r}")
    return tenant_id


@contextmanager
def tenant_scope(context: TenantContext) -> Iterator[TenantContext]:
    """Bind context for the duration of the with-block."""
    token = _current_context.set(context)
    try:
        yield context
    finally:
        _current_context.reset(token)


def run_with_tenant_context(context: TenantContext, operation: Callable[[], T]) -> T:
    """
    Execute operation with context bound.

    current_tenant_id() returns context.tenant_id for everything operation
    calls, directly or through nested service calls.
    """
    with tenant_scope(context):
        return operation()


def current_tenant_context() -> TenantContext | None:
    return _current_context.get()


def current_tenant_id() -> str | None:
    """Tenant bound to the running operation, or None (unscoped/admin mode)."""
    context = _current_context.get()
    return context.tenant_id if context else None


def require_current_tenant_id() -> str:
    """
    Tenant bound to the running operation.

    SECURITY: Raises TenantAccessError when no tenant is bound; callers that
    need a tenant must never fall back to unscoped access.
    """
    tenant_id = current_tenant_id()
    if tenant_id is None:
        raise TenantAccessError("Tenant context not established")
    return tenant_id


def require_warehouse_in_tenant(session, warehouse_id: str, tenant_id: str) -> Warehouse:
    """
    Validate that a warehouse belongs to the specified tenant.

    Raises TenantAccessError with the same message whether the warehouse is
    missing or belongs to someone else, so existence is not revealed.
    """
    warehouse = session.execute(
        select(Warehouse).where(Warehouse.id == warehouse_id)
    ).scalar_one_or_none()

    if warehouse is None or warehouse.tenant_id != tenant_id:
        raise TenantAccessError("Warehouse not found")

    return warehouse


def get_tenant_warehouse_ids(session, tenant_id: str) -> set[str]:
    """Warehouse ids owned by the tenant."""
    rows = session.execute(
        select(Warehouse.id).where(Warehouse.tenant_id == tenant_id)
    ).scalars().all()
    return set(rows)
