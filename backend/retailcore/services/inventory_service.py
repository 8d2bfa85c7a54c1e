# Overview: Service-layer operations for inventory counters; locked read-modify-write plus append-only movements.

"""
Inventory Ledger Invariants (authoritative)

Counters:
- InventoryRecord holds quantity_on_hand and quantity_reserved per
  (tenant, product, warehouse).
- available = on_hand - reserved. A reservation is only granted when
  available covers it.
- No record for a (product, warehouse) pair means stock is untracked there;
  orders for untracked products are accepted without reservation.

Locking:
- Every read that precedes a counter mutation goes through lock_record(),
  which holds SELECT ... FOR UPDATE until the enclosing transaction ends.
- The helpers here take a TransactionHandle and never commit; the caller's
  unit of work owns commit/rollback.

Audit:
- Each counter mutation appends one InventoryMovement in the same transaction.
- Movements are append-only (no updates/deletes).

Movement types and signs:
- Reserve         +qty  (reserved goes up, on_hand unchanged)
- ReleaseReserve  +qty  (reserved goes down, floored at 0)
- MobileSale      -qty  (on_hand and reserved go down)
- Adjustment      +/-   (manual on_hand correction)
"""

from __future__ import annotations

from sqlalchemy import select

from ..models import InventoryRecord, InventoryMovement, Product
from ..id_utils import generate_id
from .tenant_service import TenantContext, require_warehouse_in_tenant, run_with_tenant_context

MOVEMENT_RESERVE = "Reserve"
MOVEMENT_RELEASE_RESERVE = "ReleaseReserve"
MOVEMENT_MOBILE_SALE = "MobileSale"
MOVEMENT_ADJUSTMENT = "Adjustment"


class InventoryError(ValueError):
    """Raised when a counter mutation would break an inventory invariant."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def lock_record(handle, tenant_id: str, product_id: str, warehouse_id: str) -> InventoryRecord | None:
    """Read the counters for (product, warehouse) under an exclusive row lock."""
    return handle.lock(
        select(InventoryRecord).where(
            InventoryRecord.tenant_id == tenant_id,
            InventoryRecord.product_id == product_id,
            InventoryRecord.warehouse_id == warehouse_id,
        )
    )


def append_movement(
    handle,
    *,
    tenant_id: str,
    product_id: str,
    warehouse_id: str,
    movement_type: str,
    quantity: int,
    reference_id: str | None = None,
    reason: str | None = None,
) -> InventoryMovement:
    movement = InventoryMovement(
        id=generate_id("mov"),
        tenant_id=tenant_id,
        product_id=product_id,
        warehouse_id=warehouse_id,
        type=movement_type,
        quantity=quantity,
        reference_id=reference_id,
        reason=reason,
    )
    handle.add(movement)
    return movement


def reserve(handle, record: InventoryRecord, quantity: int, *, reference_id: str,
            reason: str = "Mobile order reservation") -> None:
    """Move quantity from available into reserved. record must be locked."""
    if quantity <= 0:
        raise InventoryError("Reservation quantity must be positive")
    if record.available < quantity:
        raise InventoryError(
            "Insufficient available stock",
            details={"available": max(0, record.available), "requested": quantity},
        )

    record.quantity_reserved += quantity
    append_movement(
        handle,
        tenant_id=record.tenant_id,
        product_id=record.product_id,
        warehouse_id=record.warehouse_id,
        movement_type=MOVEMENT_RESERVE,
        quantity=quantity,
        reference_id=reference_id,
        reason=reason,
    )


def consume_reservation(handle, record: InventoryRecord, quantity: int, *, reference_id: str,
                        reason: str = "Mobile order confirmed") -> None:
    """Turn a reservation into a sale: on_hand and reserved both drop by quantity."""
    record.quantity_on_hand -= quantity
    record.quantity_reserved = max(record.quantity_reserved - quantity, 0)
    append_movement(
        handle,
        tenant_id=record.tenant_id,
        product_id=record.product_id,
        warehouse_id=record.warehouse_id,
        movement_type=MOVEMENT_MOBILE_SALE,
        quantity=-quantity,
        reference_id=reference_id,
        reason=reason,
    )


def release_reservation(handle, record: InventoryRecord, quantity: int, *, reference_id: str,
                        reason: str = "Mobile order cancelled") -> None:
    """Hand reserved stock back to available. reserved never goes below zero."""
    record.quantity_reserved = max(record.quantity_reserved - quantity, 0)
    append_movement(
        handle,
        tenant_id=record.tenant_id,
        product_id=record.product_id,
        warehouse_id=record.warehouse_id,
        movement_type=MOVEMENT_RELEASE_RESERVE,
        quantity=quantity,
        reference_id=reference_id,
        reason=reason,
    )


def adjust_stock(
    handle,
    tenant_id: str,
    product_id: str,
    warehouse_id: str,
    delta: int,
    reason: str | None = None,
) -> InventoryRecord:
    """
    Manual on-hand correction (stock count, receiving, shrinkage).

    Creates the record the first time stock is tracked for the pair.
    On-hand may never go negative; reserved stock is left untouched.
    """
    if delta == 0:
        raise InventoryError("delta must be non-zero")

    product = handle.session.execute(
        select(Product).where(Product.id == product_id)
    ).scalar_one_or_none()
    if product is None or product.tenant_id != tenant_id:
        raise InventoryError("Product not found")
    require_warehouse_in_tenant(handle.session, warehouse_id, tenant_id)

    record = lock_record(handle, tenant_id, product_id, warehouse_id)
    if record is None:
        record = InventoryRecord(
            id=generate_id("inv"),
            tenant_id=tenant_id,
            product_id=product_id,
            warehouse_id=warehouse_id,
            quantity_on_hand=0,
            quantity_reserved=0,
        )
        handle.add(record)

    new_on_hand = record.quantity_on_hand + delta
    if new_on_hand < 0:
        raise InventoryError(
            "Adjustment would make on-hand quantity negative",
            details={"on_hand": record.quantity_on_hand, "delta": delta},
        )

    record.quantity_on_hand = new_on_hand
    append_movement(
        handle,
        tenant_id=tenant_id,
        product_id=product_id,
        warehouse_id=warehouse_id,
        movement_type=MOVEMENT_ADJUSTMENT,
        quantity=delta,
        reason=reason or "Manual adjustment",
    )
    handle.flush()
    return record


def get_stock(database_service, tenant_id: str, product_id: str, warehouse_id: str) -> dict | None:
    """Current counters for (product, warehouse), or None when stock is untracked."""
    def _read(handle):
        record = handle.session.execute(
            select(InventoryRecord).where(
                InventoryRecord.tenant_id == tenant_id,
                InventoryRecord.product_id == product_id,
                InventoryRecord.warehouse_id == warehouse_id,
            )
        ).scalar_one_or_none()
        return record.to_dict() if record else None

    return run_with_tenant_context(
        TenantContext(tenant_id),
        lambda: database_service.transaction(_read, read_only=True),
    )
