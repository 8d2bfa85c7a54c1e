"""
Mobile Order Lifecycle Engine

Placement, the status state machine with its inventory side effects, and
the read models used by customers and the POS.

PLACEMENT (one transaction):
1. Idempotency precheck by (tenant, key) before the transaction opens
2. Resolve the warehouse (branch/warehouse id, else the tenant's first)
3. Price every line and lock its inventory record; untracked stock is accepted
4. Apply shop settings (ordering enabled, delivery fee, minimum order)
5. Insert order, items, Reserve movements and the NULL -> Pending history row
6. Commit, then publish a new_order event (best effort)

A second submission that races past the precheck hits the per-tenant
idempotency unique constraint; the winner is re-read and returned as a
duplicate. Duplicate submissions never raise.

STATE MACHINE:
    Pending        -> Confirmed | Cancelled
    Confirmed      -> Packed | Cancelled
    Packed         -> OutForDelivery | Cancelled
    OutForDelivery -> Delivered | Cancelled
    Delivered, Cancelled: terminal

Transitions lock the order row, so concurrent transitions on one order
serialize and only legal successors are ever written.

INVENTORY EFFECTS (tracked lines only, warehouse recorded on the order):
- Confirmed: reservation consumed (on_hand and reserved drop), MobileSale movement
- Cancelled: reserved drops by the line quantity, floored at 0, with a
  ReleaseReserve movement, from any non-terminal status. on_hand is never
  restored
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..id_utils import generate_id, generate_order_number
from ..models import Customer, Order, OrderItem, OrderStatusHistory
from ..money import ZERO_MONEY, money_str, to_money
from ..pagination import before_cursor, encode_cursor
from ..time_utils import to_utc_z, utcnow
from ..validation import OrderLineInput, PlaceOrderInput, ValidationError
from . import inventory_service
from .catalog_service import effective_price, get_orderable_product, resolve_warehouse
from .settings_service import get_shop_settings
from .tenant_service import TenantContext, run_with_tenant_context, validate_tenant_id

VALID_STATUSES = ("Pending", "Confirmed", "Packed", "OutForDelivery", "Delivered", "Cancelled")

VALID_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "Pending": ("Confirmed", "Cancelled"),
    "Confirmed": ("Packed", "Cancelled"),
    "Packed": ("OutForDelivery", "Cancelled"),
    "OutForDelivery": ("Delivered", "Cancelled"),
    "Delivered": (),
    "Cancelled": (),
}

CUSTOMER_PAGE_MAX = 100
POS_LIST_LIMIT = 200


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class OrderError(Exception):
    """Raised for order business-rule violations."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class OrderNotFoundError(OrderError):
    pass


class ProductUnavailableError(OrderError):
    pass


class InsufficientStockError(OrderError):
    pass


class MinimumOrderError(OrderError):
    pass


class OrderingDisabledError(OrderError):
    pass


class InvalidTransitionError(OrderError):
    pass


class CancellationNotPermittedError(OrderError):
    pass


class NotOrderOwnerError(OrderError):
    pass


# ---------------------------------------------------------------------------
# Read models (built inside the transaction, safe to use after commit)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OrderItemRecord:
    id: str
    product_id: str
    product_name: str
    product_sku: str | None
    quantity: int
    unit_price: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    subtotal: Decimal
    stock_tracked: bool

    @classmethod
    def from_model(cls, item: OrderItem) -> "OrderItemRecord":
        return cls(
            id=item.id,
            product_id=item.product_id,
            product_name=item.product_name,
            product_sku=item.product_sku,
            quantity=item.quantity,
            unit_price=to_money(item.unit_price),
            tax_amount=to_money(item.tax_amount),
            discount_amount=to_money(item.discount_amount),
            subtotal=to_money(item.subtotal),
            stock_tracked=bool(item.stock_tracked),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "quantity": self.quantity,
            "unit_price": money_str(self.unit_price),
            "tax_amount": money_str(self.tax_amount),
            "discount_amount": money_str(self.discount_amount),
            "subtotal": money_str(self.subtotal),
        }


@dataclass(frozen=True)
class StatusHistoryRecord:
    id: str
    from_status: str | None
    to_status: str
    changed_by: str
    changed_by_type: str
    note: str | None
    created_at: object

    @classmethod
    def from_model(cls, row: OrderStatusHistory) -> "StatusHistoryRecord":
        return cls(
            id=row.id,
            from_status=row.from_status,
            to_status=row.to_status,
            changed_by=row.changed_by,
            changed_by_type=row.changed_by_type,
            note=row.note,
            created_at=row.created_at,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "changed_by": self.changed_by,
            "changed_by_type": self.changed_by_type,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }


@dataclass(frozen=True)
class OrderRecord:
    id: str
    order_number: str
    tenant_id: str
    customer_id: str
    branch_id: str | None
    warehouse_id: str | None
    status: str
    subtotal: Decimal
    tax_total: Decimal
    discount_total: Decimal
    delivery_fee: Decimal
    grand_total: Decimal
    payment_method: str
    payment_status: str
    delivery_address: str | None
    delivery_lat: float | None
    delivery_lng: float | None
    delivery_notes: str | None
    idempotency_key: str | None
    pos_synced: bool
    pos_synced_at: object
    delivered_at: object
    cancelled_at: object
    cancelled_by: str | None
    cancellation_reason: str | None
    created_at: object
    updated_at: object
    customer_phone: str | None = None
    customer_name: str | None = None

    @classmethod
    def from_model(cls, order: Order, customer: Customer | None = None) -> "OrderRecord":
        return cls(
            id=order.id,
            order_number=order.order_number,
            tenant_id=order.tenant_id,
            customer_id=order.customer_id,
            branch_id=order.branch_id,
            warehouse_id=order.warehouse_id,
            status=order.status,
            subtotal=to_money(order.subtotal),
            tax_total=to_money(order.tax_total),
            discount_total=to_money(order.discount_total),
            delivery_fee=to_money(order.delivery_fee),
            grand_total=to_money(order.grand_total),
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            delivery_address=order.delivery_address,
            delivery_lat=order.delivery_lat,
            delivery_lng=order.delivery_lng,
            delivery_notes=order.delivery_notes,
            idempotency_key=order.idempotency_key,
            pos_synced=bool(order.pos_synced),
            pos_synced_at=order.pos_synced_at,
            delivered_at=order.delivered_at,
            cancelled_at=order.cancelled_at,
            cancelled_by=order.cancelled_by,
            cancellation_reason=order.cancellation_reason,
            created_at=order.created_at,
            updated_at=order.updated_at,
            customer_phone=customer.phone if customer is not None else None,
            customer_name=customer.name if customer is not None else None,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "tenant_id": self.tenant_id,
            "customer_id": self.customer_id,
            "customer_phone": self.customer_phone,
            "customer_name": self.customer_name,
            "branch_id": self.branch_id,
            "warehouse_id": self.warehouse_id,
            "status": self.status,
            "subtotal": money_str(self.subtotal),
            "tax_total": money_str(self.tax_total),
            "discount_total": money_str(self.discount_total),
            "delivery_fee": money_str(self.delivery_fee),
            "grand_total": money_str(self.grand_total),
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "delivery_address": self.delivery_address,
            "delivery_lat": self.delivery_lat,
            "delivery_lng": self.delivery_lng,
            "delivery_notes": self.delivery_notes,
            "pos_synced": self.pos_synced,
            "pos_synced_at": to_utc_z(self.pos_synced_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "cancellation_reason": self.cancellation_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


@dataclass(frozen=True)
class OrderDetail:
    order: OrderRecord
    items: list[OrderItemRecord] = field(default_factory=list)
    status_history: list[StatusHistoryRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = self.order.to_dict()
        data["items"] = [item.to_dict() for item in self.items]
        data["status_history"] = [row.to_dict() for row in self.status_history]
        return data


@dataclass(frozen=True)
class PlacementResult:
    order: OrderDetail
    duplicate: bool

    def to_dict(self) -> dict:
        data = self.order.to_dict()
        data["duplicate"] = self.duplicate
        return data


@dataclass(frozen=True)
class OrderPage:
    items: list[OrderRecord]
    next_cursor: str | None
    has_more: bool

    def to_dict(self) -> dict:
        return {
            "items": [order.to_dict() for order in self.items],
            "next_cursor": self.next_cursor,
            "has_more": self.has_more,
        }


@dataclass(frozen=True)
class TransitionResult:
    order_id: str
    from_status: str
    to_status: str

    def to_dict(self) -> dict:
        return {
            "success": True,
            "order_id": self.order_id,
            "from": self.from_status,
            "to": self.to_status,
        }


@dataclass
class _PricedLine:
    line_number: int
    product_id: str
    product_name: str
    product_sku: str | None
    quantity: int
    unit_price: Decimal
    tax_amount: Decimal
    subtotal: Decimal
    record: object


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class OrderService:
    """
    Order engine bound to one DatabaseService.

    Every public method takes tenant_id explicitly and binds it as the tenant
    context for the data access it performs.
    """

    def __init__(self, database_service, *, event_broker=None, logger=None):
        self._db = database_service
        self._events = event_broker
        self._logger = logger

    def _log_info(self, message: str, *args) -> None:
        if self._logger is not None:
            self._logger.info(message, *args)

    def _scoped(self, tenant_id: str, operation: Callable, **principal):
        validate_tenant_id(tenant_id)
        return run_with_tenant_context(TenantContext(tenant_id, **principal), operation)

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------

    def place_order(self, tenant_id: str, order_input: PlaceOrderInput) -> PlacementResult:
        if not order_input.items:
            raise ValidationError("Order must contain at least one item")
        for line in order_input.items:
            if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
                raise ValidationError("Item quantity must be a positive integer",
                                      details={"product_id": line.product_id})

        return self._scoped(
            tenant_id,
            lambda: self._place_order(tenant_id, order_input),
            customer_id=order_input.customer_id,
        )

    def _place_order(self, tenant_id: str, order_input: PlaceOrderInput) -> PlacementResult:
        key = order_input.idempotency_key
        if key:
            existing = self._find_by_idempotency_key(tenant_id, key)
            if existing is not None:
                self._log_info("Duplicate submission for idempotency key %s returned order %s",
                               key, existing.order.order_number)
                return PlacementResult(order=existing, duplicate=True)

        try:
            detail = self._db.transaction(
                lambda handle: self._place_order_tx(handle, tenant_id, order_input)
            )
        except IntegrityError:
            if not key:
                raise
            existing = self._find_by_idempotency_key(tenant_id, key)
            if existing is None:
                raise
            self._log_info("Idempotency race on key %s resolved to order %s",
                           key, existing.order.order_number)
            return PlacementResult(order=existing, duplicate=True)

        self._log_info(
            "Placed mobile order %s for tenant %s (%d items, grand total %s)",
            detail.order.order_number, tenant_id, len(detail.items), detail.order.grand_total,
        )
        self._publish_new_order(tenant_id, detail.order)
        return PlacementResult(order=detail, duplicate=False)

    def _place_order_tx(self, handle, tenant_id: str, order_input: PlaceOrderInput) -> OrderDetail:
        session = handle.session

        customer = session.execute(
            select(Customer).where(Customer.id == order_input.customer_id)
        ).scalar_one_or_none()
        if customer is None or customer.tenant_id != tenant_id:
            raise OrderError("Customer not found")

        settings = get_shop_settings(handle, tenant_id)
        if settings.persisted and not settings.is_enabled:
            raise OrderingDisabledError("Mobile ordering is not available for this shop.")

        warehouse = resolve_warehouse(handle, tenant_id, order_input.branch_id)

        # Validate and price every line before writing anything
        priced: list[_PricedLine] = []
        records: dict[str, object] = {}
        requested: dict[str, int] = {}
        subtotal = Decimal("0")
        tax_total = Decimal("0")

        for index, line in enumerate(order_input.items, start=1):
            product = get_orderable_product(handle, tenant_id, line.product_id)
            if product is None:
                raise ProductUnavailableError(
                    f"Product not found: {line.product_id}",
                    details={"product_id": line.product_id},
                )

            unit_price = effective_price(product)
            tax_rate = Decimal(str(product.tax_rate or 0))
            line_subtotal = unit_price * line.quantity
            line_tax = line_subtotal * tax_rate / Decimal(100)

            record = None
            if warehouse is not None:
                if product.id not in records:
                    records[product.id] = inventory_service.lock_record(
                        handle, tenant_id, product.id, warehouse.id
                    )
                record = records[product.id]

            if record is not None:
                already = requested.get(product.id, 0)
                available = record.available - already
                if available < line.quantity:
                    available = max(0, available)
                    raise InsufficientStockError(
                        f'Insufficient stock for "{product.name}". '
                        f"Available: {available}, Requested: {line.quantity}",
                        details={
                            "product_id": product.id,
                            "product_name": product.name,
                            "available": available,
                            "requested": line.quantity,
                        },
                    )
                requested[product.id] = already + line.quantity

            priced.append(_PricedLine(
                line_number=index,
                product_id=product.id,
                product_name=product.name,
                product_sku=product.sku,
                quantity=line.quantity,
                unit_price=unit_price,
                tax_amount=to_money(line_tax),
                subtotal=to_money(line_subtotal),
                record=record,
            ))
            subtotal += line_subtotal
            tax_total += line_tax

        if settings.minimum_order_amount > 0 and subtotal < settings.minimum_order_amount:
            raise MinimumOrderError(
                f"Minimum order amount is {settings.minimum_order_amount}. "
                f"Your cart total is {to_money(subtotal)}.",
                details={
                    "minimum_order_amount": money_str(settings.minimum_order_amount),
                    "subtotal": money_str(subtotal),
                },
            )

        delivery_fee = settings.delivery_fee_for(subtotal)
        subtotal = to_money(subtotal)
        tax_total = to_money(tax_total)
        grand_total = to_money(subtotal + tax_total + delivery_fee)

        now = utcnow()
        order = Order(
            id=generate_id("mord"),
            order_number=generate_order_number(),
            tenant_id=tenant_id,
            customer_id=customer.id,
            branch_id=order_input.branch_id,
            warehouse_id=warehouse.id if warehouse is not None else None,
            status="Pending",
            subtotal=subtotal,
            tax_total=tax_total,
            discount_total=ZERO_MONEY,
            delivery_fee=delivery_fee,
            grand_total=grand_total,
            payment_method=order_input.payment_method or "COD",
            payment_status="Unpaid",
            delivery_address=order_input.delivery_address,
            delivery_lat=order_input.delivery_lat,
            delivery_lng=order_input.delivery_lng,
            delivery_notes=order_input.delivery_notes,
            idempotency_key=order_input.idempotency_key,
            pos_synced=False,
            created_at=now,
            updated_at=now,
        )
        handle.add(order)
        handle.flush()

        items: list[OrderItem] = []
        for line in priced:
            item = OrderItem(
                id=generate_id("moi"),
                tenant_id=tenant_id,
                order_id=order.id,
                product_id=line.product_id,
                product_name=line.product_name,
                product_sku=line.product_sku,
                quantity=line.quantity,
                unit_price=line.unit_price,
                tax_amount=line.tax_amount,
                discount_amount=ZERO_MONEY,
                subtotal=line.subtotal,
                stock_tracked=line.record is not None,
                line_number=line.line_number,
                created_at=now,
            )
            handle.add(item)
            items.append(item)

            if line.record is not None:
                inventory_service.reserve(handle, line.record, line.quantity, reference_id=order.id)

        history = OrderStatusHistory(
            id=generate_id("mosh"),
            tenant_id=tenant_id,
            order_id=order.id,
            from_status=None,
            to_status="Pending",
            changed_by="system",
            changed_by_type="system",
            created_at=now,
        )
        handle.add(history)
        handle.flush()

        return OrderDetail(
            order=OrderRecord.from_model(order, customer),
            items=[OrderItemRecord.from_model(item) for item in items],
            status_history=[StatusHistoryRecord.from_model(history)],
        )

    def _find_by_idempotency_key(self, tenant_id: str, key: str) -> OrderDetail | None:
        def _read(handle):
            order_id = handle.session.execute(
                select(Order.id).where(Order.tenant_id == tenant_id, Order.idempotency_key == key)
            ).scalar_one_or_none()
            if order_id is None:
                return None
            return self._load_detail(handle, tenant_id, order_id)

        return self._db.transaction(_read, read_only=True)

    def _publish_new_order(self, tenant_id: str, order: OrderRecord) -> None:
        if self._events is None:
            return
        self._events.publish(tenant_id, {
            "type": "new_order",
            "tenant_id": tenant_id,
            "order_id": order.id,
            "order_number": order.order_number,
            "status": order.status,
            "grand_total": money_str(order.grand_total),
            "created_at": to_utc_z(order.created_at),
        })

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def update_order_status(
        self,
        tenant_id: str,
        order_id: str,
        status: str,
        actor: str,
        actor_type: str = "shop_user",
        note: str | None = None,
    ) -> TransitionResult:
        """
        Move an order to status and apply its inventory side effects.

        Raises ValidationError (unknown status), OrderNotFoundError or
        InvalidTransitionError; on any error nothing is written.
        """
        return self._transition(tenant_id, order_id, status, actor, actor_type, note)

    def cancel_by_customer(
        self,
        tenant_id: str,
        order_id: str,
        customer_id: str,
        reason: str | None = None,
    ) -> TransitionResult:
        def _guard(order: Order) -> None:
            if order.customer_id != customer_id:
                raise NotOrderOwnerError("Not your order")
            if order.status != "Pending":
                raise CancellationNotPermittedError(
                    "Only pending orders can be cancelled. Contact the shop for assistance.",
                    details={"status": order.status},
                )

        return self._transition(
            tenant_id, order_id, "Cancelled", customer_id, "customer",
            reason or "Cancelled by customer", guard=_guard,
        )

    def _transition(self, tenant_id, order_id, status, actor, actor_type, note, guard=None) -> TransitionResult:
        if status not in VALID_STATUSES:
            raise ValidationError(
                f"Invalid status: {status}. Valid: {', '.join(VALID_STATUSES)}",
                details={"valid_statuses": list(VALID_STATUSES)},
            )

        def _op(handle) -> TransitionResult:
            order = handle.lock(
                select(Order).where(Order.id == order_id, Order.tenant_id == tenant_id)
            )
            if order is None:
                raise OrderNotFoundError("Order not found")

            if guard is not None:
                guard(order)

            current = order.status
            allowed = VALID_TRANSITIONS.get(current, ())
            if status not in allowed:
                raise InvalidTransitionError(
                    f'Cannot transition from "{current}" to "{status}". '
                    f"Allowed: {', '.join(allowed) or 'none (terminal state)'}",
                    details={"current_status": current, "allowed": list(allowed)},
                )

            now = utcnow()
            order.status = status
            order.updated_at = now
            if status == "Delivered":
                order.delivered_at = now
                order.payment_status = "Paid"
            elif status == "Cancelled":
                order.cancelled_at = now
                order.cancelled_by = "customer" if actor_type == "customer" else "shop"
                if note:
                    order.cancellation_reason = note

            handle.add(OrderStatusHistory(
                id=generate_id("mosh"),
                tenant_id=tenant_id,
                order_id=order.id,
                from_status=current,
                to_status=status,
                changed_by=actor,
                changed_by_type=actor_type,
                note=note,
                created_at=now,
            ))

            if status == "Confirmed":
                self._apply_inventory_effect(handle, order, inventory_service.consume_reservation)
            elif status == "Cancelled":
                self._apply_inventory_effect(handle, order, inventory_service.release_reservation)

            handle.flush()
            return TransitionResult(order_id=order.id, from_status=current, to_status=status)

        principal = {"customer_id": actor} if actor_type == "customer" else {"user_id": actor}
        result = self._scoped(tenant_id, lambda: self._db.transaction(_op), **principal)
        self._log_info("Order %s moved %s -> %s by %s %s",
                       result.order_id, result.from_status, result.to_status, actor_type, actor)
        return result

    def _apply_inventory_effect(self, handle, order: Order, effect) -> None:
        if order.warehouse_id is None:
            return

        items = handle.session.execute(
            select(OrderItem)
            .where(
                OrderItem.order_id == order.id,
                OrderItem.tenant_id == order.tenant_id,
                OrderItem.stock_tracked.is_(True),
            )
            .order_by(OrderItem.line_number.asc())
        ).scalars().all()

        for item in items:
            record = inventory_service.lock_record(
                handle, order.tenant_id, item.product_id, order.warehouse_id
            )
            if record is None:
                if self._logger is not None:
                    self._logger.warning(
                        "Inventory record missing for product %s in warehouse %s (order %s)",
                        item.product_id, order.warehouse_id, order.id,
                    )
                continue
            effect(handle, record, item.quantity, reference_id=order.id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _load_detail(self, handle, tenant_id: str, order_id: str) -> OrderDetail | None:
        row = handle.session.execute(
            select(Order, Customer)
            .outerjoin(Customer, Customer.id == Order.customer_id)
            .where(Order.id == order_id, Order.tenant_id == tenant_id)
        ).first()
        if row is None:
            return None
        order, customer = row

        items = handle.session.execute(
            select(OrderItem)
            .where(OrderItem.order_id == order_id, OrderItem.tenant_id == tenant_id)
            .order_by(OrderItem.line_number.asc(), OrderItem.created_at.asc())
        ).scalars().all()

        history = handle.session.execute(
            select(OrderStatusHistory)
            .where(OrderStatusHistory.order_id == order_id, OrderStatusHistory.tenant_id == tenant_id)
            .order_by(OrderStatusHistory.created_at.asc(), OrderStatusHistory.id.asc())
        ).scalars().all()

        return OrderDetail(
            order=OrderRecord.from_model(order, customer),
            items=[OrderItemRecord.from_model(item) for item in items],
            status_history=[StatusHistoryRecord.from_model(h) for h in history],
        )

    def get_order_detail(self, tenant_id: str, order_id: str) -> OrderDetail | None:
        return self._scoped(
            tenant_id,
            lambda: self._db.transaction(
                lambda handle: self._load_detail(handle, tenant_id, order_id), read_only=True
            ),
        )

    def get_customer_orders(
        self,
        tenant_id: str,
        customer_id: str,
        cursor: str | None = None,
        limit: int = 20,
    ) -> OrderPage:
        """Customer's orders, newest first, keyset-paginated on (created_at, id)."""
        limit = max(1, min(limit, CUSTOMER_PAGE_MAX))

        stmt = select(Order).where(Order.tenant_id == tenant_id, Order.customer_id == customer_id)
        if cursor:
            stmt = stmt.where(before_cursor(Order.created_at, Order.id, cursor))
        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit + 1)

        def _read(handle) -> OrderPage:
            orders = handle.session.execute(stmt).scalars().all()
            has_more = len(orders) > limit
            page = orders[:limit]
            next_cursor = None
            if has_more and page:
                next_cursor = encode_cursor(page[-1].created_at, page[-1].id)
            return OrderPage(
                items=[OrderRecord.from_model(order) for order in page],
                next_cursor=next_cursor,
                has_more=has_more,
            )

        return self._scoped(
            tenant_id,
            lambda: self._db.transaction(_read, read_only=True),
            customer_id=customer_id,
        )

    def list_orders_for_pos(self, tenant_id: str, status: str | None = None,
                            limit: int = POS_LIST_LIMIT) -> list[OrderRecord]:
        if status is not None and status not in VALID_STATUSES:
            raise ValidationError(f"Invalid status: {status}. Valid: {', '.join(VALID_STATUSES)}")
        limit = max(1, min(limit, POS_LIST_LIMIT))

        stmt = (
            select(Order, Customer)
            .outerjoin(Customer, Customer.id == Order.customer_id)
            .where(Order.tenant_id == tenant_id)
        )
        if status is not None:
            stmt = stmt.where(Order.status == status)
        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit)

        def _read(handle):
            return [OrderRecord.from_model(order, customer)
                    for order, customer in handle.session.execute(stmt).all()]

        return self._scoped(tenant_id, lambda: self._db.transaction(_read, read_only=True))

    def get_unsynced_orders(self, tenant_id: str) -> list[OrderRecord]:
        """Orders the POS has not pulled yet, oldest first."""
        stmt = (
            select(Order, Customer)
            .outerjoin(Customer, Customer.id == Order.customer_id)
            .where(Order.tenant_id == tenant_id, Order.pos_synced.is_(False))
            .order_by(Order.created_at.asc(), Order.id.asc())
        )

        def _read(handle):
            return [OrderRecord.from_model(order, customer)
                    for order, customer in handle.session.execute(stmt).all()]

        return self._scoped(tenant_id, lambda: self._db.transaction(_read, read_only=True))

    def mark_order_synced(self, tenant_id: str, order_id: str) -> None:
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.tenant_id == tenant_id)
            .values(pos_synced=True, pos_synced_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        updated = self._scoped(tenant_id, lambda: self._db.execute(stmt))
        if not updated:
            raise OrderNotFoundError("Order not found")
