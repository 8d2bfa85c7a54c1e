from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow


class Order(db.Model):
    """
    Mobile purchase order.

    LIFECYCLE: created as Pending inside the placement transaction, then moved
    only through the status state machine. Delivered and Cancelled are
    terminal statuses; orders are never deleted.

    IDEMPOTENCY: (tenant_id, idempotency_key) is unique. It is the only guard
    against duplicate orders when a client retries the same submission.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "idempotency_key", name="uq_orders_tenant_idempotency_key"),
        db.UniqueConstraint("tenant_id", "order_number", name="uq_orders_tenant_order_number"),
        db.Index("ix_orders_tenant_customer_created", "tenant_id", "customer_id", "created_at", "id"),
        db.Index("ix_orders_tenant_status_created", "tenant_id", "status", "created_at"),
        db.Index("ix_orders_tenant_pos_synced", "tenant_id", "pos_synced"),
    )

    id = db.Column(db.String(64), primary_key=True)
    order_number = db.Column(db.String(32), nullable=False)
    tenant_id = db.Column(db.String(64), db.ForeignKey("tenants.id"), nullable=False, index=True)
    customer_id = db.Column(db.String(64), db.ForeignKey("customers.id"), nullable=False)
    branch_id = db.Column(db.String(64), nullable=True)
    # Warehouse the reservation was taken against (None: no warehouse, stock untracked)
    warehouse_id = db.Column(db.String(64), db.ForeignKey("warehouses.id"), nullable=True)

    status = db.Column(db.String(20), nullable=False, default="Pending")

    # Money (2dp, rounded half-up before persisting)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    tax_total = db.Column(db.Numeric(12, 2), nullable=False)
    discount_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    delivery_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    grand_total = db.Column(db.Numeric(12, 2), nullable=False)

    payment_method = db.Column(db.String(30), nullable=False, default="COD")
    payment_status = db.Column(db.String(16), nullable=False, default="Unpaid")

    delivery_address = db.Column(db.String(500), nullable=True)
    delivery_lat = db.Column(db.Float, nullable=True)
    delivery_lng = db.Column(db.Float, nullable=True)
    delivery_notes = db.Column(db.String(500), nullable=True)

    idempotency_key = db.Column(db.String(128), nullable=True)

    pos_synced = db.Column(db.Boolean, nullable=False, default=False)
    pos_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.String(16), nullable=True)  # customer, shop
    cancellation_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"


class OrderItem(db.Model):
    """
    Line snapshot captured at placement.

    Catalog price changes after placement never touch these rows.
    """
    __tablename__ = "order_items"

    id = db.Column(db.String(64), primary_key=True)
    tenant_id = db.Column(db.String(64), db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = db.Column(db.String(64), db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.String(64), db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    product_sku = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    # Whether a Reserve movement was taken for this line
    stock_tracked = db.Column(db.Boolean, nullable=False, default=False)

    line_number = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)


class OrderStatusHistory(db.Model):
    """Append-only audit trail: one row per status change, including NULL -> Pending."""
    __tablename__ = "order_status_history"
    __table_args__ = (
        db.Index("ix_order_status_history_order", "tenant_id", "order_id", "created_at"),
    )

    id = db.Column(db.String(64), primary_key=True)
    tenant_id = db.Column(db.String(64), db.ForeignKey("tenants.id"), nullable=False)
    order_id = db.Column(db.String(64), db.ForeignKey("orders.id"), nullable=False)

    from_status = db.Column(db.String(20), nullable=True)
    to_status = db.Column(db.String(20), nullable=False)
    changed_by = db.Column(db.String(64), nullable=False)
    changed_by_type = db.Column(db.String(16), nullable=False)  # system, shop_user, customer
    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
