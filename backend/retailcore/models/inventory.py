from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import utcnow, to_utc_z


class Category(db.Model):
    """Product grouping shown in the mobile catalog. Scoped by tenant_id."""
    __tablename__ = "categories"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_categories_tenant_name"),
    )

    id = db.Column(db.String(64), primary_key=True)
    tenant_id = db.Column(db.String(64), db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


class Product(db.Model):
    """
    Product master data.

    MULTI-TENANT: Products are scoped directly by tenant_id.

    PRICING:
    - retail_price is the catalog price used by the POS
    - mobile_price, when set, overrides it for the mobile channel
    - tax_rate is a percentage (e.g. 7.50)

    MOBILE CHANNEL:
    - mobile_visible hides the product from the storefront without
      deactivating it for the POS
    - mobile_description and mobile_sort_order are storefront-only fields
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "sku", name="uq_products_tenant_sku"),
        db.Index("ix_products_tenant_active", "tenant_id", "is_active"),
        db.Index("ix_products_tenant_created", "tenant_id", "created_at"),
    )

    id = db.Column(db.String(64), primary_key=True)
    tenant_id = db.Column(db.String(64), db.ForeignKey("tenants.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    category_id = db.Column(db.String(64), db.ForeignKey("categories.id"), nullable=True, index=True)

    retail_price = db.Column(db.Numeric(12, 2), nullable=False)
    mobile_price = db.Column(db.Numeric(12, 2), nullable=True)
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    mobile_visible = db.Column(db.Boolean, nullable=False, default=True)
    mobile_description = db.Column(db.String(1000), nullable=True)
    mobile_sort_order = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} tenant_id={self.tenant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sku": self.sku,
            "name": self.name,
            "category_id": self.category_id,
            "retail_price": money_str(self.retail_price),
            "mobile_price": money_str(self.mobile_price),
            "tax_rate": str(self.tax_rate) if self.tax_rate is not None else None,
            "is_active": self.is_active,
            "mobile_visible": self.mobile_visible,
            "mobile_description": self.mobile_description,
            "mobile_sort_order": self.mobile_sort_order,
            "created_at": to_utc_z(self.created_at),
        }


class InventoryRecord(db.Model):
    """
    Stock counters for one product in one warehouse.

    INVARIANTS:
    - quantity_reserved holds stock promised to unconfirmed orders
    - available = quantity_on_hand - quantity_reserved; a reservation is
      only granted when available covers it
    - every read-then-write of these counters happens under SELECT ... FOR UPDATE

    No row for a (product, warehouse) pair means stock is not tracked there.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "product_id", "warehouse_id", name="uq_inventory_tenant_product_wh"),
    )

    id = db.Column(db.String(64), primary_key=True)
    tenant_id = db.Column(db.String(64), db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.String(64), db.ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.String(64), db.ForeignKey("warehouses.id"), nullable=False, index=True)

    quantity_on_hand = db.Column(db.Integer, nullable=False, default=0)
    quantity_reserved = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def available(self) -> int:
        return self.quantity_on_hand - self.quantity_reserved

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord product_id={self.product_id} warehouse_id={self.warehouse_id} "
            f"on_hand={self.quantity_on_hand} reserved={self.quantity_reserved}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "quantity_on_hand": self.quantity_on_hand,
            "quantity_reserved": self.quantity_reserved,
            "available": self.available,
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryMovement(db.Model):
    """
    Append-only audit of inventory counter changes.

    One row per mutation; never updated or deleted. The counters on
    InventoryRecord stay authoritative for current stock.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_inventory_movements_tenant_product", "tenant_id", "product_id", "created_at"),
        db.Index("ix_inventory_movements_reference", "tenant_id", "reference_id"),
    )

    id = db.Column(db.String(64), primary_key=True)
    tenant_id = db.Column(db.String(64), db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.String(64), db.ForeignKey("products.id"), nullable=False)
    warehouse_id = db.Column(db.String(64), db.ForeignKey("warehouses.id"), nullable=False)

    type = db.Column(db.String(32), nullable=False)  # Reserve, ReleaseReserve, MobileSale, Adjustment
    quantity = db.Column(db.Integer, nullable=False)  # signed
    reference_id = db.Column(db.String(64), nullable=True)
    reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "type": self.type,
            "quantity": self.quantity,
            "reference_id": self.reference_id,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }
