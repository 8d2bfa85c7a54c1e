from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import utcnow, to_utc_z


class Tenant(db.Model):
    """
    Multi-tenant root: every shop account is a Tenant.

    All warehouses, products, customers, orders and inventory rows carry
    tenant_id. No data may cross tenant boundaries.

    The id doubles as the row-level-security session value, so it is
    restricted to [A-Za-z0-9_-].
    """
    __tablename__ = "tenants"

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(64), nullable=True, unique=True, index=True)  # public shop identifier

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} slug={self.slug!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Warehouse(db.Model):
    """
    Stock location within a tenant.

    A branch maps to a warehouse through branch_id; mobile orders name a
    branch (or the warehouse directly) and fall back to any warehouse of
    the tenant.
    """
    __tablename__ = "warehouses"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_warehouses_tenant_name"),
        db.Index("ix_warehouses_tenant_branch", "tenant_id", "branch_id"),
    )

    id = db.Column(db.String(64), primary_key=True)
    tenant_id = db.Column(db.String(64), db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(120), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    tenant = db.relationship("Tenant", backref=db.backref("warehouses", lazy=True))

    def __repr__(self) -> str:
        return f"<Warehouse id={self.id} tenant_id={self.tenant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "branch_id": self.branch_id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }


class ShopSettings(db.Model):
    """Per-tenant mobile ordering rules (delivery fee, thresholds)."""
    __tablename__ = "shop_settings"

    tenant_id = db.Column(db.String(64), db.ForeignKey("tenants.id"), primary_key=True)

    is_enabled = db.Column(db.Boolean, nullable=False, default=True)
    delivery_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    free_delivery_above = db.Column(db.Numeric(12, 2), nullable=True)
    minimum_order_amount = db.Column(db.Numeric(12, 2), nullable=True)
    estimated_delivery_minutes = db.Column(db.Integer, nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "is_enabled": self.is_enabled,
            "delivery_fee": money_str(self.delivery_fee),
            "free_delivery_above": money_str(self.free_delivery_above),
            "minimum_order_amount": money_str(self.minimum_order_amount),
            "estimated_delivery_minutes": self.estimated_delivery_minutes,
            "updated_at": to_utc_z(self.updated_at),
        }
