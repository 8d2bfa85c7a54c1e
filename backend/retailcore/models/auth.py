from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


class User(db.Model):
    """
    Shop staff account.

    MULTI-TENANT: Users belong to exactly one tenant; usernames are unique
    within a tenant, not globally.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "username", name="uq_users_tenant_username"),
    )

    id = db.Column(db.String(64), primary_key=True)
    tenant_id = db.Column(db.String(64), db.ForeignKey("tenants.id"), nullable=False, index=True)
    username = db.Column(db.String(64), nullable=False)
    role = db.Column(db.String(32), nullable=False, default="pos_cashier")  # admin, pos_cashier, accountant

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    tenant = db.relationship("Tenant", backref=db.backref("users", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "username": self.username,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Customer(db.Model):
    """Mobile ordering customer, registered against one shop (tenant)."""
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "phone", name="uq_customers_tenant_phone"),
    )

    id = db.Column(db.String(64), primary_key=True)
    tenant_id = db.Column(db.String(64), db.ForeignKey("tenants.id"), nullable=False, index=True)
    phone = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(500), nullable=True)

    is_blocked = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "phone": self.phone,
            "name": self.name,
            "email": self.email,
            "address": self.address,
            "is_blocked": self.is_blocked,
            "created_at": to_utc_z(self.created_at),
        }


class SessionToken(db.Model):
    """
    Bearer token for a staff user or a mobile customer.

    SECURITY:
    - Only the SHA-256 hash of the token is stored
    - tenant_id is captured at creation and never changes for the session
    - subject_type is "user" (user_id set) or "customer" (customer_id set)
    """
    __tablename__ = "session_tokens"

    id = db.Column(db.String(64), primary_key=True)
    tenant_id = db.Column(db.String(64), db.ForeignKey("tenants.id"), nullable=False, index=True)
    subject_type = db.Column(db.String(16), nullable=False)
    user_id = db.Column(db.String(64), db.ForeignKey("users.id"), nullable=True, index=True)
    customer_id = db.Column(db.String(64), db.ForeignKey("customers.id"), nullable=True, index=True)

    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User")
    customer = db.relationship("Customer")
    tenant = db.relationship("Tenant")
