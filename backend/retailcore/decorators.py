# Overview: Request decorators that authenticate callers and establish the tenant context for routes.

from functools import wraps

from flask import g, jsonify, request
from sqlalchemy import select

from .extensions import db
from .models import Tenant
from .services import session_service
from .services.tenant_service import TenantContext, tenant_scope

STAFF_ROLES = ("admin", "pos_cashier", "accountant")


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def require_auth(f):
    """
    Require a staff session and establish tenant context.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.current_user: The authenticated User
    - g.tenant_id: Tenant captured by the session (never taken from input)
    - g.session_context: The full SessionContext

    The view runs inside tenant_scope(), so the data access layer scopes
    every statement to g.tenant_id.

    SECURITY: Returns 401 for a missing, invalid or expired token and for
    customer tokens.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if context is None or context.subject_type != session_service.SUBJECT_USER:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.tenant_id = context.tenant_id
        g.session_context = context

        with tenant_scope(TenantContext(context.tenant_id, user_id=context.user.id)):
            return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require the authenticated staff user to hold one of roles."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "current_user"):
                return jsonify({"error": "Authentication required"}), 401

            if g.current_user.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_customer(f):
    """
    Require a mobile customer session.

    Sets g.current_customer and g.tenant_id, and runs the view inside the
    session's tenant scope. Blocked customers get 403.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if context is None or context.subject_type != session_service.SUBJECT_CUSTOMER:
            return jsonify({"error": "Invalid or expired token"}), 401

        customer = context.customer
        if customer.is_blocked:
            return jsonify({"error": "Account is blocked. Contact the shop."}), 403

        g.current_customer = customer
        g.tenant_id = context.tenant_id
        g.session_context = context

        with tenant_scope(TenantContext(context.tenant_id, customer_id=customer.id)):
            return f(*args, **kwargs)

    return decorated_function


def resolve_shop_tenant(f):
    """
    Resolve the tenant from the <shop_slug> URL segment for public routes.

    Sets g.shop and g.tenant_id; unknown or inactive shops get 404.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        slug = kwargs.pop("shop_slug", None)
        shop = None
        if slug:
            shop = db.session.execute(
                select(Tenant).where(Tenant.slug == slug, Tenant.is_active.is_(True))
            ).scalar_one_or_none()
        if shop is None:
            return jsonify({"error": "Shop not found"}), 404

        g.shop = shop
        g.tenant_id = shop.id

        with tenant_scope(TenantContext(shop.id)):
            return f(*args, **kwargs)

    return decorated_function
