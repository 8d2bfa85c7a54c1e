# Overview: Flask API routes for the mobile storefront; public catalog by shop slug plus customer orders.

# backend/retailcore/routes/mobile.py
"""Mobile ordering API: public shop pages and customer-authenticated orders"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_customer, resolve_shop_tenant
from ..services import catalog_service, customer_service
from ..services.order_service import OrderError
from ..services.settings_service import get_shop_settings
from ..validation import ValidationError, parse_limit, parse_place_order
from .responses import error_response

mobile_bp = Blueprint("mobile", __name__, url_prefix="/api/mobile")


def _database_service():
    return current_app.extensions["database_service"]


def _order_service():
    return current_app.extensions["order_service"]


# ---------------------------------------------------------------------------
# Public shop pages (tenant resolved from the slug)
# ---------------------------------------------------------------------------

@mobile_bp.get("/<shop_slug>/info")
@resolve_shop_tenant
def shop_info_route():
    """Shop identity and ordering rules. 404 when mobile ordering is off."""
    try:
        settings = _database_service().transaction(
            lambda handle: get_shop_settings(handle, g.tenant_id), read_only=True
        )
        if not settings.is_enabled:
            return jsonify({"error": "Mobile ordering is not available for this shop."}), 404

        public_settings = settings.to_dict()
        public_settings.pop("tenant_id")
        public_settings.pop("is_enabled")

        return jsonify({
            "shop": {"name": g.shop.name, "slug": g.shop.slug},
            "settings": public_settings,
        }), 200

    except Exception:
        current_app.logger.exception("Failed to load shop info")
        return jsonify({"error": "Internal server error"}), 500


@mobile_bp.get("/<shop_slug>/categories")
@resolve_shop_tenant
def list_categories_route():
    try:
        categories = catalog_service.list_mobile_categories(_database_service(), g.tenant_id)
        return jsonify({"categories": categories}), 200

    except Exception:
        current_app.logger.exception("Failed to list mobile categories")
        return jsonify({"error": "Internal server error"}), 500


@mobile_bp.get("/<shop_slug>/products")
@resolve_shop_tenant
def list_products_route():
    try:
        page = catalog_service.list_mobile_products(
            _database_service(),
            g.tenant_id,
            cursor=request.args.get("cursor") or None,
            limit=parse_limit(request.args.get("limit"), default=20, maximum=catalog_service.MOBILE_PAGE_MAX),
            search=(request.args.get("search") or "").strip() or None,
            category_id=request.args.get("category_id") or None,
        )
        return jsonify(page), 200

    except ValidationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list mobile products")
        return jsonify({"error": "Internal server error"}), 500


@mobile_bp.get("/<shop_slug>/products/<product_id>")
@resolve_shop_tenant
def get_product_route(product_id: str):
    try:
        product = catalog_service.get_mobile_product(_database_service(), g.tenant_id, product_id)
        if product is None:
            return jsonify({"error": "Product not found"}), 404
        return jsonify(product), 200

    except Exception:
        current_app.logger.exception("Failed to load mobile product")
        return jsonify({"error": "Internal server error"}), 500


# ---------------------------------------------------------------------------
# Customer profile
# ---------------------------------------------------------------------------

@mobile_bp.get("/profile")
@require_customer
def get_profile_route():
    try:
        customer_id = g.current_customer.id
        profile = _database_service().transaction(
            lambda handle: customer_service.get_profile(handle, g.tenant_id, customer_id),
            read_only=True,
        )
        if profile is None:
            return jsonify({"error": "Customer not found"}), 404
        return jsonify(profile), 200

    except Exception:
        current_app.logger.exception("Failed to load customer profile")
        return jsonify({"error": "Internal server error"}), 500


@mobile_bp.put("/profile")
@require_customer
def update_profile_route():
    try:
        data = request.get_json(silent=True)
        customer_id = g.current_customer.id
        profile = _database_service().transaction(
            lambda handle: customer_service.update_profile(handle, g.tenant_id, customer_id, data)
        )
        if profile is None:
            return jsonify({"error": "Customer not found"}), 404
        return jsonify(profile), 200

    except ValidationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update customer profile")
        return jsonify({"error": "Internal server error"}), 500


# ---------------------------------------------------------------------------
# Customer orders (tenant and customer come from the session)
# ---------------------------------------------------------------------------

@mobile_bp.post("/orders")
@require_customer
def place_order_route():
    """
    Place an order.

    201 with the new order; 200 with duplicate=true when the idempotency key
    was already used.
    """
    try:
        order_input = parse_place_order(request.get_json(silent=True), customer_id=g.current_customer.id)
        result = _order_service().place_order(g.tenant_id, order_input)

        if result.duplicate:
            body = result.to_dict()
            body["message"] = "Order already placed"
            return jsonify(body), 200

        return jsonify(result.to_dict()), 201

    except (ValidationError, OrderError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to place mobile order")
        return jsonify({"error": "Internal server error"}), 500


@mobile_bp.get("/orders")
@require_customer
def list_orders_route():
    try:
        page = _order_service().get_customer_orders(
            g.tenant_id,
            g.current_customer.id,
            cursor=request.args.get("cursor") or None,
            limit=parse_limit(request.args.get("limit"), default=20, maximum=100),
        )
        return jsonify(page.to_dict()), 200

    except ValidationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list customer orders")
        return jsonify({"error": "Internal server error"}), 500


@mobile_bp.get("/orders/<order_id>")
@require_customer
def get_order_route(order_id: str):
    try:
        detail = _order_service().get_order_detail(g.tenant_id, order_id)
        if detail is None:
            return jsonify({"error": "Order not found"}), 404

        # Customers only ever see their own orders
        if detail.order.customer_id != g.current_customer.id:
            return jsonify({"error": "Access denied"}), 403

        return jsonify(detail.to_dict()), 200

    except Exception:
        current_app.logger.exception("Failed to load customer order")
        return jsonify({"error": "Internal server error"}), 500


@mobile_bp.post("/orders/<order_id>/cancel")
@require_customer
def cancel_order_route(order_id: str):
    try:
        data = request.get_json(silent=True) or {}
        reason = data.get("reason") if isinstance(data, dict) else None
        if reason is not None:
            reason = str(reason).strip() or None
        result = _order_service().cancel_by_customer(
            g.tenant_id, order_id, g.current_customer.id, reason
        )
        return jsonify(result.to_dict()), 200

    except (ValidationError, OrderError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel customer order")
        return jsonify({"error": "Internal server error"}), 500
