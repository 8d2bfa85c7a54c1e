# Overview: Flask API routes for shop staff handling mobile orders; POS queue, status changes, live stream.

# backend/retailcore/routes/mobile_orders.py
"""Mobile order management API with role enforcement"""

import json

from flask import Blueprint, Response, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..services.catalog_service import update_product_mobile_settings
from ..services.order_service import OrderError
from ..services.settings_service import get_shop_settings, update_shop_settings
from ..time_utils import to_utc_z, utcnow
from ..validation import ValidationError, parse_limit, parse_status_update
from .responses import error_response

mobile_orders_bp = Blueprint("mobile_orders", __name__, url_prefix="/api/mobile-orders")


def _order_service():
    return current_app.extensions["order_service"]


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


@mobile_orders_bp.get("/stream")
@require_auth
@require_role("admin", "pos_cashier")
def order_stream_route():
    """
    Server-sent events for new mobile orders of the caller's tenant.

    Emits "connected" once, "new_order" per placement and "heartbeat" when
    nothing happened for SSE_HEARTBEAT_SECONDS.
    """
    tenant_id = g.tenant_id
    heartbeat_seconds = current_app.config["SSE_HEARTBEAT_SECONDS"]
    subscription = current_app.extensions["order_events"].subscribe(tenant_id)

    def generate():
        try:
            yield _sse({"type": "connected", "tenant_id": tenant_id})
            while True:
                event = subscription.get(timeout=heartbeat_seconds)
                if event is None:
                    event = {"type": "heartbeat", "timestamp": to_utc_z(utcnow())}
                yield _sse(event)
        finally:
            subscription.close()

    response = Response(generate(), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    response.call_on_close(subscription.close)
    return response


@mobile_orders_bp.get("/settings")
@require_auth
@require_role("admin")
def get_settings_route():
    try:
        settings = current_app.extensions["database_service"].transaction(
            lambda handle: get_shop_settings(handle, g.tenant_id), read_only=True
        )
        return jsonify(settings.to_dict()), 200

    except Exception:
        current_app.logger.exception("Failed to load mobile ordering settings")
        return jsonify({"error": "Internal server error"}), 500


@mobile_orders_bp.put("/settings")
@require_auth
@require_role("admin")
def update_settings_route():
    try:
        data = request.get_json(silent=True)
        settings = current_app.extensions["database_service"].transaction(
            lambda handle: update_shop_settings(handle, g.tenant_id, data)
        )
        current_app.logger.info("Mobile ordering settings updated for tenant %s by %s",
                                g.tenant_id, g.current_user.id)
        return jsonify(settings.to_dict()), 200

    except ValidationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update mobile ordering settings")
        return jsonify({"error": "Internal server error"}), 500


@mobile_orders_bp.put("/products/<product_id>/mobile")
@require_auth
@require_role("admin")
def update_product_mobile_route(product_id: str):
    """Storefront visibility, price override, description and sort order of one product."""
    try:
        data = request.get_json(silent=True)
        product = current_app.extensions["database_service"].transaction(
            lambda handle: update_product_mobile_settings(handle, g.tenant_id, product_id, data)
        )
        if product is None:
            return jsonify({"error": "Product not found"}), 404

        current_app.logger.info("Mobile settings of product %s updated for tenant %s by %s",
                                product_id, g.tenant_id, g.current_user.id)
        return jsonify({
            "success": True,
            "message": "Product mobile settings updated",
            "product": product,
        }), 200

    except ValidationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product mobile settings")
        return jsonify({"error": "Internal server error"}), 500


@mobile_orders_bp.get("/unsynced")
@require_auth
@require_role("admin", "pos_cashier")
def unsynced_orders_route():
    try:
        orders = _order_service().get_unsynced_orders(g.tenant_id)
        return jsonify({"orders": [order.to_dict() for order in orders]}), 200

    except Exception:
        current_app.logger.exception("Failed to load unsynced orders")
        return jsonify({"error": "Internal server error"}), 500


@mobile_orders_bp.get("")
@require_auth
@require_role("admin", "pos_cashier", "accountant")
def list_orders_route():
    """POS order list, newest first. Optional ?status= filter."""
    try:
        orders = _order_service().list_orders_for_pos(
            g.tenant_id,
            status=request.args.get("status") or None,
            limit=parse_limit(request.args.get("limit"), default=200, maximum=200),
        )
        return jsonify({"orders": [order.to_dict() for order in orders]}), 200

    except ValidationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list mobile orders")
        return jsonify({"error": "Internal server error"}), 500


@mobile_orders_bp.get("/<order_id>")
@require_auth
@require_role("admin", "pos_cashier", "accountant")
def get_order_route(order_id: str):
    try:
        detail = _order_service().get_order_detail(g.tenant_id, order_id)
        if detail is None:
            return jsonify({"error": "Order not found"}), 404
        return jsonify(detail.to_dict()), 200

    except Exception:
        current_app.logger.exception("Failed to load mobile order")
        return jsonify({"error": "Internal server error"}), 500


@mobile_orders_bp.put("/<order_id>/status")
@require_auth
@require_role("admin", "pos_cashier")
def update_status_route(order_id: str):
    """
    Move an order through its lifecycle.

    409 when the transition is not allowed from the current status.
    """
    try:
        status, note = parse_status_update(request.get_json(silent=True))
        result = _order_service().update_order_status(
            g.tenant_id, order_id, status, g.current_user.id, "shop_user", note
        )
        return jsonify(result.to_dict()), 200

    except (ValidationError, OrderError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update mobile order status")
        return jsonify({"error": "Internal server error"}), 500


@mobile_orders_bp.put("/<order_id>/synced")
@require_auth
@require_role("admin", "pos_cashier")
def mark_synced_route(order_id: str):
    try:
        _order_service().mark_order_synced(g.tenant_id, order_id)
        return jsonify({"success": True}), 200

    except OrderError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark mobile order synced")
        return jsonify({"error": "Internal server error"}), 500
