# Overview: Request payload parsing for the order engine; rejects malformed input before any transaction opens.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any


class ValidationError(ValueError):
    """Raised for malformed client input."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class OrderLineInput:
    product_id: str
    quantity: int


@dataclass(frozen=True)
class PlaceOrderInput:
    customer_id: str
    items: list[OrderLineInput]
    branch_id: str | None = None
    delivery_address: str | None = None
    delivery_lat: float | None = None
    delivery_lng: float | None = None
    delivery_notes: str | None = None
    payment_method: str = "COD"
    idempotency_key: str | None = None


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _to_positive_int(value: Any, label: str) -> int:
    # bool is an int subclass; true/false is never a quantity
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a positive integer")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, float) and value.is_integer():
        parsed = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
    else:
        raise ValidationError(f"{label} must be a positive integer")
    if parsed <= 0:
        raise ValidationError(f"{label} must be a positive integer")
    return parsed


def _to_float(value: Any, label: str) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number")


def parse_place_order(data: Any, *, customer_id: str) -> PlaceOrderInput:
    """
    Build a PlaceOrderInput from a JSON body.

    Accepts camelCase (mobile client) and snake_case keys.
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    def pick(snake: str, camel: str):
        return data.get(snake, data.get(camel))

    raw_items = data.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Order must contain at least one item")

    items: list[OrderLineInput] = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_id = _to_text(raw.get("product_id", raw.get("productId")))
        if not product_id:
            raise ValidationError(f"items[{index}].product_id is required")
        quantity = _to_positive_int(raw.get("quantity"), f"items[{index}].quantity")
        items.append(OrderLineInput(product_id=product_id, quantity=quantity))

    return PlaceOrderInput(
        customer_id=customer_id,
        items=items,
        branch_id=_to_text(pick("branch_id", "branchId")),
        delivery_address=_to_text(pick("delivery_address", "deliveryAddress")),
        delivery_lat=_to_float(pick("delivery_lat", "deliveryLat"), "delivery_lat"),
        delivery_lng=_to_float(pick("delivery_lng", "deliveryLng"), "delivery_lng"),
        delivery_notes=_to_text(pick("delivery_notes", "deliveryNotes")),
        payment_method=_to_text(pick("payment_method", "paymentMethod")) or "COD",
        idempotency_key=_to_text(pick("idempotency_key", "idempotencyKey")),
    )


def parse_status_update(data: Any) -> tuple[str, str | None]:
    """Return (status, note) from a status-change body."""
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    status = _to_text(data.get("status"))
    if not status:
        raise ValidationError("Status is required")
    return status, _to_text(data.get("note"))


def parse_limit(value: Any, *, default: int, maximum: int) -> int:
    """Clamp a ?limit= query value to 1..maximum; garbage falls back to default."""
    try:
        parsed = int(value) if value not in (None, "") else default
    except (TypeError, ValueError):
        parsed = default
    return max(1, min(parsed, maximum))


def parse_money(value: Any, label: str):
    """Decimal amount >= 0, or None when absent."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a number")
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{label} must be a number")
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"{label} must be a non-negative number")
    return amount
