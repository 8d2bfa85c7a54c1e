# Overview: Per-tenant mobile ordering settings (delivery fee, free-delivery threshold, minimum order).

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import select

from ..models import ShopSettings
from ..money import ZERO_MONEY, money_str, to_money
from ..validation import ValidationError, parse_money

DEFAULT_ESTIMATED_DELIVERY_MINUTES = 60


@dataclass(frozen=True)
class ShopSettingsSnapshot:
    """
    Settings as read at one point in a transaction.

    persisted is False when the tenant never saved settings; the snapshot
    then carries defaults (ordering disabled for the public shop page, no
    fee and no minimum for placement).
    """
    tenant_id: str
    is_enabled: bool
    delivery_fee: Decimal
    free_delivery_above: Decimal | None
    minimum_order_amount: Decimal
    estimated_delivery_minutes: int
    persisted: bool

    def delivery_fee_for(self, subtotal: Decimal) -> Decimal:
        """Flat fee, waived once subtotal reaches free_delivery_above."""
        if self.free_delivery_above is not None and subtotal >= self.free_delivery_above:
            return ZERO_MONEY
        return self.delivery_fee

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "is_enabled": self.is_enabled,
            "delivery_fee": money_str(self.delivery_fee),
            "free_delivery_above": money_str(self.free_delivery_above),
            "minimum_order_amount": money_str(self.minimum_order_amount),
            "estimated_delivery_minutes": self.estimated_delivery_minutes,
        }


def _snapshot(tenant_id: str, row: ShopSettings | None) -> ShopSettingsSnapshot:
    if row is None:
        return ShopSettingsSnapshot(
            tenant_id=tenant_id,
            is_enabled=False,
            delivery_fee=ZERO_MONEY,
            free_delivery_above=None,
            minimum_order_amount=ZERO_MONEY,
            estimated_delivery_minutes=DEFAULT_ESTIMATED_DELIVERY_MINUTES,
            persisted=False,
        )
    return ShopSettingsSnapshot(
        tenant_id=tenant_id,
        is_enabled=bool(row.is_enabled),
        delivery_fee=to_money(row.delivery_fee),
        free_delivery_above=to_money(row.free_delivery_above) if row.free_delivery_above is not None else None,
        minimum_order_amount=to_money(row.minimum_order_amount),
        estimated_delivery_minutes=(
            row.estimated_delivery_minutes
            if row.estimated_delivery_minutes is not None
            else DEFAULT_ESTIMATED_DELIVERY_MINUTES
        ),
        persisted=True,
    )


def get_shop_settings(handle, tenant_id: str) -> ShopSettingsSnapshot:
    row = handle.session.execute(
        select(ShopSettings).where(ShopSettings.tenant_id == tenant_id)
    ).scalar_one_or_none()
    return _snapshot(tenant_id, row)


def update_shop_settings(handle, tenant_id: str, data: dict[str, Any]) -> ShopSettingsSnapshot:
    """
    Upsert settings from a partial payload.

    Keys that are absent keep their stored value; free_delivery_above may be
    cleared with an explicit null.
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    row = handle.lock(select(ShopSettings).where(ShopSettings.tenant_id == tenant_id))
    if row is None:
        row = ShopSettings(
            tenant_id=tenant_id,
            is_enabled=False,
            delivery_fee=ZERO_MONEY,
            minimum_order_amount=ZERO_MONEY,
            estimated_delivery_minutes=DEFAULT_ESTIMATED_DELIVERY_MINUTES,
        )
        handle.add(row)

    if "is_enabled" in data:
        if not isinstance(data["is_enabled"], bool):
            raise ValidationError("is_enabled must be a boolean")
        row.is_enabled = data["is_enabled"]

    for key in ("delivery_fee", "minimum_order_amount"):
        if key in data:
            amount = parse_money(data[key], key)
            setattr(row, key, to_money(amount))

    if "free_delivery_above" in data:
        amount = parse_money(data["free_delivery_above"], "free_delivery_above")
        row.free_delivery_above = to_money(amount) if amount is not None else None

    if "estimated_delivery_minutes" in data:
        minutes = data["estimated_delivery_minutes"]
        if minutes is not None and (isinstance(minutes, bool) or not isinstance(minutes, int) or minutes < 0):
            raise ValidationError("estimated_delivery_minutes must be a non-negative integer")
        row.estimated_delivery_minutes = minutes

    handle.flush()
    return _snapshot(tenant_id, row)
