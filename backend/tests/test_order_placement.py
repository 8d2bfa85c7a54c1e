# Overview: Pytest coverage for mobile order placement (pricing, stock reservation, idempotency, settings rules).

"""
Order Placement Tests

Verifies:
- Totals: grand_total = subtotal + tax_total + delivery_fee - discount_total
- Tracked stock is reserved with one Reserve movement per line
- Untracked stock (no inventory record) is accepted without reservation
- Failed placements write nothing (no order, items, movements or history)
- Idempotency keys return the original order, including the race path
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from retailcore.models import InventoryMovement, InventoryRecord, Order, OrderItem, OrderStatusHistory
from retailcore.services.order_service import (
    InsufficientStockError,
    MinimumOrderError,
    OrderingDisabledError,
    ProductUnavailableError,
)
from retailcore.validation import OrderLineInput, PlaceOrderInput, ValidationError


def _count(db_session, model):
    db_session.expire_all()
    return db_session.scalar(select(func.count()).select_from(model))


def _record(db_session, record_id):
    db_session.expire_all()
    return db_session.get(InventoryRecord, record_id)


class TestPricing:

    def test_totals_with_tax(self, place, make_product, tenant_a, customer_a, warehouse_a):
        soap = make_product(tenant_a, "SOAP", "10.00", tax_rate="7.50")

        result = place(tenant_a.id, customer_a.id, [(soap.id, 3)])
        order = result.order.order

        assert result.duplicate is False
        assert order.status == "Pending"
        assert order.subtotal == Decimal("30.00")
        assert order.tax_total == Decimal("2.25")
        assert order.delivery_fee == Decimal("0.00")
        assert order.discount_total == Decimal("0.00")
        assert order.grand_total == Decimal("32.25")
        assert order.payment_method == "COD"
        assert order.payment_status == "Unpaid"
        assert order.order_number.startswith("MO-")

    def test_mobile_price_overrides_retail(self, place, make_product, tenant_a, customer_a):
        juice = make_product(tenant_a, "JUICE", "5.00", mobile_price=Decimal("4.50"))

        result = place(tenant_a.id, customer_a.id, [(juice.id, 2)])

        assert result.order.items[0].unit_price == Decimal("4.50")
        assert result.order.order.subtotal == Decimal("9.00")

    def test_grand_total_identity_holds(self, place, make_product, shop_settings, tenant_a, customer_a):
        shop_settings(tenant_a, delivery_fee="3.99")
        a = make_product(tenant_a, "A", "1.99", tax_rate="8.25")
        b = make_product(tenant_a, "B", "0.35", tax_rate="8.25")

        order = place(tenant_a.id, customer_a.id, [(a.id, 3), (b.id, 7)]).order.order

        assert order.grand_total == order.subtotal + order.tax_total + order.delivery_fee - order.discount_total

    def test_line_snapshot(self, place, milk, tenant_a, customer_a):
        result = place(tenant_a.id, customer_a.id, [(milk.id, 2)], delivery_address="1 Main St")

        item = result.order.items[0]
        assert item.product_name == "Milk"
        assert item.product_sku == "MILK-1L"
        assert item.quantity == 2
        assert item.subtotal == Decimal("20.00")
        assert result.order.order.delivery_address == "1 Main St"
        assert [h.to_status for h in result.order.status_history] == ["Pending"]
        assert result.order.status_history[0].from_status is None
        assert result.order.status_history[0].changed_by_type == "system"


class TestSettingsRules:

    def test_delivery_fee_applied(self, place, milk, shop_settings, tenant_a, customer_a):
        shop_settings(tenant_a, delivery_fee="5.00", free_delivery_above=Decimal("100"))

        order = place(tenant_a.id, customer_a.id, [(milk.id, 2)]).order.order

        assert order.delivery_fee == Decimal("5.00")
        assert order.grand_total == Decimal("25.00")

    def test_free_delivery_above_threshold(self, place, milk, shop_settings, tenant_a, customer_a):
        shop_settings(tenant_a, delivery_fee="5.00", free_delivery_above=Decimal("100"))

        order = place(tenant_a.id, customer_a.id, [(milk.id, 12)]).order.order

        assert order.delivery_fee == Decimal("0.00")
        assert order.grand_total == Decimal("120.00")

    def test_minimum_order_rejected_without_writes(
        self, db_session, place, milk, shop_settings, set_stock, tenant_a, customer_a, warehouse_a
    ):
        shop_settings(tenant_a, minimum_order_amount="50")
        record = set_stock(milk, warehouse_a, 10)

        with pytest.raises(MinimumOrderError) as excinfo:
            place(tenant_a.id, customer_a.id, [(milk.id, 2)])

        assert str(excinfo.value) == "Minimum order amount is 50.00. Your cart total is 20.00."
        assert _count(db_session, Order) == 0
        assert _count(db_session, OrderItem) == 0
        assert _count(db_session, OrderStatusHistory) == 0
        assert _count(db_session, InventoryMovement) == 0
        assert _record(db_session, record.id).quantity_reserved == 0

    def test_ordering_disabled(self, place, milk, shop_settings, tenant_a, customer_a):
        shop_settings(tenant_a, is_enabled=False)

        with pytest.raises(OrderingDisabledError):
            place(tenant_a.id, customer_a.id, [(milk.id, 1)])

    def test_no_settings_row_still_accepts_orders(self, place, milk, tenant_a, customer_a):
        order = place(tenant_a.id, customer_a.id, [(milk.id, 1)]).order.order

        assert order.delivery_fee == Decimal("0.00")
        assert order.grand_total == Decimal("10.00")


class TestStockReservation:

    def test_tracked_stock_reserved(self, db_session, place, milk, set_stock, tenant_a, customer_a, warehouse_a):
        record = set_stock(milk, warehouse_a, 10)

        result = place(tenant_a.id, customer_a.id, [(milk.id, 4)])

        refreshed = _record(db_session, record.id)
        assert refreshed.quantity_on_hand == 10
        assert refreshed.quantity_reserved == 4
        assert result.order.order.warehouse_id == warehouse_a.id

        movements = db_session.execute(select(InventoryMovement)).scalars().all()
        assert [(m.type, m.quantity, m.reference_id) for m in movements] == [
            ("Reserve", 4, result.order.order.id)
        ]

    def test_insufficient_stock_reports_available_and_requested(
        self, db_session, place, milk, set_stock, tenant_a, customer_a, warehouse_a
    ):
        set_stock(milk, warehouse_a, 5, reserved=3)

        with pytest.raises(InsufficientStockError) as excinfo:
            place(tenant_a.id, customer_a.id, [(milk.id, 3)])

        assert str(excinfo.value) == 'Insufficient stock for "Milk". Available: 2, Requested: 3'
        assert excinfo.value.details["available"] == 2
        assert excinfo.value.details["requested"] == 3
        assert _count(db_session, Order) == 0

    def test_repeated_product_lines_share_availability(
        self, db_session, place, milk, set_stock, tenant_a, customer_a, warehouse_a
    ):
        set_stock(milk, warehouse_a, 5)

        with pytest.raises(InsufficientStockError) as excinfo:
            place(tenant_a.id, customer_a.id, [(milk.id, 3), (milk.id, 3)])

        assert excinfo.value.details["available"] == 2
        assert _count(db_session, InventoryMovement) == 0

    def test_untracked_stock_accepted(self, db_session, place, milk, tenant_a, customer_a, warehouse_a):
        result = place(tenant_a.id, customer_a.id, [(milk.id, 500)])

        assert result.order.items[0].stock_tracked is False
        assert _count(db_session, InventoryMovement) == 0
        assert _count(db_session, InventoryRecord) == 0

    def test_tenant_without_warehouse_accepts_orders(self, place, milk, tenant_a, customer_a):
        result = place(tenant_a.id, customer_a.id, [(milk.id, 1)])

        assert result.order.order.warehouse_id is None

    def test_branch_maps_to_warehouse(self, db_session, place, milk, set_stock, tenant_a, customer_a, warehouse_a):
        from retailcore.models import Warehouse

        second = Warehouse(id="wh_a2", tenant_id=tenant_a.id, branch_id="br-a2", name="Annex")
        db_session.add(second)
        db_session.commit()
        record = set_stock(milk, second, 3)

        result = place(tenant_a.id, customer_a.id, [(milk.id, 2)], branch_id="br-a2")

        assert result.order.order.warehouse_id == "wh_a2"
        assert _record(db_session, record.id).quantity_reserved == 2


class TestRejectedInput:

    def test_unknown_product(self, db_session, place, tenant_a, customer_a):
        with pytest.raises(ProductUnavailableError, match="Product not found: prd_missing"):
            place(tenant_a.id, customer_a.id, [("prd_missing", 1)])
        assert _count(db_session, Order) == 0

    def test_inactive_product(self, place, make_product, tenant_a, customer_a):
        old = make_product(tenant_a, "OLD", "1.00", is_active=False)

        with pytest.raises(ProductUnavailableError):
            place(tenant_a.id, customer_a.id, [(old.id, 1)])

    def test_empty_order(self, order_service, tenant_a, customer_a):
        with pytest.raises(ValidationError, match="at least one item"):
            order_service.place_order(tenant_a.id, PlaceOrderInput(customer_id=customer_a.id, items=[]))

    @pytest.mark.parametrize("quantity", [0, -1, True])
    def test_non_positive_quantity(self, order_service, milk, tenant_a, customer_a, quantity):
        order_input = PlaceOrderInput(
            customer_id=customer_a.id,
            items=[OrderLineInput(product_id=milk.id, quantity=quantity)],
        )
        with pytest.raises(ValidationError):
            order_service.place_order(tenant_a.id, order_input)


class TestIdempotency:

    def test_same_key_returns_original_order(
        self, db_session, place, milk, set_stock, tenant_a, customer_a, warehouse_a
    ):
        record = set_stock(milk, warehouse_a, 10)

        first = place(tenant_a.id, customer_a.id, [(milk.id, 2)], idempotency_key="key-1")
        second = place(tenant_a.id, customer_a.id, [(milk.id, 2)], idempotency_key="key-1")

        assert first.duplicate is False
        assert second.duplicate is True
        assert second.order.order.id == first.order.order.id
        assert _count(db_session, Order) == 1
        assert _record(db_session, record.id).quantity_reserved == 2

    def test_same_key_in_other_tenant_is_independent(
        self, place, milk, make_product, tenant_a, tenant_b, customer_a, customer_b
    ):
        bread = make_product(tenant_b, "BREAD", "3.00")

        a = place(tenant_a.id, customer_a.id, [(milk.id, 1)], idempotency_key="shared")
        b = place(tenant_b.id, customer_b.id, [(bread.id, 1)], idempotency_key="shared")

        assert b.duplicate is False
        assert a.order.order.id != b.order.order.id

    def test_race_past_precheck_resolves_to_winner(
        self, db_session, monkeypatch, order_service, place, milk, set_stock, tenant_a, customer_a, warehouse_a
    ):
        record = set_stock(milk, warehouse_a, 10)
        first = place(tenant_a.id, customer_a.id, [(milk.id, 2)], idempotency_key="key-race")

        real_lookup = order_service._find_by_idempotency_key
        lookups = []

        def lookup_missing_once(tenant_id, key):
            lookups.append(key)
            if len(lookups) == 1:
                return None
            return real_lookup(tenant_id, key)

        monkeypatch.setattr(order_service, "_find_by_idempotency_key", lookup_missing_once)

        second = place(tenant_a.id, customer_a.id, [(milk.id, 2)], idempotency_key="key-race")

        assert second.duplicate is True
        assert second.order.order.id == first.order.order.id
        assert len(lookups) == 2
        assert _count(db_session, Order) == 1
        assert _record(db_session, record.id).quantity_reserved == 2
