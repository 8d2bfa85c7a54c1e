# Overview: Pytest coverage for the order status state machine and its inventory side effects.

from decimal import Decimal

import pytest
from sqlalchemy import select

from retailcore.models import InventoryMovement, InventoryRecord, OrderStatusHistory
from retailcore.services.order_service import (
    VALID_TRANSITIONS,
    CancellationNotPermittedError,
    InvalidTransitionError,
    NotOrderOwnerError,
    OrderNotFoundError,
)
from retailcore.validation import ValidationError


@pytest.fixture
def stocked(milk, set_stock, warehouse_a):
    """Milk with 10 on hand in shop A's warehouse."""
    return set_stock(milk, warehouse_a, 10)


@pytest.fixture
def pending_order(place, milk, stocked, customer_a):
    """Pending order for 3 milk (3 reserved)."""
    return place(customer_a.tenant_id, customer_a.id, [(milk.id, 3)]).order.order


def _counters(db_session, record_id):
    db_session.expire_all()
    record = db_session.get(InventoryRecord, record_id)
    return record.quantity_on_hand, record.quantity_reserved


def _movement_types(db_session, order_id):
    db_session.expire_all()
    rows = db_session.execute(
        select(InventoryMovement)
        .where(InventoryMovement.reference_id == order_id)
        .order_by(InventoryMovement.created_at, InventoryMovement.id)
    ).scalars().all()
    return sorted((m.type, m.quantity) for m in rows)


class TestTransitions:

    def test_happy_path_to_delivered(self, order_service, pending_order, admin_a):
        for status in ("Confirmed", "Packed", "OutForDelivery", "Delivered"):
            result = order_service.update_order_status(pending_order.tenant_id, pending_order.id, status, admin_a.id)
            assert result.to_status == status

        detail = order_service.get_order_detail(pending_order.tenant_id, pending_order.id)
        assert detail.order.status == "Delivered"
        assert detail.order.delivered_at is not None
        assert detail.order.payment_status == "Paid"
        assert [(h.from_status, h.to_status) for h in detail.status_history] == [
            (None, "Pending"),
            ("Pending", "Confirmed"),
            ("Confirmed", "Packed"),
            ("Packed", "OutForDelivery"),
            ("OutForDelivery", "Delivered"),
        ]

    def test_result_payload(self, order_service, pending_order, admin_a):
        result = order_service.update_order_status(pending_order.tenant_id, pending_order.id, "Confirmed", admin_a.id)

        assert result.to_dict() == {
            "success": True,
            "order_id": pending_order.id,
            "from": "Pending",
            "to": "Confirmed",
        }

    def test_invalid_transition_changes_nothing(self, db_session, order_service, pending_order, stocked, admin_a):
        with pytest.raises(InvalidTransitionError) as excinfo:
            order_service.update_order_status(pending_order.tenant_id, pending_order.id, "Delivered", admin_a.id)

        assert str(excinfo.value) == 'Cannot transition from "Pending" to "Delivered". Allowed: Confirmed, Cancelled'
        detail = order_service.get_order_detail(pending_order.tenant_id, pending_order.id)
        assert detail.order.status == "Pending"
        assert len(detail.status_history) == 1
        assert _counters(db_session, stocked.id) == (10, 3)

    def test_terminal_states_have_no_successors(self, order_service, pending_order, admin_a):
        order_service.update_order_status(pending_order.tenant_id, pending_order.id, "Cancelled", admin_a.id)

        with pytest.raises(InvalidTransitionError, match=r"none \(terminal state\)"):
            order_service.update_order_status(pending_order.tenant_id, pending_order.id, "Confirmed", admin_a.id)

    @pytest.mark.parametrize("current", list(VALID_TRANSITIONS))
    def test_self_transition_never_allowed(self, current):
        assert current not in VALID_TRANSITIONS[current]

    def test_unknown_status(self, order_service, pending_order, admin_a):
        with pytest.raises(ValidationError, match="Invalid status: Shipped"):
            order_service.update_order_status(pending_order.tenant_id, pending_order.id, "Shipped", admin_a.id)

    def test_unknown_order(self, order_service, tenant_a, admin_a):
        with pytest.raises(OrderNotFoundError):
            order_service.update_order_status(tenant_a.id, "mord_missing", "Confirmed", admin_a.id)

    def test_history_records_actor_and_note(self, db_session, order_service, pending_order, admin_a):
        order_service.update_order_status(
            pending_order.tenant_id, pending_order.id, "Confirmed", admin_a.id, note="Packing now"
        )

        row = db_session.execute(
            select(OrderStatusHistory).where(OrderStatusHistory.to_status == "Confirmed")
        ).scalar_one()
        assert row.changed_by == admin_a.id
        assert row.changed_by_type == "shop_user"
        assert row.note == "Packing now"


class TestInventoryEffects:

    def test_confirm_consumes_reservation(self, db_session, order_service, pending_order, stocked, admin_a):
        order_service.update_order_status(pending_order.tenant_id, pending_order.id, "Confirmed", admin_a.id)

        assert _counters(db_session, stocked.id) == (7, 0)
        assert _movement_types(db_session, pending_order.id) == [("MobileSale", -3), ("Reserve", 3)]

    def test_cancel_pending_releases_reservation(self, db_session, order_service, pending_order, stocked, admin_a):
        order_service.update_order_status(pending_order.tenant_id, pending_order.id, "Cancelled", admin_a.id)

        assert _counters(db_session, stocked.id) == (10, 0)
        assert _movement_types(db_session, pending_order.id) == [("ReleaseReserve", 3), ("Reserve", 3)]

    def test_cancel_after_confirm_releases_with_floor(self, db_session, order_service, pending_order, stocked, admin_a):
        order_service.update_order_status(pending_order.tenant_id, pending_order.id, "Confirmed", admin_a.id)
        order_service.update_order_status(pending_order.tenant_id, pending_order.id, "Cancelled", admin_a.id)

        # on_hand stays consumed; reserved is already 0 and stays floored there
        assert _counters(db_session, stocked.id) == (7, 0)
        assert _movement_types(db_session, pending_order.id) == [
            ("MobileSale", -3), ("ReleaseReserve", 3), ("Reserve", 3),
        ]

    def test_cancel_from_packed_releases(self, db_session, order_service, pending_order, stocked, admin_a):
        for status in ("Confirmed", "Packed", "Cancelled"):
            order_service.update_order_status(pending_order.tenant_id, pending_order.id, status, admin_a.id)

        assert _counters(db_session, stocked.id) == (7, 0)
        assert ("ReleaseReserve", 3) in _movement_types(db_session, pending_order.id)

    def test_untracked_lines_have_no_effect(self, db_session, order_service, place, make_product,
                                            tenant_a, customer_a, warehouse_a, admin_a):
        loose = make_product(tenant_a, "LOOSE", "2.00")
        order = place(tenant_a.id, customer_a.id, [(loose.id, 4)]).order.order

        order_service.update_order_status(tenant_a.id, order.id, "Confirmed", admin_a.id)

        assert _movement_types(db_session, order.id) == []

    def test_confirm_uses_order_warehouse(self, db_session, order_service, place, milk, set_stock,
                                          tenant_a, customer_a, warehouse_a, admin_a):
        from retailcore.models import Warehouse

        annex = Warehouse(id="wh_a2", tenant_id=tenant_a.id, branch_id="br-a2", name="Annex")
        db_session.add(annex)
        db_session.commit()
        main_record = set_stock(milk, warehouse_a, 10)
        annex_record = set_stock(milk, annex, 10)

        order = place(tenant_a.id, customer_a.id, [(milk.id, 2)], branch_id="br-a2").order.order
        order_service.update_order_status(tenant_a.id, order.id, "Confirmed", admin_a.id)

        assert _counters(db_session, annex_record.id) == (8, 0)
        assert _counters(db_session, main_record.id) == (10, 0)


class TestCustomerCancellation:

    def test_customer_cancels_pending(self, db_session, order_service, pending_order, stocked, customer_a):
        result = order_service.cancel_by_customer(
            pending_order.tenant_id, pending_order.id, customer_a.id, "Changed my mind"
        )

        assert result.to_status == "Cancelled"
        detail = order_service.get_order_detail(pending_order.tenant_id, pending_order.id)
        assert detail.order.cancelled_by == "customer"
        assert detail.order.cancellation_reason == "Changed my mind"
        assert detail.order.cancelled_at is not None
        assert detail.status_history[-1].changed_by_type == "customer"
        assert _counters(db_session, stocked.id) == (10, 0)

    def test_default_reason(self, order_service, pending_order, customer_a):
        order_service.cancel_by_customer(pending_order.tenant_id, pending_order.id, customer_a.id)

        detail = order_service.get_order_detail(pending_order.tenant_id, pending_order.id)
        assert detail.order.cancellation_reason == "Cancelled by customer"

    def test_other_customer_cannot_cancel(self, order_service, pending_order, customer_a2):
        with pytest.raises(NotOrderOwnerError, match="Not your order"):
            order_service.cancel_by_customer(pending_order.tenant_id, pending_order.id, customer_a2.id)

        detail = order_service.get_order_detail(pending_order.tenant_id, pending_order.id)
        assert detail.order.status == "Pending"

    def test_only_pending_orders(self, order_service, pending_order, customer_a, admin_a):
        order_service.update_order_status(pending_order.tenant_id, pending_order.id, "Confirmed", admin_a.id)

        with pytest.raises(CancellationNotPermittedError) as excinfo:
            order_service.cancel_by_customer(pending_order.tenant_id, pending_order.id, customer_a.id)

        assert str(excinfo.value) == "Only pending orders can be cancelled. Contact the shop for assistance."
        assert excinfo.value.details == {"status": "Confirmed"}

    def test_shop_cancellation_recorded_as_shop(self, order_service, pending_order, admin_a):
        order_service.update_order_status(
            pending_order.tenant_id, pending_order.id, "Cancelled", admin_a.id, note="Out of stock"
        )

        detail = order_service.get_order_detail(pending_order.tenant_id, pending_order.id)
        assert detail.order.cancelled_by == "shop"
        assert detail.order.cancellation_reason == "Out of stock"
        assert detail.order.grand_total == Decimal("30.00")
