# Overview: Pytest coverage for concurrent placement against a shared file-backed database.

"""
Concurrency Tests

Two customers race for the same stock from separate threads, each with its
own app context and session. The inventory read that precedes the
reservation holds the write lock, so exactly one order can win.
"""

import threading
from decimal import Decimal

import pytest

from retailcore import create_app
from retailcore.extensions import db
from retailcore.models import Customer, InventoryRecord, Order, Product, Tenant, Warehouse
from retailcore.services.order_service import InsufficientStockError
from retailcore.validation import OrderLineInput, PlaceOrderInput


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        'DB_RETRY_BASE_DELAY_MS': 10,
        'DB_RETRY_MAX_DELAY_MS': 50,
        'DB_RETRY_ATTEMPTS': 5,
    })
    with app.app_context():
        db.create_all()
        db.session.add_all([
            Tenant(id='shop_c', name='Shop C', slug='shop-c'),
            Warehouse(id='wh_c1', tenant_id='shop_c', name='Main'),
            Product(id='prd_c_milk', tenant_id='shop_c', sku='MILK', name='Milk', retail_price=Decimal('2.00')),
            Customer(id='cus_c1', tenant_id='shop_c', phone='+1001'),
            Customer(id='cus_c2', tenant_id='shop_c', phone='+1002'),
        ])
        db.session.flush()
        db.session.add(InventoryRecord(
            id='inv_c_milk', tenant_id='shop_c', product_id='prd_c_milk', warehouse_id='wh_c1',
            quantity_on_hand=10, quantity_reserved=0,
        ))
        db.session.commit()

    yield app

    with app.app_context():
        db.session.remove()
        db.engine.dispose()


def _race(app, customer_ids, quantity, idempotency_key=None):
    """Place one order per customer id from parallel threads; return (results, errors)."""
    barrier = threading.Barrier(len(customer_ids))
    results, errors = [], []
    lock = threading.Lock()

    def worker(customer_id):
        with app.app_context():
            service = app.extensions['order_service']
            order_input = PlaceOrderInput(
                customer_id=customer_id,
                items=[OrderLineInput(product_id='prd_c_milk', quantity=quantity)],
                idempotency_key=idempotency_key,
            )
            barrier.wait(timeout=10)
            try:
                result = service.place_order('shop_c', order_input)
                with lock:
                    results.append(result)
            except Exception as e:
                with lock:
                    errors.append(e)

    threads = [threading.Thread(target=worker, args=(cid,)) for cid in customer_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    return results, errors


class TestOversellPrevention:

    def test_two_orders_for_more_than_stock(self, file_app):
        results, errors = _race(file_app, ['cus_c1', 'cus_c2'], 6)

        assert len(results) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], InsufficientStockError)
        assert errors[0].details['available'] == 4
        assert errors[0].details['requested'] == 6

        with file_app.app_context():
            record = db.session.get(InventoryRecord, 'inv_c_milk')
            assert record.quantity_on_hand == 10
            assert record.quantity_reserved == 6
            assert db.session.query(Order).count() == 1

    def test_orders_within_stock_all_succeed(self, file_app):
        results, errors = _race(file_app, ['cus_c1', 'cus_c2'], 5)

        assert errors == []
        assert len(results) == 2

        with file_app.app_context():
            record = db.session.get(InventoryRecord, 'inv_c_milk')
            assert record.quantity_reserved == 10
            assert record.available == 0

    def test_same_idempotency_key_creates_one_order(self, file_app):
        results, errors = _race(file_app, ['cus_c1', 'cus_c1'], 2, idempotency_key='dup-key')

        assert errors == []
        assert sorted(r.duplicate for r in results) == [False, True]
        assert len({r.order.order.id for r in results}) == 1

        with file_app.app_context():
            assert db.session.query(Order).count() == 1
            assert db.session.get(InventoryRecord, 'inv_c_milk').quantity_reserved == 2
