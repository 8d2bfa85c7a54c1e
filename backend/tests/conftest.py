"""
Pytest fixtures for retailcore backend tests.

Provides test database setup, two-tenant fixtures (shop A and shop B),
catalog/stock helpers, bearer tokens and the Flask test client.
"""

from decimal import Decimal

import pytest
from sqlalchemy.pool import StaticPool

from retailcore import create_app
from retailcore.extensions import db
from retailcore.models import (
    Customer, InventoryRecord, Product, ShopSettings, Tenant, User, Warehouse,
)
from retailcore.services import session_service
from retailcore.validation import OrderLineInput, PlaceOrderInput


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SQLALCHEMY_ENGINE_OPTIONS': {
            'poolclass': StaticPool,
            'connect_args': {'check_same_thread': False},
        },
        'DB_RETRY_BASE_DELAY_MS': 1,
        'DB_RETRY_MAX_DELAY_MS': 5,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def order_service(app, db_session):
    return app.extensions['order_service']


@pytest.fixture(scope='function')
def database_service(app, db_session):
    return app.extensions['database_service']


# ---------------------------------------------------------------------------
# Tenants and locations
# ---------------------------------------------------------------------------

@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Shop A (first tenant)."""
    tenant = Tenant(id='shop_a', name='Shop A - Corner Grocer', slug='corner-grocer', is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Shop B (second tenant)."""
    tenant = Tenant(id='shop_b', name='Shop B - Beta Mart', slug='beta-mart', is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def warehouse_a(db_session, tenant_a):
    warehouse = Warehouse(id='wh_a1', tenant_id=tenant_a.id, branch_id='br-a1', name='Main')
    db_session.add(warehouse)
    db_session.commit()
    return warehouse


@pytest.fixture(scope='function')
def warehouse_b(db_session, tenant_b):
    warehouse = Warehouse(id='wh_b1', tenant_id=tenant_b.id, branch_id='br-b1', name='Main')
    db_session.add(warehouse)
    db_session.commit()
    return warehouse


# ---------------------------------------------------------------------------
# Catalog and stock
# ---------------------------------------------------------------------------

@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(tenant, sku, price, **fields) -> Product."""
    def _make(tenant, sku, price, **fields):
        product = Product(
            id=fields.pop('id', f'prd_{tenant.id}_{sku}'.lower()),
            tenant_id=tenant.id,
            sku=sku,
            name=fields.pop('name', sku.title()),
            retail_price=Decimal(str(price)),
            tax_rate=Decimal(str(fields.pop('tax_rate', '0'))),
            is_active=fields.pop('is_active', True),
            mobile_visible=fields.pop('mobile_visible', True),
            **fields,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def set_stock(db_session):
    """Factory: set_stock(product, warehouse, on_hand, reserved=0) -> InventoryRecord."""
    def _set(product, warehouse, on_hand, reserved=0):
        record = InventoryRecord(
            id=f'inv_{product.id}_{warehouse.id}',
            tenant_id=product.tenant_id,
            product_id=product.id,
            warehouse_id=warehouse.id,
            quantity_on_hand=on_hand,
            quantity_reserved=reserved,
        )
        db_session.add(record)
        db_session.commit()
        return record
    return _set


@pytest.fixture(scope='function')
def milk(make_product, tenant_a):
    """Shop A product, 10.00, no tax."""
    return make_product(tenant_a, 'MILK-1L', '10.00', name='Milk')


@pytest.fixture(scope='function')
def shop_settings(db_session):
    """Factory: shop_settings(tenant, **fields) -> ShopSettings (enabled by default)."""
    def _settings(tenant, **fields):
        settings = ShopSettings(
            tenant_id=tenant.id,
            is_enabled=fields.pop('is_enabled', True),
            delivery_fee=Decimal(str(fields.pop('delivery_fee', '0'))),
            minimum_order_amount=Decimal(str(fields.pop('minimum_order_amount', '0'))),
            **fields,
        )
        db_session.add(settings)
        db_session.commit()
        return settings
    return _settings


# ---------------------------------------------------------------------------
# Accounts and tokens
# ---------------------------------------------------------------------------

@pytest.fixture(scope='function')
def customer_a(db_session, tenant_a):
    customer = Customer(id='cus_a1', tenant_id=tenant_a.id, phone='+15550001', name='Alex')
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def customer_a2(db_session, tenant_a):
    """Second customer of shop A."""
    customer = Customer(id='cus_a2', tenant_id=tenant_a.id, phone='+15550002', name='Sam')
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def customer_b(db_session, tenant_b):
    customer = Customer(id='cus_b1', tenant_id=tenant_b.id, phone='+15550001', name='Robin')
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def admin_a(db_session, tenant_a):
    user = User(id='usr_a_admin', tenant_id=tenant_a.id, username='admin', role='admin', is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def cashier_a(db_session, tenant_a):
    user = User(id='usr_a_cashier', tenant_id=tenant_a.id, username='cashier', role='pos_cashier', is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_b(db_session, tenant_b):
    user = User(id='usr_b_admin', tenant_id=tenant_b.id, username='admin', role='admin', is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


def _bearer(token):
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def customer_a_headers(customer_a):
    _, token = session_service.create_session(customer_a.tenant_id, customer_id=customer_a.id)
    return _bearer(token)


@pytest.fixture(scope='function')
def customer_a2_headers(customer_a2):
    _, token = session_service.create_session(customer_a2.tenant_id, customer_id=customer_a2.id)
    return _bearer(token)


@pytest.fixture(scope='function')
def admin_a_headers(admin_a):
    _, token = session_service.create_session(admin_a.tenant_id, user_id=admin_a.id)
    return _bearer(token)


@pytest.fixture(scope='function')
def cashier_a_headers(cashier_a):
    _, token = session_service.create_session(cashier_a.tenant_id, user_id=cashier_a.id)
    return _bearer(token)


@pytest.fixture(scope='function')
def admin_b_headers(admin_b):
    _, token = session_service.create_session(admin_b.tenant_id, user_id=admin_b.id)
    return _bearer(token)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

@pytest.fixture(scope='function')
def place(order_service):
    """Factory: place(tenant_id, customer_id, [(product_id, qty), ...], **fields) -> PlacementResult."""
    def _place(tenant_id, customer_id, lines, **fields):
        order_input = PlaceOrderInput(
            customer_id=customer_id,
            items=[OrderLineInput(product_id=pid, quantity=qty) for pid, qty in lines],
            **fields,
        )
        return order_service.place_order(tenant_id, order_input)
    return _place
