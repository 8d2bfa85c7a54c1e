# Overview: Flask CLI command groups for bootstrap, inspection, and dev session minting.

# backend/retailcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Tenant management (MULTI-TENANT):
# - python -m flask tenants list
#   List all tenants with warehouse and product counts.
# - python -m flask tenants create --name "Corner Shop" --slug corner-shop [--id corner_shop]
#   Create a new tenant (shop). The slug is the public mobile storefront identifier.
#
# Catalog bootstrap:
# - python -m flask warehouses add --tenant-id corner_shop --name "Main" [--branch-id br-1]
#   Add a stock location to a tenant.
# - python -m flask categories add --tenant-id corner_shop --name "Dairy"
#   Add a product category (shown in the mobile catalog).
# - python -m flask products add --tenant-id corner_shop --sku SKU-1 --name "Milk 1L" --price 2.50 [--mobile-price 2.40] [--tax-rate 7.5] [--category-id cat_...]
#   Add a product to the tenant catalog.
#
# Inventory:
# - python -m flask inventory adjust --tenant-id corner_shop --product-id prd_... --warehouse-id wh_... --delta 10 [--reason "Delivery"]
#   Manual on-hand adjustment (writes an Adjustment movement).
# - python -m flask inventory show --tenant-id corner_shop --product-id prd_... --warehouse-id wh_...
#   Show on-hand, reserved and available counters.
#
# Accounts and sessions (DEV/TEST only):
# - python -m flask staff create --tenant-id corner_shop --username alice --role admin
#   Create a staff user (admin, pos_cashier, accountant).
# - python -m flask customers create --tenant-id corner_shop --phone "+15550100" [--name "Bob"]
#   Register a mobile customer.
# - python -m flask sessions issue --tenant-id corner_shop (--user-id usr_... | --customer-id cus_...)
#   Mint a bearer token; the plaintext token is printed once and never stored.
#
# Orders:
# - python -m flask orders unsynced --tenant-id corner_shop
#   List mobile orders the POS has not acknowledged yet (oldest first).

from decimal import Decimal, InvalidOperation

import click
from flask import current_app
from flask.cli import with_appcontext
from sqlalchemy import func, select

from .extensions import db
from .id_utils import generate_id
from .models import Category, Customer, Product, Tenant, User, Warehouse
from .services import inventory_service, session_service
from .services.tenant_service import (
    TenantContext,
    TenantScopeError,
    run_with_tenant_context,
    validate_tenant_id,
)


def _get_tenant(tenant_id):
    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None:
        click.echo(f"FAIL Tenant '{tenant_id}' not found")
    return tenant


def _in_tenant(tenant_id, callback, read_only=False):
    """Run callback(handle) in a tenant-scoped transaction (row-level security applies)."""
    database_service = current_app.extensions["database_service"]
    return run_with_tenant_context(
        TenantContext(tenant_id),
        lambda: database_service.transaction(callback, read_only=read_only),
    )


def _parse_decimal(value, label):
    if value is None:
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise click.BadParameter(f"{label} must be a number")
    if amount < 0:
        raise click.BadParameter(f"{label} must be non-negative")
    return amount


# =============================================================================
# TENANT MANAGEMENT COMMANDS
# =============================================================================

@click.group('tenants')
def tenants_group():
    """Tenant (shop) management commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    """List all tenants."""
    tenants = db.session.execute(select(Tenant).order_by(Tenant.created_at)).scalars().all()

    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<24} {'Name':<28} {'Slug':<20} {'Active':<8} {'WH':<4} {'Products'}")
    click.echo("="*90)

    for tenant in tenants:
        warehouse_count, product_count = _in_tenant(tenant.id, lambda handle, tid=tenant.id: (
            handle.session.scalar(select(func.count(Warehouse.id)).where(Warehouse.tenant_id == tid)),
            handle.session.scalar(select(func.count(Product.id)).where(Product.tenant_id == tid)),
        ), read_only=True)
        active_str = "Yes" if tenant.is_active else "No"

        click.echo(
            f"{tenant.id:<24} {tenant.name:<28} {tenant.slug or '-':<20} "
            f"{active_str:<8} {warehouse_count:<4} {product_count}"
        )

    click.echo("="*90 + "\n")


@tenants_group.command('create')
@click.option('--name', required=True, help='Shop name')
@click.option('--slug', required=True, help='Public storefront slug (unique)')
@click.option('--id', 'tenant_id', help='Tenant id ([A-Za-z0-9_-]); generated if omitted')
@with_appcontext
def create_tenant_cli(name, slug, tenant_id):
    """Create a new tenant (shop)."""
    tenant_id = tenant_id or generate_id("tnt")
    try:
        validate_tenant_id(tenant_id)
    except TenantScopeError as e:
        click.echo(f"FAIL {e}")
        return

    if db.session.get(Tenant, tenant_id) is not None:
        click.echo(f"FAIL Tenant with id '{tenant_id}' already exists")
        return

    existing = db.session.execute(select(Tenant).where(Tenant.slug == slug)).scalar_one_or_none()
    if existing:
        click.echo(f"FAIL Tenant with slug '{slug}' already exists")
        return

    tenant = Tenant(id=tenant_id, name=name, slug=slug, is_active=True)
    db.session.add(tenant)
    db.session.commit()

    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Slug: {tenant.slug})")


# =============================================================================
# CATALOG BOOTSTRAP COMMANDS
# =============================================================================

@click.group('warehouses')
def warehouses_group():
    """Warehouse bootstrap commands."""


@warehouses_group.command('add')
@click.option('--tenant-id', required=True, help='Tenant ID')
@click.option('--name', required=True, help='Warehouse name (unique within tenant)')
@click.option('--branch-id', help='Branch this warehouse serves')
@with_appcontext
def add_warehouse_cli(tenant_id, name, branch_id):
    """Add a warehouse to a tenant."""
    tenant = _get_tenant(tenant_id)
    if tenant is None:
        return

    def _create(handle):
        existing = handle.session.execute(
            select(Warehouse).where(Warehouse.tenant_id == tenant_id, Warehouse.name == name)
        ).scalar_one_or_none()
        if existing:
            return None
        warehouse = Warehouse(id=generate_id("wh"), tenant_id=tenant_id, name=name, branch_id=branch_id)
        handle.add(warehouse)
        return warehouse.id

    warehouse_id = _in_tenant(tenant_id, _create)
    if warehouse_id is None:
        click.echo(f"FAIL Warehouse '{name}' already exists for this tenant")
        return

    click.echo(f"PASS Created warehouse: {name} (ID: {warehouse_id}) for '{tenant.name}'")


@click.group('categories')
def categories_group():
    """Product category bootstrap commands."""


@categories_group.command('add')
@click.option('--tenant-id', required=True, help='Tenant ID')
@click.option('--name', required=True, help='Category name (unique within tenant)')
@with_appcontext
def add_category_cli(tenant_id, name):
    """Add a product category to a tenant."""
    if _get_tenant(tenant_id) is None:
        return

    def _create(handle):
        existing = handle.session.execute(
            select(Category).where(Category.tenant_id == tenant_id, Category.name == name)
        ).scalar_one_or_none()
        if existing:
            return None
        category = Category(id=generate_id("cat"), tenant_id=tenant_id, name=name, is_active=True)
        handle.add(category)
        return category.id

    category_id = _in_tenant(tenant_id, _create)
    if category_id is None:
        click.echo(f"FAIL Category '{name}' already exists for this tenant")
        return

    click.echo(f"PASS Created category: {name} (ID: {category_id})")


@click.group('products')
def products_group():
    """Product bootstrap commands."""


@products_group.command('add')
@click.option('--tenant-id', required=True, help='Tenant ID')
@click.option('--sku', required=True, help='SKU (unique within tenant)')
@click.option('--name', required=True, help='Product name')
@click.option('--price', required=True, help='Retail price')
@click.option('--mobile-price', help='Mobile channel price override')
@click.option('--tax-rate', default='0', show_default=True, help='Tax rate in percent')
@click.option('--category-id', help='Category ID')
@click.option('--hidden', is_flag=True, help='Hide from the mobile catalog')
@with_appcontext
def add_product_cli(tenant_id, sku, name, price, mobile_price, tax_rate, category_id, hidden):
    """Add a product to a tenant catalog."""
    if _get_tenant(tenant_id) is None:
        return

    retail_price = _parse_decimal(price, "price")
    mobile_price = _parse_decimal(mobile_price, "mobile-price")
    tax_rate = _parse_decimal(tax_rate, "tax-rate")

    def _create(handle):
        existing = handle.session.execute(
            select(Product).where(Product.tenant_id == tenant_id, Product.sku == sku)
        ).scalar_one_or_none()
        if existing:
            return f"SKU '{sku}' already exists for this tenant"
        if category_id is not None:
            category = handle.session.get(Category, category_id)
            if category is None or category.tenant_id != tenant_id:
                return f"Category '{category_id}' not found"

        handle.add(Product(
            id=generate_id("prd"),
            tenant_id=tenant_id,
            sku=sku,
            name=name,
            category_id=category_id,
            retail_price=retail_price,
            mobile_price=mobile_price,
            tax_rate=tax_rate,
            is_active=True,
            mobile_visible=not hidden,
        ))
        return None

    error = _in_tenant(tenant_id, _create)
    if error:
        click.echo(f"FAIL {error}")
        return

    click.echo(f"PASS Created product: {name} (SKU: {sku})")


# =============================================================================
# INVENTORY COMMANDS
# =============================================================================

@click.group('inventory')
def inventory_group():
    """Inventory adjustment and inspection commands."""


@inventory_group.command('adjust')
@click.option('--tenant-id', required=True, help='Tenant ID')
@click.option('--product-id', required=True, help='Product ID')
@click.option('--warehouse-id', required=True, help='Warehouse ID')
@click.option('--delta', type=int, required=True, help='Signed change to on-hand quantity')
@click.option('--reason', help='Reason recorded on the movement')
@with_appcontext
def adjust_inventory_cli(tenant_id, product_id, warehouse_id, delta, reason):
    """
    Adjust on-hand stock for one product in one warehouse.

    Runs through the data access layer: tenant-scoped, locked and retried.
    """
    database_service = current_app.extensions["database_service"]

    try:
        record = run_with_tenant_context(
            TenantContext(tenant_id),
            lambda: database_service.transaction(
                lambda handle: inventory_service.adjust_stock(
                    handle, tenant_id, product_id, warehouse_id, delta, reason
                ).to_dict()
            ),
        )
    except (inventory_service.InventoryError, ValueError) as e:
        click.echo(f"FAIL {e}")
        return
    except Exception as e:
        click.echo(f"FAIL Adjustment failed: {e}")
        return

    click.echo(
        f"PASS On hand: {record['quantity_on_hand']}  Reserved: {record['quantity_reserved']}  "
        f"Available: {record['available']}"
    )


@inventory_group.command('show')
@click.option('--tenant-id', required=True, help='Tenant ID')
@click.option('--product-id', required=True, help='Product ID')
@click.option('--warehouse-id', required=True, help='Warehouse ID')
@with_appcontext
def show_inventory_cli(tenant_id, product_id, warehouse_id):
    """Show stock counters for one product in one warehouse."""
    stock = inventory_service.get_stock(
        current_app.extensions["database_service"], tenant_id, product_id, warehouse_id
    )
    if stock is None:
        click.echo("Stock is not tracked for this product in this warehouse.")
        return

    click.echo(f"On hand:   {stock['quantity_on_hand']}")
    click.echo(f"Reserved:  {stock['quantity_reserved']}")
    click.echo(f"Available: {stock['available']}")


# =============================================================================
# ACCOUNT AND SESSION COMMANDS (DEV/TEST)
# =============================================================================

@click.group('staff')
def staff_group():
    """Staff account bootstrap commands."""


@staff_group.command('create')
@click.option('--tenant-id', required=True, help='Tenant ID')
@click.option('--username', required=True, help='Username (unique within tenant)')
@click.option('--role', type=click.Choice(['admin', 'pos_cashier', 'accountant']), default='admin',
              show_default=True, help='Role')
@with_appcontext
def create_staff_cli(tenant_id, username, role):
    """Create a staff user within a tenant."""
    tenant = _get_tenant(tenant_id)
    if tenant is None:
        return

    existing = db.session.execute(
        select(User).where(User.tenant_id == tenant_id, User.username == username)
    ).scalar_one_or_none()
    if existing:
        click.echo(f"FAIL User '{username}' already exists in this tenant")
        return

    user = User(id=generate_id("usr"), tenant_id=tenant_id, username=username, role=role, is_active=True)
    db.session.add(user)
    db.session.commit()

    click.echo(f"PASS Created user: {user.username} (ID: {user.id}, Role: {user.role})")


@click.group('customers')
def customers_group():
    """Mobile customer bootstrap commands."""


@customers_group.command('create')
@click.option('--tenant-id', required=True, help='Tenant ID')
@click.option('--phone', required=True, help='Phone number (unique within tenant)')
@click.option('--name', help='Display name')
@click.option('--address', help='Default delivery address')
@with_appcontext
def create_customer_cli(tenant_id, phone, name, address):
    """Register a mobile customer against a tenant."""
    tenant = _get_tenant(tenant_id)
    if tenant is None:
        return

    existing = db.session.execute(
        select(Customer).where(Customer.tenant_id == tenant_id, Customer.phone == phone)
    ).scalar_one_or_none()
    if existing:
        click.echo(f"FAIL Customer with phone '{phone}' already exists in this tenant")
        return

    customer = Customer(id=generate_id("cus"), tenant_id=tenant_id, phone=phone, name=name, address=address)
    db.session.add(customer)
    db.session.commit()

    click.echo(f"PASS Created customer: {customer.phone} (ID: {customer.id})")


@click.group('sessions')
def sessions_group():
    """Bearer session commands."""


@sessions_group.command('issue')
@click.option('--tenant-id', required=True, help='Tenant ID')
@click.option('--user-id', help='Staff user ID')
@click.option('--customer-id', help='Customer ID')
@with_appcontext
def issue_session_cli(tenant_id, user_id, customer_id):
    """
    Mint a bearer token for a staff user or a customer.

    DEV/TEST only. The plaintext token is printed once; only its hash is stored.
    """
    try:
        session, token = session_service.create_session(
            tenant_id, user_id=user_id, customer_id=customer_id
        )
    except ValueError as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Session {session.id} ({session.subject_type}) expires {session.expires_at}")
    click.echo(token)


# =============================================================================
# ORDER COMMANDS
# =============================================================================

@click.group('orders')
def orders_group():
    """Mobile order inspection commands."""


@orders_group.command('unsynced')
@click.option('--tenant-id', required=True, help='Tenant ID')
@with_appcontext
def unsynced_orders_cli(tenant_id):
    """List orders not yet acknowledged by the POS."""
    orders = current_app.extensions["order_service"].get_unsynced_orders(tenant_id)

    if not orders:
        click.echo("No unsynced orders.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'Order #':<20} {'Status':<18} {'Total':>10}  {'Created'}")
    click.echo("="*80)

    for order in orders:
        created = order.created_at.strftime('%Y-%m-%d %H:%M') if order.created_at else '-'
        click.echo(f"{order.order_number:<20} {order.status:<18} {order.grand_total:>10}  {created}")

    click.echo("="*80 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(tenants_group)  # Multi-tenant shop management
    app.cli.add_command(warehouses_group)
    app.cli.add_command(categories_group)
    app.cli.add_command(products_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(staff_group)
    app.cli.add_command(customers_group)
    app.cli.add_command(sessions_group)
    app.cli.add_command(orders_group)
