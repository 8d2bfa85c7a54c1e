# Overview: Mobile catalog reads and the warehouse/product lookups the order engine depends on.

from __future__ import annotations

from typing import Any

from sqlalchemy import func, or_, select

from ..models import Category, InventoryRecord, Product, Warehouse
from ..money import money_str, to_money
from ..pagination import before_cursor, encode_cursor
from ..time_utils import to_utc_z
from ..validation import ValidationError, parse_money
from .tenant_service import TenantContext, run_with_tenant_context

MOBILE_PAGE_MAX = 50


def effective_price(product: Product):
    """Mobile channel price: mobile_price when set, else retail_price."""
    if product.mobile_price is not None:
        return to_money(product.mobile_price)
    return to_money(product.retail_price)


def resolve_warehouse(handle, tenant_id: str, branch_id: str | None) -> Warehouse | None:
    """
    Warehouse an order reserves against.

    branch_id may name a warehouse directly or a branch mapped to one. Unknown
    or foreign ids fall back to the tenant's first warehouse (lowest id).
    None means the tenant has no warehouse and no stock is tracked.
    """
    if branch_id:
        warehouse = handle.session.execute(
            select(Warehouse)
            .where(
                Warehouse.tenant_id == tenant_id,
                or_(Warehouse.id == branch_id, Warehouse.branch_id == branch_id),
            )
            .order_by(Warehouse.id.asc())
            .limit(1)
        ).scalar_one_or_none()
        if warehouse is not None:
            return warehouse

    return handle.session.execute(
        select(Warehouse)
        .where(Warehouse.tenant_id == tenant_id)
        .order_by(Warehouse.id.asc())
        .limit(1)
    ).scalar_one_or_none()


def get_orderable_product(handle, tenant_id: str, product_id: str) -> Product | None:
    """Product that exists, is active and belongs to tenant_id; otherwise None."""
    return handle.session.execute(
        select(Product).where(
            Product.id == product_id,
            Product.tenant_id == tenant_id,
            Product.is_active.is_(True),
        )
    ).scalar_one_or_none()


def _available_stock_column(tenant_id: str):
    return (
        select(
            func.coalesce(
                func.sum(InventoryRecord.quantity_on_hand - InventoryRecord.quantity_reserved), 0
            )
        )
        .where(
            InventoryRecord.product_id == Product.id,
            InventoryRecord.tenant_id == tenant_id,
        )
        .correlate(Product)
        .scalar_subquery()
    )


def _mobile_product_dict(product: Product, available_stock) -> dict:
    return {
        "id": product.id,
        "sku": product.sku,
        "name": product.name,
        "category_id": product.category_id,
        "description": product.mobile_description,
        "price": money_str(effective_price(product)),
        "retail_price": money_str(product.retail_price),
        "mobile_price": money_str(product.mobile_price),
        "tax_rate": str(product.tax_rate) if product.tax_rate is not None else None,
        "available_stock": int(available_stock or 0),
        "created_at": to_utc_z(product.created_at),
    }


def list_mobile_products(
    database_service,
    tenant_id: str,
    cursor: str | None = None,
    limit: int = 20,
    search: str | None = None,
    category_id: str | None = None,
) -> dict:
    """
    Page of active, mobile-visible products, newest first.

    available_stock is summed across all of the tenant's warehouses.
    """
    limit = max(1, min(limit, MOBILE_PAGE_MAX))

    stmt = select(Product, _available_stock_column(tenant_id)).where(
        Product.tenant_id == tenant_id,
        Product.is_active.is_(True),
        Product.mobile_visible.is_(True),
    )
    if category_id:
        stmt = stmt.where(Product.category_id == category_id)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Product.name.ilike(pattern), Product.sku.ilike(pattern)))
    if cursor:
        stmt = stmt.where(before_cursor(Product.created_at, Product.id, cursor))
    stmt = stmt.order_by(Product.created_at.desc(), Product.id.desc()).limit(limit + 1)

    def _read(handle):
        rows = handle.session.execute(stmt).all()
        has_more = len(rows) > limit
        page = rows[:limit]
        next_cursor = None
        if has_more and page:
            last = page[-1][0]
            next_cursor = encode_cursor(last.created_at, last.id)
        return {
            "items": [_mobile_product_dict(product, stock) for product, stock in page],
            "next_cursor": next_cursor,
            "has_more": has_more,
        }

    return run_with_tenant_context(
        TenantContext(tenant_id),
        lambda: database_service.transaction(_read, read_only=True),
    )


def get_mobile_product(database_service, tenant_id: str, product_id: str) -> dict | None:
    stmt = select(Product, _available_stock_column(tenant_id)).where(
        Product.id == product_id,
        Product.tenant_id == tenant_id,
        Product.is_active.is_(True),
        Product.mobile_visible.is_(True),
    )

    def _read(handle):
        row = handle.session.execute(stmt).first()
        if row is None:
            return None
        product, stock = row
        return _mobile_product_dict(product, stock)

    return run_with_tenant_context(
        TenantContext(tenant_id),
        lambda: database_service.transaction(_read, read_only=True),
    )


def list_mobile_categories(database_service, tenant_id: str) -> list[dict]:
    """Active categories holding at least one active, mobile-visible product, by name."""
    stmt = (
        select(Category.id, Category.name)
        .join(Product, Product.category_id == Category.id)
        .where(
            Category.tenant_id == tenant_id,
            Category.is_active.is_(True),
            Product.tenant_id == tenant_id,
            Product.is_active.is_(True),
            Product.mobile_visible.is_(True),
        )
        .distinct()
        .order_by(Category.name.asc(), Category.id.asc())
    )

    def _read(handle):
        return [{"id": row.id, "name": row.name} for row in handle.session.execute(stmt).all()]

    return run_with_tenant_context(
        TenantContext(tenant_id),
        lambda: database_service.transaction(_read, read_only=True),
    )


def update_product_mobile_settings(handle, tenant_id: str, product_id: str, data: dict[str, Any]) -> dict | None:
    """
    Partial update of a product's storefront fields.

    Absent keys keep their stored value. mobile_price may be cleared with an
    explicit null, which puts the product back on retail_price. category_id
    must name a category of the same tenant, or be null.
    Returns None when the product does not exist in tenant_id.
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    product = handle.lock(
        select(Product).where(Product.id == product_id, Product.tenant_id == tenant_id)
    )
    if product is None:
        return None

    if "mobile_visible" in data:
        if not isinstance(data["mobile_visible"], bool):
            raise ValidationError("mobile_visible must be a boolean")
        product.mobile_visible = data["mobile_visible"]

    if "mobile_price" in data:
        amount = parse_money(data["mobile_price"], "mobile_price")
        product.mobile_price = to_money(amount) if amount is not None else None

    if "mobile_description" in data:
        description = data["mobile_description"]
        if description is not None and not isinstance(description, str):
            raise ValidationError("mobile_description must be a string")
        product.mobile_description = (description or "").strip() or None

    if "mobile_sort_order" in data:
        sort_order = data["mobile_sort_order"]
        if isinstance(sort_order, bool) or not isinstance(sort_order, int):
            raise ValidationError("mobile_sort_order must be an integer")
        product.mobile_sort_order = sort_order

    if "category_id" in data:
        category_id = data["category_id"]
        if category_id is not None:
            category = handle.session.execute(
                select(Category).where(Category.id == category_id, Category.tenant_id == tenant_id)
            ).scalar_one_or_none()
            if category is None:
                raise ValidationError("Unknown category", {"category_id": category_id})
        product.category_id = category_id

    handle.flush()
    return product.to_dict()
