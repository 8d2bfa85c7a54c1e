from .tenancy import Tenant, Warehouse, ShopSettings
from .inventory import Category, Product, InventoryRecord, InventoryMovement
from .orders import Order, OrderItem, OrderStatusHistory
from .auth import User, Customer, SessionToken

__all__ = [
    'Tenant', 'Warehouse', 'ShopSettings',
    'Category', 'Product', 'InventoryRecord', 'InventoryMovement',
    'Order', 'OrderItem', 'OrderStatusHistory',
    'User', 'Customer', 'SessionToken',
]
