from .tenancy import Tenant
from .auth import User, SessionToken
from .customers import Customer
from .catalog import Product, StockHistoryEntry
from .orders import Order, OrderItem
from .promotions import Promotion, CustomerCouponUsage
from .immutability import ImmutableRecordError, register_immutability_listeners

register_immutability_listeners()

__all__ = [
    'Tenant',
    'User', 'SessionToken',
    'Customer',
    'Product', 'StockHistoryEntry',
    'Order', 'OrderItem',
    'Promotion', 'CustomerCouponUsage',
    'ImmutableRecordError',
]
