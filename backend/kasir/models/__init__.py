from .catalog import Category, Product
from .customers import Customer
from .auth import User, SessionToken
from .events import Event, EventProduct
from .sales import Sale, SaleLine
from .inventory import StockMovement

__all__ = [
    'Category', 'Product',
    'Customer',
    'User', 'SessionToken',
    'Event', 'EventProduct',
    'Sale', 'SaleLine',
    'StockMovement',
]
