from .catalog import Category, Company, Product
from .inventory import StockHistory, NotifyRequest
from .orders import Order, OrderItem, OrderStatusHistory
from .settlements import Settlement
from .auth import User, SessionToken
from .notifications import Notification

__all__ = [
    'Category', 'Company', 'Product',
    'StockHistory', 'NotifyRequest',
    'Order', 'OrderItem', 'OrderStatusHistory',
    'Settlement',
    'User', 'SessionToken',
    'Notification',
]
