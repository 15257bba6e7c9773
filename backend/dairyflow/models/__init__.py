from .auth import User, SessionToken
from .catalog import Product
from .clients import Client
from .production import Batch
from .orders import Order, OrderLine, OrderTrackingEvent
from .invoices import Invoice, InvoiceLine

__all__ = [
    'User', 'SessionToken',
    'Product',
    'Client',
    'Batch',
    'Order', 'OrderLine', 'OrderTrackingEvent',
    'Invoice', 'InvoiceLine',
]
