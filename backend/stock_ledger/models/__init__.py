from .inventory import Warehouse, Product, Lot, StockLocation
from .customers import Customer
from .documents import Transfer, Invoice
from .audit import AuditLog

__all__ = [
    'Warehouse', 'Product', 'Lot', 'StockLocation',
    'Customer',
    'Transfer', 'Invoice',
    'AuditLog',
]
