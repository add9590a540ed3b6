from .tenancy import Branch
from .auth import User
from .inventory import Category, Product, Inventory, StockMovement
from .sales import Sale, SaleItem, Expense
from .documents import Transfer, TransferItem
from .activity import Activity
from .audit import AdminAuditLogEntry

__all__ = [
    'Branch', 'User',
    'Category', 'Product', 'Inventory', 'StockMovement',
    'Sale', 'SaleItem', 'Expense',
    'Transfer', 'TransferItem',
    'Activity', 'AdminAuditLogEntry',
]
