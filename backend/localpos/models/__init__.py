from .auth import User, ROLES, ROLE_ADMIN, ROLE_USER
from .security import SecurityLog
from .inventory import Product, Supplier, Purchase
from .sales import Sale, CashMovement
from .communications import Task
from .schema import SchemaMigration

__all__ = [
    'User', 'ROLES', 'ROLE_ADMIN', 'ROLE_USER',
    'SecurityLog',
    'Product', 'Supplier', 'Purchase',
    'Sale', 'CashMovement',
    'Task',
    'SchemaMigration',
]
