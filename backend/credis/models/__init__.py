from .tenancy import Store
from .customers import Customer
from .auth import StoreOwner, RefreshToken, AccessToken
from .ledger import (
    LedgerEntry,
    CustomerBalance,
    CREDIT_GIVEN,
    PAYMENT_RECEIVED,
    TRANSACTION_TYPES,
)

__all__ = [
    'Store',
    'Customer',
    'StoreOwner', 'RefreshToken', 'AccessToken',
    'LedgerEntry', 'CustomerBalance',
    'CREDIT_GIVEN', 'PAYMENT_RECEIVED', 'TRANSACTION_TYPES',
]
