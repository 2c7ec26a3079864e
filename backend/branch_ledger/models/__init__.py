from .branches import Branch
from .auth import User, SessionToken
from .customers import Customer
from .inventory import Product, StockHistoryEntry
from .transactions import Transaction, TransactionItem
from .credit import PaymentSchedule, PaymentRepayment
from .conditions import ConditionLog

__all__ = [
    'Branch',
    'User', 'SessionToken',
    'Customer',
    'Product', 'StockHistoryEntry',
    'Transaction', 'TransactionItem',
    'PaymentSchedule', 'PaymentRepayment',
    'ConditionLog',
]
