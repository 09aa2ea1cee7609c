from .users import User, SessionToken
from .orders import Order
from .ledger import BalanceTransaction, TransactionSequence, UserBalance
from .insurance import InsuranceCertificate

__all__ = [
    'User', 'SessionToken',
    'Order',
    'BalanceTransaction', 'TransactionSequence', 'UserBalance',
    'InsuranceCertificate',
]
