"""Account and transaction managers."""

from beanledger.managers.accounts import AccountManager
from beanledger.managers.base import BaseManager, new_identifier
from beanledger.managers.files import month_file
from beanledger.managers.transactions import TransactionManager

__all__ = [
    "AccountManager",
    "BaseManager",
    "TransactionManager",
    "month_file",
    "new_identifier",
]
