"""In-memory ledger index package."""

from beanledger.services.index.ledger_index import (
    AccountUsage,
    FileEntry,
    LedgerIndex,
    transaction_ids,
    usage_of,
)

__all__ = [
    "AccountUsage",
    "FileEntry",
    "LedgerIndex",
    "transaction_ids",
    "usage_of",
]
