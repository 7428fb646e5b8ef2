"""Ledger listing package."""

from beanledger.queries.listing import (
    AccountListing,
    TransactionListing,
    registered_month_files,
)

__all__ = ["AccountListing", "TransactionListing", "registered_month_files"]
