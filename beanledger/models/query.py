"""
Listing Filters

Filters are plain data. The query layer applies them to a snapshot
of the ledger; they never touch storage themselves.
"""

import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from beanledger.models.ledger import Account, Transaction


class AccountStatus(str, Enum):
    """Which accounts a listing should return."""
    OPEN = "open"
    CLOSED = "closed"
    ALL = "all"


def _matches_account(name: str, wanted: str) -> bool:
    """An account filter matches the account itself and all its sub-accounts."""
    return name == wanted or name.startswith(wanted + ":")


class AccountFilter(BaseModel):
    """Filter for account listings. All criteria must match."""

    prefix: Optional[str] = Field(
        default=None,
        description="Account name or parent (e.g. 'Assets:Bank')"
    )
    status: AccountStatus = Field(
        default=AccountStatus.ALL,
        description="Open, closed or all accounts"
    )
    as_of: Optional[datetime.date] = Field(
        default=None,
        description="Only accounts open on this date"
    )
    currency: Optional[str] = Field(
        default=None,
        description="Only accounts permitting this currency"
    )

    def matches(self, account: Account) -> bool:
        if self.prefix and not _matches_account(account.name, self.prefix):
            return False
        if self.status == AccountStatus.OPEN and account.is_closed:
            return False
        if self.status == AccountStatus.CLOSED and not account.is_closed:
            return False
        if self.as_of and not account.is_open_on(self.as_of):
            return False
        if self.currency and not account.allows_currency(self.currency):
            return False
        return True


class TransactionFilter(BaseModel):
    """
    Filter for transaction listings. All criteria must match.

    date_from and date_to are inclusive; they also decide which
    monthly files the listing has to read at all.
    """

    date_from: Optional[datetime.date] = None
    date_to: Optional[datetime.date] = None
    account: Optional[str] = Field(
        default=None,
        description="Matches postings to this account or any sub-account"
    )
    tag: Optional[str] = None
    link: Optional[str] = None
    payee: Optional[str] = Field(
        default=None,
        description="Case-insensitive substring of the payee"
    )
    flag: Optional[str] = None

    @model_validator(mode="after")
    def validate_range(self) -> "TransactionFilter":
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValueError("date_to cannot be before date_from")
        return self

    def covers_month(self, year: int, month: int) -> bool:
        """Could a transaction of this month pass the date criteria?"""
        key = (year, month)
        if self.date_from and key < (self.date_from.year, self.date_from.month):
            return False
        if self.date_to and key > (self.date_to.year, self.date_to.month):
            return False
        return True

    def matches(self, transaction: Transaction) -> bool:
        if self.date_from and transaction.date < self.date_from:
            return False
        if self.date_to and transaction.date > self.date_to:
            return False
        if self.account and not any(
            _matches_account(p.account, self.account) for p in transaction.postings
        ):
            return False
        if self.tag and self.tag.lstrip("#") not in transaction.tags:
            return False
        if self.link and self.link.lstrip("^") not in transaction.links:
            return False
        if self.payee and self.payee.lower() not in (transaction.payee or "").lower():
            return False
        if self.flag and transaction.flag != self.flag:
            return False
        return True
