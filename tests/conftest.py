"""
Shared fixtures.

Every test gets its own data directory under tmp_path and its own
engine; nothing touches the real environment.
"""

from datetime import date
from decimal import Decimal

import pytest

from beanledger.audit import AuditLogger, InMemoryAuditStorage
from beanledger.config import LedgerSettings
from beanledger.engine import LedgerEngine
from beanledger.models.ledger import Amount, Posting, TransactionSpec


@pytest.fixture
def settings(tmp_path):
    return LedgerSettings(data_dir=tmp_path / "ledger")


@pytest.fixture
def data_dir(settings):
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings.data_dir


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def engine(settings, audit_storage):
    ledger = LedgerEngine(settings, AuditLogger(audit_storage)).open()
    yield ledger
    ledger.close()


@pytest.fixture
def accounts(engine):
    """A small chart of accounts, all opened on 2024-01-01."""
    return {
        "bank": engine.open_account("Assets:Bank", "2024-01-01", ["USD"]),
        "food": engine.open_account("Expenses:Food", "2024-01-01"),
        "salary": engine.open_account("Income:Salary", "2024-01-01", ["USD"]),
    }


@pytest.fixture
def payment():
    """Factory for a simple two-posting expense paid from the bank."""
    def make(
        when: date,
        amount: str = "10.00",
        narration: str = "Lunch",
        expense: str = "Expenses:Food",
        source: str = "Assets:Bank",
        **extra,
    ) -> TransactionSpec:
        number = Decimal(amount)
        return TransactionSpec(
            date=when,
            narration=narration,
            postings=[
                Posting(account=expense, units=Amount(number=number, currency="USD")),
                Posting(account=source, units=Amount(number=-number, currency="USD")),
            ],
            **extra,
        )
    return make