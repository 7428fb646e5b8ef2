"""Validation package: balance arithmetic, shared rules and the Verifier."""

from beanledger.validation.balance import (
    check_balance,
    interpolate,
    posting_weight,
    residual,
)
from beanledger.validation.rules import (
    accounts_from_directives,
    check_account_name,
    check_transaction,
    parse_date,
    posting_problems,
)
from beanledger.validation.verifier import LedgerVerifier

__all__ = [
    "LedgerVerifier",
    "accounts_from_directives",
    "check_account_name",
    "check_balance",
    "check_transaction",
    "interpolate",
    "parse_date",
    "posting_problems",
    "posting_weight",
    "residual",
]
