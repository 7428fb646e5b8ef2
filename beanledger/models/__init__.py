"""
Data Models Package

This package contains all Pydantic models used by beanledger.
All data flowing through the engine must conform to these schemas.
"""

from beanledger.models.ledger import (
    CLEARED_FLAG,
    PENDING_FLAG,
    Account,
    Amount,
    Blank,
    Close,
    Comment,
    Cost,
    Directive,
    Include,
    Open,
    Posting,
    Price,
    RawDirective,
    Transaction,
    TransactionSpec,
    derived_id,
    directive_date,
    parse_derived_id,
)
from beanledger.models.query import (
    AccountFilter,
    AccountStatus,
    TransactionFilter,
)
from beanledger.models.verification import Diagnostic, Severity
from beanledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "CLEARED_FLAG",
    "PENDING_FLAG",
    "Account",
    "Amount",
    "Blank",
    "Close",
    "Comment",
    "Cost",
    "Directive",
    "Include",
    "Open",
    "Posting",
    "Price",
    "RawDirective",
    "Transaction",
    "TransactionSpec",
    "derived_id",
    "directive_date",
    "parse_derived_id",
    # Filters
    "AccountFilter",
    "AccountStatus",
    "TransactionFilter",
    # Verification
    "Diagnostic",
    "Severity",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
