"""
Audit Models for beanledger

Every mutation of the ledger is logged for audit purposes.
This provides:
1. Complete traceability of every file the engine rewrote
2. Debugging information when a write conflicts or fails
3. A way to reconstruct what happened around a crash window
   (e.g. a transaction moved between monthly files)

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every mutating engine operation has its own event type.
    """
    # Accounts
    ACCOUNT_OPENED = "account_opened"
    ACCOUNT_CLOSED = "account_closed"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"

    # Transactions
    TRANSACTION_ADDED = "transaction_added"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_MOVED = "transaction_moved"
    TRANSACTION_DELETED = "transaction_deleted"
    TRANSACTION_FLAG_CHANGED = "transaction_flag_changed"

    # Files
    FILE_CREATED = "file_created"
    FILE_REMOVED = "file_removed"
    INCLUDE_ADDED = "include_added"
    INCLUDE_REMOVED = "include_removed"
    IDENTIFIERS_ASSIGNED = "identifiers_assigned"

    # Index and verification
    REINDEXED = "reindexed"
    VERIFICATION_COMPLETED = "verification_completed"

    # Failures
    WRITE_CONFLICT = "write_conflict"
    WRITE_FAILED = "write_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every mutation creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity ('account', 'transaction', 'file')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Identifier or file name of the entity"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.account_opened(account_id, name, "2024-01-01")
        event = AuditEventBuilder.transaction_added(txn_id, "2024-03.bean", date)
    """

    @staticmethod
    def account_opened(account_id: str, name: str, open_date: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_OPENED,
            entity_type="account",
            entity_id=account_id,
            description=f"Account opened: {name}",
            details={"name": name, "open_date": open_date},
        )

    @staticmethod
    def account_closed(account_id: str, name: str, close_date: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CLOSED,
            entity_type="account",
            entity_id=account_id,
            description=f"Account closed: {name}",
            details={"name": name, "close_date": close_date},
        )

    @staticmethod
    def account_updated(account_id: str, name: str, fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_UPDATED,
            entity_type="account",
            entity_id=account_id,
            description=f"Account updated: {name}",
            details={"name": name, "fields": fields},
        )

    @staticmethod
    def account_deleted(account_id: str, name: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DELETED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            entity_id=account_id,
            description=f"Account deleted: {name}",
            details={"name": name},
        )

    @staticmethod
    def transaction_added(transaction_id: str, file: str, txn_date: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_ADDED,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Transaction added to {file}",
            details={"file": file, "date": txn_date},
        )

    @staticmethod
    def transaction_updated(transaction_id: str, file: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Transaction updated in {file}",
            details={"file": file},
        )

    @staticmethod
    def transaction_moved(transaction_id: str, source: str, target: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_MOVED,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Transaction moved from {source} to {target}",
            details={"source": source, "target": target},
        )

    @staticmethod
    def transaction_deleted(transaction_id: str, file: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Transaction deleted from {file}",
            details={"file": file},
        )

    @staticmethod
    def transaction_flag_changed(transaction_id: str, old: str, new: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_FLAG_CHANGED,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Transaction flag changed from {old!r} to {new!r}",
            details={"old_flag": old, "new_flag": new},
        )

    @staticmethod
    def file_created(file: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FILE_CREATED,
            entity_type="file",
            entity_id=file,
            description=f"Ledger file created: {file}",
        )

    @staticmethod
    def file_removed(file: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FILE_REMOVED,
            entity_type="file",
            entity_id=file,
            description=f"Empty ledger file removed: {file}",
        )

    @staticmethod
    def include_changed(main_file: str, target: str, added: bool) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.INCLUDE_ADDED if added else AuditEventType.INCLUDE_REMOVED
            ),
            entity_type="file",
            entity_id=main_file,
            description=f"Include {'added' if added else 'removed'}: {target}",
            details={"target": target},
        )

    @staticmethod
    def identifiers_assigned(file: str, count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IDENTIFIERS_ASSIGNED,
            entity_type="file",
            entity_id=file,
            description=f"Assigned {count} missing identifier(s) in {file}",
            details={"count": count},
        )

    @staticmethod
    def reindexed(files: int, accounts: int, transactions: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REINDEXED,
            severity=AuditSeverity.DEBUG,
            description="Ledger index rebuilt from disk",
            details={
                "files": files,
                "accounts": accounts,
                "transactions": transactions,
            },
        )

    @staticmethod
    def verification_completed(errors: int, warnings: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VERIFICATION_COMPLETED,
            severity=AuditSeverity.WARNING if errors else AuditSeverity.INFO,
            description=f"Verification found {errors} error(s), {warnings} warning(s)",
            details={"errors": errors, "warnings": warnings},
        )

    @staticmethod
    def write_conflict(file: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WRITE_CONFLICT,
            severity=AuditSeverity.WARNING,
            entity_type="file",
            entity_id=file,
            description=f"Write conflict on {file}; file changed outside the engine",
            error_message=error_message,
        )

    @staticmethod
    def write_failed(file: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WRITE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="file",
            entity_id=file,
            description=f"Write failed for {file}",
            error_message=error_message,
        )
