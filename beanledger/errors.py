"""
Error Taxonomy

Every failure the engine reports is a LedgerError:

- ParseError: malformed ledger text. Always surfaced, never auto-corrected.
- ValidationError family: the request would make the ledger inconsistent.
  Each carries the offending field and value so the caller can fix input.
- NotFoundError: the addressed transaction or account does not exist.
- StorageError family: ConflictError (file changed since it was read)
  and LedgerIOError (the filesystem refused an operation).

Validation always runs before any file is touched, so a ValidationError
guarantees nothing was written.
"""

from typing import Any, Optional


class LedgerError(Exception):
    """Base exception for all engine errors."""
    pass


# =============================================================================
# PARSING
# =============================================================================

class ParseError(LedgerError):
    """Ledger text could not be parsed."""

    def __init__(
        self,
        message: str,
        line: int,
        column: int = 1,
        file: Optional[str] = None,
    ):
        self.message = message
        self.line = line
        self.column = column
        self.file = file
        location = f"{file}:" if file else ""
        super().__init__(f"{location}{line}:{column}: {message}")

    def with_file(self, file: str) -> "ParseError":
        return ParseError(self.message, self.line, self.column, file)


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationError(LedgerError):
    """A request was rejected because it would break a ledger invariant."""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        self.message = message
        self.field = field
        self.value = value
        super().__init__(message)


class UnknownAccountError(ValidationError):
    """A posting or operation references an account that was never opened."""
    pass


class AccountNotOpenError(ValidationError):
    """A posting is dated before the account opens or after it closes."""
    pass


class UnbalancedTransactionError(ValidationError):
    """Postings do not sum to zero per currency, or several amounts are missing."""
    pass


class InvalidDateError(ValidationError):
    """A date is malformed or violates date ordering (e.g. close before open)."""
    pass


class DuplicateAccountError(ValidationError):
    """An account with this name already exists."""
    pass


class AlreadyClosedError(ValidationError):
    """The account already has a close directive."""
    pass


class AccountInUseError(ValidationError):
    """The account still has postings and cannot be removed."""
    pass


class InvalidAccountNameError(ValidationError):
    """The account name is malformed or uses an unknown root."""
    pass


class CurrencyNotAllowedError(ValidationError):
    """A posting uses a currency outside the account's permitted list."""
    pass


class EmptyTransactionError(ValidationError):
    """A transaction has no postings."""
    pass


# =============================================================================
# ADDRESSING
# =============================================================================

class NotFoundError(LedgerError):
    """No transaction or account carries the requested identifier."""

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type.capitalize()} not found: {entity_id}")


# =============================================================================
# STORAGE
# =============================================================================

class StorageError(LedgerError):
    """Base exception for storage operations."""
    pass


class ConflictError(StorageError):
    """The file changed since it was read; re-read and retry."""

    def __init__(self, file: str, expected_hash: str, actual_hash: str):
        self.file = file
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"{file} changed on disk (expected {expected_hash[:12]}, "
            f"found {actual_hash[:12]})"
        )


class LedgerIOError(StorageError, OSError):
    """The filesystem failed a read, write or rename."""

    def __init__(self, message: str, file: Optional[str] = None):
        self.file = file
        super().__init__(message)
