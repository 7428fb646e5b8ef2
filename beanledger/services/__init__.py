"""Services package."""

from beanledger.services.codec import (
    LedgerCodec,
    ParseError,
)
from beanledger.services.storage import (
    AuditStorageInterface,
    ConflictError,
    FileLedgerStore,
    FileSnapshot,
    LedgerIOError,
    LedgerStoreInterface,
    LockRegistry,
    StorageError,
)
from beanledger.services.index import LedgerIndex

__all__ = [
    # Codec
    "LedgerCodec",
    "ParseError",
    # Storage services
    "AuditStorageInterface",
    "FileLedgerStore",
    "FileSnapshot",
    "LedgerStoreInterface",
    "LockRegistry",
    # Index
    "LedgerIndex",
    # Exceptions
    "ConflictError",
    "LedgerIOError",
    "StorageError",
]
