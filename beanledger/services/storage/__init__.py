"""
Storage Services Package

Provides the abstract store interface and its filesystem implementation.
The data directory is the only backend; the interface keeps it swappable
for tests.
"""

from beanledger.services.storage.interface import (
    AuditStorageInterface,
    ConflictError,
    FileSnapshot,
    LedgerIOError,
    LedgerStoreInterface,
    StorageError,
)
from beanledger.services.storage.filesystem import (
    EMPTY_HASH,
    MONTH_FILE_RE,
    FileLedgerStore,
    content_hash,
)
from beanledger.services.storage.locks import FileLock, LockRegistry

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "FileSnapshot",
    "LedgerStoreInterface",
    # Filesystem implementation
    "EMPTY_HASH",
    "MONTH_FILE_RE",
    "FileLedgerStore",
    "content_hash",
    # Locking
    "FileLock",
    "LockRegistry",
    # Exceptions
    "ConflictError",
    "LedgerIOError",
    "StorageError",
]
