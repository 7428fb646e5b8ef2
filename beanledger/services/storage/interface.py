"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep managers unaware of paths, temp files and renames
2. Use a throwaway directory (or a fake store) in tests
3. Put the optimistic-concurrency contract in one place

Files are addressed by bare name relative to the data directory
('main.bean', '2024-03.bean'). Every read returns a content hash;
every write must present the hash it read.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from beanledger.errors import ConflictError, LedgerIOError, StorageError
from beanledger.models.audit import AuditEvent
from beanledger.services.codec import DirectiveSpan


@dataclass(frozen=True)
class FileSnapshot:
    """
    The contents of one ledger file at one point in time.

    A missing file reads as an empty snapshot with exists=False;
    its hash is the hash of empty text.
    """
    name: str
    directives: list
    content_hash: str
    spans: list[DirectiveSpan] = field(default_factory=list)
    exists: bool = True


class LedgerStoreInterface(ABC):
    """
    Abstract interface for ledger file storage.

    Implementations must serialize mutations per file and never expose
    a partially written file.
    """

    @abstractmethod
    def read(self, name: str) -> FileSnapshot:
        """
        Read and decode a ledger file.

        Raises:
            ParseError: If the file content is malformed
            LedgerIOError: If the file cannot be read
        """
        pass

    @abstractmethod
    def write(self, name: str, directives: list, expected_hash: str) -> str:
        """
        Encode directives and replace the file with them.

        Args:
            name: File name relative to the data directory
            directives: Complete new content of the file
            expected_hash: Hash returned by the read this write is based on

        Returns:
            The hash of the new content

        Raises:
            ConflictError: If the file changed since it was read
            ParseError: If the encoded text would not parse back
            LedgerIOError: If the filesystem rejects the write
        """
        pass

    @abstractmethod
    def atomic_replace(self, name: str, text: str) -> str:
        """
        Write text to a temporary file and rename it over the target.

        Returns the hash of the written text.
        """
        pass

    @abstractmethod
    def remove(self, name: str, expected_hash: str) -> None:
        """Delete a file, provided it still has the expected hash."""
        pass

    @abstractmethod
    def exists(self, name: str) -> bool:
        pass

    @abstractmethod
    def list_files(self) -> list[str]:
        """Names of every *.bean file in the data directory, sorted."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """All events for one account, transaction or file, oldest first."""
        pass

    @abstractmethod
    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


__all__ = [
    "AuditStorageInterface",
    "ConflictError",
    "FileSnapshot",
    "LedgerIOError",
    "LedgerStoreInterface",
    "StorageError",
]
