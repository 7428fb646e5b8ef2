"""
Shared Manager Plumbing

Both managers run every mutation as one read-modify-write cycle under
file locks. If a file changed on disk between our read and our write
(an outside edit), the store raises ConflictError; the whole cycle is
then re-run from a fresh read, a bounded number of times.

A failed atomic write (LedgerIOError) is never retried.
"""

import uuid
from typing import Callable, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from beanledger.audit import AuditLogger
from beanledger.config import LedgerSettings
from beanledger.errors import ConflictError, LedgerIOError
from beanledger.managers.files import add_include, is_included, remove_include
from beanledger.models.audit import AuditEventBuilder
from beanledger.models.ledger import Account, Open, Transaction
from beanledger.services.index import LedgerIndex
from beanledger.services.storage import FileLedgerStore


T = TypeVar("T")

logger = structlog.get_logger(__name__)


def new_identifier() -> str:
    return str(uuid.uuid4())


class BaseManager:
    """Settings, store, index and audit logger, plus the retry loop."""

    def __init__(
        self,
        settings: LedgerSettings,
        store: FileLedgerStore,
        index: LedgerIndex,
        audit_logger: AuditLogger,
    ):
        self.settings = settings
        self.store = store
        self.index = index
        self.audit = audit_logger
        self.locks = store.locks
        self.main_file = settings.main_file
        self.accounts_file = settings.accounts_file

    # -------------------------------------------------------------------------
    # Retry
    # -------------------------------------------------------------------------

    def _on_conflict(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            "write_conflict_retry",
            file=getattr(error, "file", None),
            attempt=retry_state.attempt_number,
        )
        self.audit.log_write_conflict(getattr(error, "file", "?"), str(error))

    def _run(self, operation: Callable[..., T], *args) -> T:
        """Run one read-modify-write cycle, re-running it on ConflictError."""
        retrying = Retrying(
            stop=stop_after_attempt(self.settings.conflict_retry_attempts),
            wait=wait_exponential(multiplier=0.01, min=0.01, max=0.2),
            retry=retry_if_exception_type(ConflictError),
            before_sleep=self._on_conflict,
            reraise=True,
        )
        try:
            return retrying(operation, *args)
        except ConflictError as e:
            self.audit.log_write_conflict(e.file, str(e))
            raise
        except LedgerIOError as e:
            self.audit.log_write_failed(e.file or "?", str(e))
            raise

    # -------------------------------------------------------------------------
    # Shared file operations (callers hold the needed locks)
    # -------------------------------------------------------------------------

    def _accounts(self) -> dict[str, Account]:
        """Accounts as of a fresh read of the accounts file."""
        return self.index.accounts_for(self.store.read(self.accounts_file))

    def _is_registered(self, name: str) -> bool:
        return is_included(self.store.read(self.main_file).directives, name)

    def _register(self, name: str) -> None:
        """Add an include for `name` to the main file (main held exclusively)."""
        main = self.store.read(self.main_file)
        updated = add_include(main.directives, name, self.accounts_file)
        if updated is None:
            return
        if not main.exists:
            self.audit.log_file_created(self.main_file)
        self.store.write(self.main_file, updated, main.content_hash)
        self.audit.log_include_changed(self.main_file, name, added=True)

    def _unregister(self, name: str) -> None:
        """Remove the include of `name` from the main file (main held exclusively)."""
        main = self.store.read(self.main_file)
        updated = remove_include(main.directives, name)
        if updated is None:
            return
        self.store.write(self.main_file, updated, main.content_hash)
        self.audit.log_include_changed(self.main_file, name, added=False)

    @staticmethod
    def _pinned(directive, fresh_id: str):
        """
        The directive with a persisted id.

        A derived '<file>:<line>' address is never stored: once lines
        shift it would be derived again for a different directive.
        """
        if directive.id is not None:
            return directive
        return directive.model_copy(update={"id": fresh_id})

    def assign_identifiers(self, name: str) -> int:
        """
        Persist fresh ids on the transactions and opens of one file
        that lack one. Returns how many were assigned.
        """
        return self._run(self._assign_identifiers, name)

    def _assign_identifiers(self, name: str) -> int:
        with self.locks.hold(exclusive=[name]):
            snapshot = self.store.read(name)
            directives = []
            assigned = 0
            for directive in snapshot.directives:
                if isinstance(directive, (Open, Transaction)) and directive.id is None:
                    directive = directive.model_copy(update={"id": new_identifier()})
                    assigned += 1
                directives.append(directive)
            if not assigned:
                return 0

            self.store.write(name, directives, snapshot.content_hash)
            fresh = self.store.read(name)
            if name == self.accounts_file:
                self.index.refresh_accounts(fresh)
            else:
                self.index.refresh_file(fresh)
            self.audit.log(AuditEventBuilder.identifiers_assigned(name, assigned))
            return assigned
