"""
Ledger Engine

This module ties together all the components and is the one object
a request layer talks to:

1. Accounts (open / close / update / delete / list)
2. Transactions (add / update / delete / clear / list)
3. Verification and reindexing

DESIGN DECISION: The engine is explicit, process-scoped state.
open() discovers the files and builds the index; close() waits for
in-flight mutations and releases nothing else. Every component gets
its collaborators through its constructor, so there are no ambient
singletons and several engines (say, one per test) can coexist.
"""

import datetime
from pathlib import Path
from typing import Optional, Union

import structlog

from beanledger.audit import AuditLogger, configure_logging
from beanledger.config import LedgerSettings, get_settings
from beanledger.errors import LedgerError
from beanledger.managers import AccountManager, TransactionManager
from beanledger.models.audit import AuditEventBuilder
from beanledger.models.ledger import Account, MetaValue, Transaction, TransactionSpec
from beanledger.models.query import AccountFilter, TransactionFilter
from beanledger.models.verification import Diagnostic, Severity
from beanledger.queries import AccountListing, TransactionListing
from beanledger.services.codec import LedgerCodec
from beanledger.services.index import LedgerIndex
from beanledger.services.storage import AuditStorageInterface, FileLedgerStore, LockRegistry
from beanledger.validation import LedgerVerifier


logger = structlog.get_logger(__name__)


class LedgerEngine:
    """
    Structured CRUD over a plaintext double-entry ledger.

    Usage:
        with LedgerEngine(LedgerSettings(data_dir=Path("data"))) as engine:
            cash = engine.open_account("Assets:Cash", "2024-01-01", ["USD"])
            engine.add_transaction(spec)
            problems = engine.verify()

    All methods are safe to call from several threads at once.

    Mutations that address an existing directive return the id it has
    afterwards. That is the id passed in, except for hand-written
    directives addressed by a derived '<file>:<line>': the first
    mutation stores a fresh id on them.
    """

    def __init__(
        self,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.settings = settings or get_settings().ledger
        self.audit = audit_logger or AuditLogger()

        self.codec = LedgerCodec(self.settings.id_metadata_key)
        self.locks = LockRegistry(self.settings.main_file, self.settings.accounts_file)
        self.store = FileLedgerStore(
            self.settings.data_dir,
            self.codec,
            self.locks,
            encoding=self.settings.encoding,
        )
        self.index = LedgerIndex(self.settings.accounts_file)

        self.accounts = AccountManager(self.settings, self.store, self.index, self.audit)
        self.transactions = TransactionManager(self.settings, self.store, self.index, self.audit)
        self.verifier = LedgerVerifier(
            self.store,
            self.settings.main_file,
            self.settings.accounts_file,
            self.settings.balance_tolerance,
            id_key=self.settings.id_metadata_key,
        )
        self._is_open = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def is_open(self) -> bool:
        return self._is_open

    def open(self) -> "LedgerEngine":
        """Discover the ledger files and build the index."""
        self.reindex()
        self._is_open = True
        logger.info("engine_opened", data_dir=str(self.settings.data_dir))
        return self

    def close(self) -> None:
        """Wait for in-flight mutations to finish, then stop accepting calls."""
        if not self._is_open:
            return
        names = [self.settings.main_file, self.settings.accounts_file]
        names.extend(self.store.list_month_files())
        with self.locks.hold(exclusive=names):
            self._is_open = False
        logger.info("engine_closed", data_dir=str(self.settings.data_dir))

    def __enter__(self) -> "LedgerEngine":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _check_open(self) -> None:
        if not self._is_open:
            raise LedgerError("Ledger engine is not open; call open() first")

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    def open_account(
        self,
        name: str,
        date: Union[datetime.date, str],
        currencies: Optional[list[str]] = None,
        metadata: Optional[dict[str, MetaValue]] = None,
    ) -> str:
        self._check_open()
        return self.accounts.open(name, date, currencies, metadata)

    def close_account(self, account_id: str, date: Union[datetime.date, str]) -> str:
        self._check_open()
        return self.accounts.close(account_id, date)

    def get_account(self, account_id: str) -> Account:
        self._check_open()
        return self.accounts.get(account_id)

    def find_account(self, name: str) -> Account:
        self._check_open()
        return self.accounts.find(name)

    def update_account(
        self,
        account_id: str,
        currencies: Optional[list[str]] = None,
        metadata: Optional[dict[str, MetaValue]] = None,
    ) -> str:
        self._check_open()
        return self.accounts.update(account_id, currencies, metadata)

    def delete_account(self, account_id: str) -> None:
        self._check_open()
        self.accounts.delete(account_id)

    def list_accounts(self, filter: Optional[AccountFilter] = None) -> AccountListing:
        self._check_open()
        return self.accounts.list(filter)

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    def add_transaction(self, spec: Union[TransactionSpec, dict]) -> str:
        self._check_open()
        return self.transactions.add(spec)

    def get_transaction(self, transaction_id: str) -> Transaction:
        self._check_open()
        return self.transactions.get(transaction_id)

    def update_transaction(self, transaction_id: str, spec: Union[TransactionSpec, dict]) -> str:
        self._check_open()
        return self.transactions.update(transaction_id, spec)

    def delete_transaction(self, transaction_id: str) -> None:
        self._check_open()
        self.transactions.delete(transaction_id)

    def clear_transaction(self, transaction_id: str) -> str:
        self._check_open()
        return self.transactions.clear(transaction_id)

    def unclear_transaction(self, transaction_id: str) -> str:
        self._check_open()
        return self.transactions.unclear(transaction_id)

    def list_transactions(
        self,
        filter: Optional[TransactionFilter] = None,
        interpolate: bool = False,
    ) -> TransactionListing:
        self._check_open()
        return self.transactions.list(filter, interpolate)

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def verify(self) -> list[Diagnostic]:
        """Re-validate everything on disk. Read-only."""
        self._check_open()
        diagnostics = self.verifier.verify()
        errors = sum(d.severity == Severity.ERROR for d in diagnostics)
        self.audit.log(
            AuditEventBuilder.verification_completed(errors, len(diagnostics) - errors)
        )
        return diagnostics

    def reindex(self) -> dict[str, int]:
        """Rebuild the in-memory index from the files on disk."""
        stats = self.transactions.reindex()
        self.audit.log(AuditEventBuilder.reindexed(**stats))
        return stats

    def assign_missing_identifiers(self) -> int:
        """
        Give every transaction and open directive without a persisted id
        a fresh one. Derived '<file>:<line>' ids stop working afterwards.
        """
        self._check_open()
        total = 0
        for name in [self.settings.accounts_file, *self.store.list_month_files()]:
            if self.store.exists(name):
                total += self.transactions.assign_identifiers(name)
        return total


def create_engine(
    data_dir: Optional[Union[str, Path]] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
) -> LedgerEngine:
    """
    Factory function to create an opened engine from environment settings.

    Args:
        data_dir: Overrides BEANLEDGER_DATA_DIR when given.
        audit_storage: Optional sink for audit events besides the log.

    Returns:
        An engine that has already been opened.
    """
    settings = get_settings()
    configure_logging(settings.logging)

    ledger_settings = settings.ledger
    if data_dir is not None:
        ledger_settings = ledger_settings.model_copy(update={"data_dir": Path(data_dir)})

    engine = LedgerEngine(ledger_settings, AuditLogger(audit_storage))
    return engine.open()
