"""
Ledger Index

DESIGN DECISION: The engine keeps an in-memory index instead of
re-scanning every file per operation:

- account name -> Account (open/close interval, currencies)
- transaction id -> monthly file holding it
- per monthly file: content hash, transaction ids and per-account usage

The index is rebuilt when the engine opens (or on reindex()) and is
updated by every mutation while that mutation still holds its file
locks, so it never runs ahead of or behind the files the engine wrote.

Files edited by hand are reconciled lazily: a cached entry whose hash
no longer matches the file is refreshed on next use, and an unknown
transaction id triggers one full reindex before NotFoundError.
"""

import datetime
import threading
from dataclasses import dataclass, field
from typing import Optional

import structlog

from beanledger.errors import ParseError
from beanledger.models.ledger import Account, Transaction, derived_id
from beanledger.services.storage import FileSnapshot, LedgerStoreInterface
from beanledger.validation.rules import accounts_from_directives


logger = structlog.get_logger(__name__)


@dataclass
class AccountUsage:
    """How a monthly file (or the whole ledger) uses one account."""
    postings: int = 0
    currencies: set[str] = field(default_factory=set)
    last_date: Optional[datetime.date] = None

    def merge(self, other: "AccountUsage") -> None:
        self.postings += other.postings
        self.currencies |= other.currencies
        if other.last_date and (self.last_date is None or other.last_date > self.last_date):
            self.last_date = other.last_date


@dataclass
class FileEntry:
    content_hash: str
    transaction_ids: list[str] = field(default_factory=list)
    usage: dict[str, AccountUsage] = field(default_factory=dict)


def transaction_ids(snapshot: FileSnapshot) -> list[tuple[int, str]]:
    """(directive index, id) of every transaction, deriving missing ids."""
    result = []
    for index, directive in enumerate(snapshot.directives):
        if isinstance(directive, Transaction):
            identifier = directive.id or derived_id(snapshot.name, snapshot.spans[index].line)
            result.append((index, identifier))
    return result


def usage_of(directives: list) -> dict[str, AccountUsage]:
    usage: dict[str, AccountUsage] = {}
    for directive in directives:
        if not isinstance(directive, Transaction):
            continue
        for posting in directive.postings:
            entry = usage.setdefault(posting.account, AccountUsage())
            entry.postings += 1
            if posting.units is not None:
                entry.currencies.add(posting.units.currency)
            if entry.last_date is None or directive.date > entry.last_date:
                entry.last_date = directive.date
    return usage


class LedgerIndex:
    """Thread-safe lookup tables over the ledger files."""

    def __init__(self, accounts_file: str):
        self._accounts_file = accounts_file
        self._lock = threading.RLock()
        self._accounts: dict[str, Account] = {}
        self._accounts_hash: Optional[str] = None
        self._files: dict[str, FileEntry] = {}
        self._transactions: dict[str, str] = {}

    # =========================================================================
    # BUILDING
    # =========================================================================

    def rebuild(self, store: LedgerStoreInterface, month_files: list[str]) -> dict[str, int]:
        """
        Re-read the accounts file and every monthly file.

        Files that fail to parse are left out and logged; the Verifier
        reports them, and any mutation touching them raises ParseError.
        Files are read before the index lock is taken: writers update
        the index while holding file locks.
        """
        snapshots: list[FileSnapshot] = []
        for name in [self._accounts_file, *month_files]:
            try:
                snapshots.append(store.read(name))
            except ParseError as e:
                logger.warning("index_skipped_file", file=name, error=str(e))

        with self._lock:
            self._accounts = {}
            self._accounts_hash = None
            self._files = {}
            self._transactions = {}
            for snapshot in snapshots:
                if snapshot.name == self._accounts_file:
                    self.refresh_accounts(snapshot)
                else:
                    self.refresh_file(snapshot)
            return self.stats()

    def refresh_accounts(self, snapshot: FileSnapshot) -> dict[str, Account]:
        with self._lock:
            accounts = accounts_from_directives(
                snapshot.directives, snapshot.spans, snapshot.name
            )
            self._accounts = accounts
            self._accounts_hash = snapshot.content_hash
            return dict(accounts)

    def accounts_for(self, snapshot: FileSnapshot) -> dict[str, Account]:
        """Accounts matching a fresh read of the accounts file."""
        with self._lock:
            if snapshot.content_hash != self._accounts_hash:
                logger.info("index_refreshed", file=snapshot.name, reason="hash_changed")
                return self.refresh_accounts(snapshot)
            return dict(self._accounts)

    def refresh_file(self, snapshot: FileSnapshot) -> None:
        """Re-index one monthly file from a snapshot of it."""
        with self._lock:
            self.forget_file(snapshot.name)
            if not snapshot.exists:
                return
            ids = [identifier for _, identifier in transaction_ids(snapshot)]
            self._files[snapshot.name] = FileEntry(
                content_hash=snapshot.content_hash,
                transaction_ids=ids,
                usage=usage_of(snapshot.directives),
            )
            for identifier in ids:
                self._transactions[identifier] = snapshot.name

    def forget_file(self, name: str) -> None:
        with self._lock:
            entry = self._files.pop(name, None)
            if entry is None:
                return
            for identifier in entry.transaction_ids:
                if self._transactions.get(identifier) == name:
                    del self._transactions[identifier]

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def locate(self, transaction_id: str) -> Optional[str]:
        with self._lock:
            return self._transactions.get(transaction_id)

    def usage(self, account: str) -> AccountUsage:
        """Usage of one account across every indexed monthly file."""
        total = AccountUsage()
        with self._lock:
            for entry in self._files.values():
                if account in entry.usage:
                    total.merge(entry.usage[account])
        return total

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "files": len(self._files),
                "accounts": len(self._accounts),
                "transactions": len(self._transactions),
            }
