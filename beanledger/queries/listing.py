"""
Ledger Listings

DESIGN DECISION: Listings are SNAPSHOTS.
The files a listing needs are read once, under shared locks, when the
listing is created. Iterating never touches the disk again, so:

- a listing is finite and reflects the ledger at call time
- it can be iterated any number of times with the same result
- writers are only held off while the snapshot is read

Filtering and interpolation happen lazily during iteration.
"""

import heapq
from typing import Iterator, Optional

from beanledger.models.ledger import Account, Include, Transaction
from beanledger.models.query import AccountFilter, TransactionFilter
from beanledger.services.index import transaction_ids
from beanledger.services.storage import MONTH_FILE_RE, FileSnapshot, FileLedgerStore
from beanledger.validation.balance import interpolate as interpolate_amounts
from beanledger.validation.rules import accounts_from_directives


def registered_month_files(main: FileSnapshot) -> list[str]:
    """Monthly files included by the main file, sorted by name."""
    return sorted({
        d.path for d in main.directives
        if isinstance(d, Include) and MONTH_FILE_RE.match(d.path)
    })


class TransactionListing:
    """
    Transactions of every registered monthly file the filter touches,
    merged in chronological order.

    Usage:
        listing = TransactionListing(store, "main.bean", TransactionFilter(account="Assets"))
        for txn in listing:
            ...
    """

    def __init__(
        self,
        store: FileLedgerStore,
        main_file: str,
        filter: Optional[TransactionFilter] = None,
        interpolate: bool = False,
    ):
        self._filter = filter or TransactionFilter()
        self._interpolate = interpolate
        self._snapshots = self._take_snapshot(store, main_file)

    def _take_snapshot(self, store: FileLedgerStore, main_file: str) -> list[FileSnapshot]:
        with store.locks.hold(shared=[main_file]):
            files = [
                name for name in registered_month_files(store.read(main_file))
                if self._filter.covers_month(*self._month_of(name))
            ]
            with store.locks.hold(shared=files):
                return [store.read(name) for name in files]

    @staticmethod
    def _month_of(name: str) -> tuple[int, int]:
        match = MONTH_FILE_RE.match(name)
        return int(match.group(1)), int(match.group(2))

    @property
    def files(self) -> list[str]:
        return [snapshot.name for snapshot in self._snapshots]

    def __iter__(self) -> Iterator[Transaction]:
        streams = [self._stream(snapshot) for snapshot in self._snapshots]
        return heapq.merge(*streams, key=lambda txn: txn.date)

    def _stream(self, snapshot: FileSnapshot) -> Iterator[Transaction]:
        selected = []
        for index, identifier in transaction_ids(snapshot):
            txn = snapshot.directives[index]
            if self._filter.matches(txn):
                selected.append(txn.model_copy(update={"id": identifier}))
        # stable: same-date transactions keep their file order
        for txn in sorted(selected, key=lambda t: t.date):
            yield interpolate_amounts(txn) if self._interpolate else txn


class AccountListing:
    """Accounts of one snapshot of the accounts file, in file order."""

    def __init__(
        self,
        store: FileLedgerStore,
        accounts_file: str,
        filter: Optional[AccountFilter] = None,
    ):
        self._filter = filter or AccountFilter()
        snapshot = store.read(accounts_file)
        self._accounts = list(
            accounts_from_directives(snapshot.directives, snapshot.spans, accounts_file).values()
        )

    def __iter__(self) -> Iterator[Account]:
        return (account for account in self._accounts if self._filter.matches(account))
