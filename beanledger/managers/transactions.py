"""
Transaction Manager

CRUD over transactions, routed by date to monthly files.

DESIGN DECISION: Validation happens before any file is touched. A
request that fails validation leaves every file byte-for-byte as it was.

Routing rules:
- a transaction dated 2024-03-15 lives in 2024-03.bean, nowhere else
- a monthly file is created on its first transaction and registered
  in the main file with one include directive
- within a file, transactions stay in date order; same-date
  transactions keep the order they were added in
- deleting the last transaction of a month removes the include,
  then the file

Moving a transaction to another month (update with a new date) writes
the new file before it removes the transaction from the old one. A crash
in between leaves the transaction in both files under the same id; the
Verifier reports that as a duplicate identifier.
"""

from typing import Any, Optional, Union

import structlog

from beanledger.errors import NotFoundError, ValidationError
from beanledger.managers.base import BaseManager, new_identifier
from beanledger.managers.files import insert_dated, is_effectively_empty, month_file, remove_at
from beanledger.models.audit import AuditEventBuilder
from beanledger.models.ledger import (
    CLEARED_FLAG,
    FLAG_CHARACTERS,
    PENDING_FLAG,
    Transaction,
    TransactionSpec,
    parse_derived_id,
)
from beanledger.models.query import TransactionFilter
from beanledger.queries import TransactionListing
from beanledger.services.index import transaction_ids
from beanledger.services.storage import MONTH_FILE_RE, FileSnapshot
from beanledger.validation.rules import check_transaction


logger = structlog.get_logger(__name__)

_STALE = object()


class TransactionManager(BaseManager):
    """
    Adds, changes, removes and lists transactions.

    Usage:
        txn_id = manager.add(TransactionSpec(date=..., postings=[...]))
        manager.update(txn_id, spec)
        manager.delete(txn_id)
    """

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, transaction_id: str) -> Transaction:
        """
        Fetch one transaction.

        Raises:
            NotFoundError: If no transaction has this id
        """
        def lookup(source: str):
            snapshot = self.store.read(source)
            position = self._position(snapshot, transaction_id)
            if position is None:
                return _STALE
            return snapshot.directives[position].model_copy(update={"id": transaction_id})

        return self._resolve(transaction_id, lookup)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def add(self, spec: Union[TransactionSpec, dict]) -> str:
        """
        Validate a transaction and write it to its monthly file.

        Returns:
            The new transaction's id

        Raises:
            EmptyTransactionError, UnknownAccountError, AccountNotOpenError,
            CurrencyNotAllowedError, UnbalancedTransactionError: Invalid spec
            ConflictError: The file kept changing on disk
        """
        spec = self._prepare(spec)
        transaction = spec.to_transaction(new_identifier())
        target = month_file(spec.date)
        self._run(self._add, transaction, target)
        self.audit.log(
            AuditEventBuilder.transaction_added(transaction.id, target, spec.date.isoformat())
        )
        return transaction.id

    def _add(self, transaction: Transaction, target: str) -> None:
        need_main = not self._is_registered(target)
        while True:
            held = {"exclusive": [target], "shared": [self.accounts_file]}
            if need_main:
                held["exclusive"].append(self.main_file)
            else:
                held["shared"].append(self.main_file)

            with self.locks.hold(**held):
                if not need_main and not self._is_registered(target):
                    need_main = True
                    continue

                check_transaction(
                    transaction,
                    self._accounts(),
                    self.settings.balance_tolerance,
                    self.settings.check_balance_on_write,
                )
                # a retried attempt may already have written the transaction
                if self.index.locate(transaction.id) != target:
                    self._insert(target, transaction)
                if need_main:
                    self._register(target)
                return

    def update(self, transaction_id: str, spec: Union[TransactionSpec, dict]) -> str:
        """
        Replace a transaction's content, keeping its id.

        A new date in another month moves it to that month's file.

        Returns:
            The transaction's id from now on. It equals transaction_id
            unless that was a derived '<file>:<line>' address; the
            transaction then gets a persisted id.

        Raises:
            NotFoundError: If no transaction has this id
            ValidationError: If the new content is invalid
        """
        spec = self._prepare(spec)
        fresh_id = new_identifier()
        new_id, source, target = self._resolve(transaction_id, lambda source: self._run(
            self._update, transaction_id, spec, source, fresh_id
        ))
        if source != target:
            self.audit.log(AuditEventBuilder.transaction_moved(new_id, source, target))
        else:
            self.audit.log(AuditEventBuilder.transaction_updated(new_id, target))
        return new_id

    def _update(self, transaction_id: str, spec: TransactionSpec, source: str, fresh_id: str):
        target = month_file(spec.date)
        with self.locks.hold(
            exclusive=[self.main_file, source, target],
            shared=[self.accounts_file],
        ):
            snapshot = self.store.read(source)
            position = self._position(snapshot, transaction_id)
            if position is None:
                return _STALE
            old = snapshot.directives[position]
            new_id = self._pinned(old, fresh_id).id

            new = spec.to_transaction(new_id).model_copy(
                update={"comments": list(old.comments)}
            )
            check_transaction(
                new,
                self._accounts(),
                self.settings.balance_tolerance,
                self.settings.check_balance_on_write,
            )

            if target == source:
                if new.date == old.date:
                    directives = list(snapshot.directives)
                    directives[position] = new
                else:
                    directives = insert_dated(remove_at(snapshot.directives, position), new, new.date)
                self._commit(snapshot, directives)
                return new_id, source, target

            # Insert into the new month before removing from the old one
            if self.index.locate(new_id) != target:
                self._insert(target, new)
            self._register(target)
            self._commit(snapshot, remove_at(snapshot.directives, position))
            return new_id, source, target

    def delete(self, transaction_id: str) -> None:
        """
        Remove a transaction.

        Raises:
            NotFoundError: If no transaction has this id
        """
        source = self._resolve(transaction_id, lambda source: self._run(
            self._delete, transaction_id, source
        ))
        self.audit.log(AuditEventBuilder.transaction_deleted(transaction_id, source))

    def _delete(self, transaction_id: str, source: str):
        with self.locks.hold(exclusive=[self.main_file, source]):
            snapshot = self.store.read(source)
            position = self._position(snapshot, transaction_id)
            if position is None:
                return _STALE
            self._commit(snapshot, remove_at(snapshot.directives, position))
            return source

    def clear(self, transaction_id: str) -> str:
        """Mark a transaction cleared ('*')."""
        return self.set_flag(transaction_id, CLEARED_FLAG)

    def unclear(self, transaction_id: str) -> str:
        """Mark a transaction pending ('!')."""
        return self.set_flag(transaction_id, PENDING_FLAG)

    def set_flag(self, transaction_id: str, flag: str) -> str:
        """
        Change a transaction's flag, rewriting only its file.

        Returns the transaction's id from now on (see update()).
        """
        if not isinstance(flag, str) or len(flag) != 1 or flag not in FLAG_CHARACTERS:
            raise ValidationError(f"Invalid transaction flag: {flag!r}", field="flag", value=flag)
        fresh_id = new_identifier()
        new_id, old_flag = self._resolve(transaction_id, lambda source: self._run(
            self._set_flag, transaction_id, flag, source, fresh_id
        ))
        if old_flag != flag:
            self.audit.log(AuditEventBuilder.transaction_flag_changed(new_id, old_flag, flag))
        return new_id

    def _set_flag(self, transaction_id: str, flag: str, source: str, fresh_id: str):
        with self.locks.hold(exclusive=[source]):
            snapshot = self.store.read(source)
            position = self._position(snapshot, transaction_id)
            if position is None:
                return _STALE
            old = snapshot.directives[position]
            if old.flag == flag:
                return transaction_id, flag
            directives = list(snapshot.directives)
            directives[position] = self._pinned(old, fresh_id).model_copy(update={"flag": flag})
            self._commit(snapshot, directives)
            return directives[position].id, old.flag

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _prepare(self, spec: Union[TransactionSpec, dict]) -> TransactionSpec:
        """Coerce to a spec and drop any caller-supplied id metadata."""
        if isinstance(spec, Transaction):
            spec = spec.to_spec()
        elif not isinstance(spec, TransactionSpec):
            spec = TransactionSpec.model_validate(spec)
        if self.settings.id_metadata_key in spec.metadata:
            metadata = dict(spec.metadata)
            del metadata[self.settings.id_metadata_key]
            spec = spec.model_copy(update={"metadata": metadata})
        return spec

    @staticmethod
    def _position(snapshot: FileSnapshot, transaction_id: str) -> Optional[int]:
        for position, identifier in transaction_ids(snapshot):
            if identifier == transaction_id:
                return position
        return None

    def _locate(self, transaction_id: str) -> Optional[str]:
        source = self.index.locate(transaction_id)
        if source is None:
            derived = parse_derived_id(transaction_id)
            if derived and self.store.exists(derived[0]):
                source = derived[0]
        return source

    def _resolve(self, transaction_id: str, action) -> Any:
        """
        Find the file holding a transaction and run `action(file)`.

        If the index is stale (the id is unknown, or the file no longer
        holds it) the index is rebuilt once and the lookup repeated.
        """
        for attempt in range(2):
            source = self._locate(transaction_id)
            if source is not None:
                result = action(source)
                if result is not _STALE:
                    return result
            if attempt == 0:
                logger.info("transaction_lookup_reindex", transaction_id=transaction_id)
                self.reindex()
        raise NotFoundError("transaction", transaction_id)

    def reindex(self) -> dict[str, int]:
        return self.index.rebuild(self.store, self.store.list_month_files())

    def _insert(self, target: str, transaction: Transaction) -> None:
        """Insert into a monthly file, creating it if needed (target held exclusively)."""
        snapshot = self.store.read(target)
        directives = insert_dated(snapshot.directives, transaction, transaction.date)
        self.store.write(target, directives, snapshot.content_hash)
        if not snapshot.exists:
            self.audit.log_file_created(target)
        self.index.refresh_file(self.store.read(target))

    def _commit(self, snapshot: FileSnapshot, directives: list) -> None:
        """
        Write a changed file back, or remove a monthly file left empty
        (include first, then the file).
        """
        name = snapshot.name
        if MONTH_FILE_RE.match(name) and is_effectively_empty(directives):
            self._unregister(name)
            self.store.remove(name, snapshot.content_hash)
            self.index.forget_file(name)
            self.audit.log_file_removed(name)
            return
        self.store.write(name, directives, snapshot.content_hash)
        self.index.refresh_file(self.store.read(name))

    # =========================================================================
    # LISTINGS
    # =========================================================================

    # Kept last: inside the class body this name shadows the builtin list
    def list(
        self,
        filter: Optional[TransactionFilter] = None,
        interpolate: bool = False,
    ) -> TransactionListing:
        """Snapshot listing of matching transactions in date order."""
        return TransactionListing(self.store, self.main_file, filter, interpolate)
