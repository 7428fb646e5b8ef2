"""
Account Manager

CRUD over the open/close directives in the accounts file.

DESIGN DECISION: Account mutations lock the main file and the accounts
file exclusively. They are rare, and holding both keeps the first
account (which creates accounts.bean and its include) simple.

Checks that depend on postings (delete, narrowing currencies) scan the
monthly files fresh, under shared locks, rather than trusting the index:
the engine never removes an account that something still posts to.
"""

import datetime
from typing import Any, Optional, Union

import structlog

from beanledger.errors import (
    AccountInUseError,
    AlreadyClosedError,
    CurrencyNotAllowedError,
    DuplicateAccountError,
    InvalidDateError,
    NotFoundError,
    ValidationError,
)
from beanledger.managers.base import BaseManager, new_identifier
from beanledger.managers.files import remove_at
from beanledger.models.audit import AuditEventBuilder
from beanledger.models.ledger import CURRENCY_RE, Account, Blank, Close, MetaValue, Open
from beanledger.models.query import AccountFilter
from beanledger.queries import AccountListing
from beanledger.services.index import AccountUsage, usage_of
from beanledger.services.storage import FileSnapshot
from beanledger.validation.rules import check_account_name, check_metadata, parse_date


logger = structlog.get_logger(__name__)


def _check_currencies(currencies: Optional[list[str]]) -> list[str]:
    result: list[str] = []
    for currency in currencies or []:
        if not isinstance(currency, str) or not CURRENCY_RE.match(currency):
            raise ValidationError(
                f"Invalid currency: {currency!r}",
                field="currencies",
                value=currency,
            )
        if currency not in result:
            result.append(currency)
    return result


class AccountManager(BaseManager):
    """
    Opens, closes, changes, removes and lists accounts.

    Accounts are addressed by id (persisted metadata, or a derived
    'accounts.bean:<line>' for hand-written opens) and can be looked
    up by name with find().
    """

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, account_id: str) -> Account:
        """
        Raises:
            NotFoundError: If no account has this id
        """
        return self._by_id(self._accounts(), account_id)

    def find(self, name: str) -> Account:
        """
        Raises:
            NotFoundError: If no account has this name
        """
        account = self._accounts().get(name)
        if account is None:
            raise NotFoundError("account", name)
        return account

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def open(
        self,
        name: str,
        date: Union[datetime.date, str],
        currencies: Optional[list[str]] = None,
        metadata: Optional[dict[str, MetaValue]] = None,
        booking: Optional[str] = None,
    ) -> str:
        """
        Open a new account.

        Returns:
            The new account's id

        Raises:
            InvalidAccountNameError: Malformed name or unknown root
            InvalidDateError: Malformed date
            DuplicateAccountError: The name is already used (open or closed)
        """
        check_account_name(name, self.settings.account_roots_list)
        when = parse_date(date)
        try:
            open_directive = Open(
                id=new_identifier(),
                date=when,
                account=name,
                currencies=_check_currencies(currencies),
                booking=booking,
                metadata=self._clean_metadata(metadata),
            )
        except ValueError as e:
            raise ValidationError(f"Invalid account: {e}", field="metadata", value=metadata) from e
        self._run(self._open, open_directive)
        self.audit.log(
            AuditEventBuilder.account_opened(open_directive.id, name, when.isoformat())
        )
        return open_directive.id

    def _open(self, directive: Open) -> None:
        with self.locks.hold(exclusive=[self.main_file, self.accounts_file]):
            snapshot = self.store.read(self.accounts_file)
            if any(
                isinstance(d, Open) and d.account == directive.account
                for d in snapshot.directives
            ):
                raise DuplicateAccountError(
                    f"Account already exists: {directive.account}",
                    field="name",
                    value=directive.account,
                )

            directives = list(snapshot.directives)
            if directives and not isinstance(directives[-1], Blank):
                directives.append(Blank())
            directives.append(directive)
            self._commit(snapshot, directives)
            if not snapshot.exists:
                self.audit.log_file_created(self.accounts_file)
            self._register(self.accounts_file)

    def close(self, account_id: str, date: Union[datetime.date, str]) -> str:
        """
        Close an account. Postings dated on the close date stay valid.

        Returns:
            The account's id from now on. A hand-written open gets a
            persisted id here, replacing its derived address.

        Raises:
            NotFoundError: If no account has this id
            AlreadyClosedError: If the account is already closed
            InvalidDateError: If the date is malformed or before the open date
        """
        when = parse_date(date)
        account = self._run(self._close, account_id, when, new_identifier())

        usage = self.index.usage(account.name)
        if usage.last_date and usage.last_date > when:
            logger.warning(
                "account_closed_with_later_postings",
                account=account.name,
                close_date=when.isoformat(),
                last_posting=usage.last_date.isoformat(),
            )
        self.audit.log(
            AuditEventBuilder.account_closed(account.id, account.name, when.isoformat())
        )
        return account.id

    def _close(self, account_id: str, when: datetime.date, fresh_id: str) -> Account:
        with self.locks.hold(exclusive=[self.main_file, self.accounts_file]):
            snapshot = self.store.read(self.accounts_file)
            account = self._by_id(self.index.accounts_for(snapshot), account_id)
            if account.is_closed:
                raise AlreadyClosedError(
                    f"{account.name} was already closed on {account.close_date}",
                    field="id",
                    value=account_id,
                )
            if when < account.open_date:
                raise InvalidDateError(
                    f"Close date {when} is before open date {account.open_date}",
                    field="date",
                    value=when.isoformat(),
                )

            position = self._open_position(snapshot.directives, account.name)
            directives = list(snapshot.directives)
            opened = self._pinned(directives[position], fresh_id)
            directives[position] = opened
            directives.insert(position + 1, Close(date=when, account=account.name))
            self._commit(snapshot, directives)
            return account.model_copy(update={"id": opened.id})

    def update(
        self,
        account_id: str,
        currencies: Optional[list[str]] = None,
        metadata: Optional[dict[str, MetaValue]] = None,
    ) -> str:
        """
        Replace the permitted currencies and/or metadata of an account.

        None leaves a field unchanged; an empty list lifts the currency
        restriction.

        Returns:
            The account's id from now on (see close()).

        Raises:
            NotFoundError: If no account has this id
            ValidationError: If a currency or metadata entry is malformed
            CurrencyNotAllowedError: If existing postings use a currency
                the new list leaves out
        """
        changes: dict[str, Any] = {}
        if currencies is not None:
            changes["currencies"] = _check_currencies(currencies)
        if metadata is not None:
            changes["metadata"] = self._clean_metadata(metadata)
        if not changes:
            return account_id

        account = self._run(self._update, account_id, changes, new_identifier())
        self.audit.log(AuditEventBuilder.account_updated(account.id, account.name, sorted(changes)))
        return account.id

    def _update(self, account_id: str, changes: dict[str, Any], fresh_id: str) -> Account:
        with self.locks.hold(exclusive=[self.main_file, self.accounts_file]):
            snapshot = self.store.read(self.accounts_file)
            account = self._by_id(self.index.accounts_for(snapshot), account_id)

            allowed = changes.get("currencies")
            if allowed:
                used = self._scan_usage(account.name).currencies
                excluded = sorted(used - set(allowed))
                if excluded:
                    raise CurrencyNotAllowedError(
                        f"{account.name} has postings in {', '.join(excluded)}",
                        field="currencies",
                        value=excluded,
                    )

            position = self._open_position(snapshot.directives, account.name)
            directives = list(snapshot.directives)
            opened = self._pinned(directives[position], fresh_id).model_copy(update=changes)
            directives[position] = opened
            self._commit(snapshot, directives)
            return account.model_copy(update={"id": opened.id})

    def delete(self, account_id: str) -> None:
        """
        Remove an account's open (and close) directives.

        Raises:
            NotFoundError: If no account has this id
            AccountInUseError: If any transaction posts to the account
        """
        account = self._run(self._delete, account_id)
        self.audit.log(AuditEventBuilder.account_deleted(account_id, account.name))

    def _delete(self, account_id: str) -> Account:
        with self.locks.hold(exclusive=[self.main_file, self.accounts_file]):
            snapshot = self.store.read(self.accounts_file)
            account = self._by_id(self.index.accounts_for(snapshot), account_id)

            usage = self._scan_usage(account.name)
            if usage.postings:
                raise AccountInUseError(
                    f"{account.name} still has {usage.postings} posting(s)",
                    field="id",
                    value=account_id,
                )

            directives = [
                d for d in snapshot.directives
                if not (isinstance(d, Close) and d.account == account.name)
            ]
            directives = remove_at(directives, self._open_position(directives, account.name))
            self._commit(snapshot, directives)
            return account

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _clean_metadata(self, metadata: Optional[dict[str, MetaValue]]) -> dict[str, MetaValue]:
        """Caller metadata, checked, without the reserved id key."""
        metadata = dict(metadata or {})
        check_metadata(metadata)
        metadata.pop(self.settings.id_metadata_key, None)
        return metadata

    @staticmethod
    def _by_id(accounts: dict[str, Account], account_id: str) -> Account:
        for account in accounts.values():
            if account.id == account_id:
                return account
        raise NotFoundError("account", account_id)

    @staticmethod
    def _open_position(directives: list, name: str) -> int:
        for position, directive in enumerate(directives):
            if isinstance(directive, Open) and directive.account == name:
                return position
        raise NotFoundError("account", name)

    def _scan_usage(self, name: str) -> AccountUsage:
        """Usage of an account across every monthly file, read fresh."""
        files = self.store.list_month_files()
        total = AccountUsage()
        with self.locks.hold(shared=files):
            for file in files:
                usage = usage_of(self.store.read(file).directives).get(name)
                if usage:
                    total.merge(usage)
        return total

    def _commit(self, snapshot: FileSnapshot, directives: list) -> None:
        self.store.write(self.accounts_file, directives, snapshot.content_hash)
        self.index.refresh_accounts(self.store.read(self.accounts_file))

    # =========================================================================
    # LISTINGS
    # =========================================================================

    # Kept last: inside the class body this name shadows the builtin list
    def list(self, filter: Optional[AccountFilter] = None) -> AccountListing:
        """Snapshot listing of accounts, in the order they were opened."""
        return AccountListing(self.store, self.accounts_file, filter)
