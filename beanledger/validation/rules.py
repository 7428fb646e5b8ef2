"""
Ledger Rules

Checks shared by the managers (which raise the first problem before
writing anything) and the Verifier (which reports every problem it
finds on disk). Keeping them in one place means a diagnostic always
names the error the engine would have raised for the same content.
"""

import datetime
from decimal import Decimal
from typing import Any, Iterator, Mapping

from beanledger.errors import (
    AccountNotOpenError,
    CurrencyNotAllowedError,
    InvalidAccountNameError,
    InvalidDateError,
    UnknownAccountError,
    ValidationError,
)
from beanledger.models.ledger import (
    ACCOUNT_RE,
    META_KEY_RE,
    Account,
    Close,
    MetaValue,
    Open,
    TransactionSpec,
    derived_id,
)
from beanledger.validation.balance import check_balance


def parse_date(value: Any, field: str = "date") -> datetime.date:
    """Accept a date or an ISO 'YYYY-MM-DD' string."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if isinstance(value, str):
        try:
            return datetime.date.fromisoformat(value.strip())
        except ValueError:
            pass
    raise InvalidDateError(f"Invalid date: {value!r}", field=field, value=value)


def check_account_name(name: str, roots: list[str]) -> str:
    if not isinstance(name, str) or not ACCOUNT_RE.match(name):
        raise InvalidAccountNameError(
            f"Invalid account name: {name!r}",
            field="name",
            value=name,
        )
    root = name.split(":", 1)[0]
    if roots and root not in roots:
        raise InvalidAccountNameError(
            f"Account root {root!r} is not one of {', '.join(roots)}",
            field="name",
            value=name,
        )
    return name


def check_metadata(metadata: Mapping[str, MetaValue], field: str = "metadata") -> None:
    """Keys must be valid metadata keys; strings must fit on one line."""
    for key, value in metadata.items():
        if not isinstance(key, str) or not META_KEY_RE.match(key):
            raise ValidationError(
                f"Invalid metadata key: {key!r}",
                field=field,
                value=key,
            )
        if isinstance(value, str) and ("\n" in value or "\r" in value):
            raise ValidationError(
                f"Metadata value for {key!r} must be a single line",
                field=f"{field}.{key}",
                value=value,
            )
        if isinstance(value, Decimal) and not value.is_finite():
            raise ValidationError(
                f"Metadata value for {key!r} must be a finite number",
                field=f"{field}.{key}",
                value=value,
            )


def accounts_from_directives(
    directives: list,
    spans: list,
    file: str,
) -> dict[str, Account]:
    """
    Build account views from the open/close directives of one file.

    The first open of a name wins; a close only applies to an open
    account and only if it is not dated before the open.
    """
    accounts: dict[str, Account] = {}
    for index, directive in enumerate(directives):
        if isinstance(directive, Open) and directive.account not in accounts:
            identifier = directive.id
            if identifier is None and index < len(spans):
                identifier = derived_id(file, spans[index].line)
            accounts[directive.account] = Account(
                id=identifier,
                name=directive.account,
                open_date=directive.date,
                currencies=directive.currencies,
                metadata=directive.metadata,
            )
        elif isinstance(directive, Close):
            account = accounts.get(directive.account)
            if account and not account.is_closed and directive.date >= account.open_date:
                accounts[directive.account] = account.model_copy(
                    update={"close_date": directive.date}
                )
    return accounts


def posting_problems(
    spec: TransactionSpec,
    accounts: Mapping[str, Account],
) -> Iterator[tuple[int, ValidationError]]:
    """Yield (posting index, error) for every posting that breaks a rule."""
    for index, posting in enumerate(spec.postings):
        field = f"postings[{index}].account"
        account = accounts.get(posting.account)

        if account is None:
            yield index, UnknownAccountError(
                f"Unknown account: {posting.account}",
                field=field,
                value=posting.account,
            )
            continue

        if spec.date < account.open_date:
            yield index, AccountNotOpenError(
                f"{posting.account} is not open until {account.open_date} "
                f"(transaction dated {spec.date})",
                field=field,
                value=posting.account,
            )
        elif not account.is_open_on(spec.date):
            yield index, AccountNotOpenError(
                f"{posting.account} was closed on {account.close_date} "
                f"(transaction dated {spec.date})",
                field=field,
                value=posting.account,
            )

        if posting.units and not account.allows_currency(posting.units.currency):
            yield index, CurrencyNotAllowedError(
                f"{posting.account} does not permit {posting.units.currency} "
                f"(permitted: {', '.join(account.currencies)})",
                field=f"postings[{index}].units",
                value=posting.units.currency,
            )


def check_transaction(
    spec: TransactionSpec,
    accounts: Mapping[str, Account],
    tolerance: Decimal,
    check_residual: bool = True,
) -> None:
    """
    Raise the first reason this transaction may not be written.

    Structure first (metadata, postings, omitted amounts), then account
    references, then the balance itself.
    """
    check_metadata(spec.metadata)
    for index, posting in enumerate(spec.postings):
        check_metadata(posting.metadata, field=f"postings[{index}].metadata")
    check_balance(spec, tolerance, require_zero_residual=False)
    for _, error in posting_problems(spec, accounts):
        raise error
    if check_residual:
        check_balance(spec, tolerance)
