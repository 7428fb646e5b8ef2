"""
Ledger Text Encoder

Turns directives back into ledger text.

The output is normalized (two-space indentation, one posting per line,
ids written as the first metadata entry) but always decodes back to
the same directives. Raw directives and comments are emitted verbatim.
"""

import datetime
from decimal import Decimal
from typing import Iterable

from beanledger.models.ledger import (
    Amount,
    Blank,
    Close,
    Comment,
    Cost,
    Include,
    MetaValue,
    Open,
    Posting,
    RawDirective,
    Transaction,
)


INDENT = "  "


def format_number(number: Decimal) -> str:
    """Plain positional notation; exponents are not valid ledger syntax."""
    return format(number, "f")


def format_amount(amount: Amount) -> str:
    return f"{format_number(amount.number)} {amount.currency}"


def quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def format_meta_value(value: MetaValue) -> str:
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, datetime.date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format_number(value)
    return quote(str(value))


def format_cost(cost: Cost) -> str:
    parts = []
    if cost.number is not None:
        parts.append(f"{format_number(cost.number)} {cost.currency}")
    if cost.date is not None:
        parts.append(cost.date.isoformat())
    if cost.label is not None:
        parts.append(quote(cost.label))
    inner = ", ".join(parts)
    return f"{{{{{inner}}}}}" if cost.is_total else f"{{{inner}}}"


class LedgerEncoder:
    """Serializes directives; id_key must match the decoder's."""

    def __init__(self, id_key: str = "id"):
        self._id_key = id_key

    def encode(self, directives: Iterable) -> str:
        lines: list[str] = []
        for directive in directives:
            lines.extend(self.encode_directive(directive))
        return "\n".join(lines) + "\n" if lines else ""

    def encode_directive(self, directive) -> list[str]:
        if isinstance(directive, Transaction):
            return self._encode_transaction(directive)
        if isinstance(directive, Open):
            return self._encode_open(directive)
        if isinstance(directive, Close):
            header = f"{directive.date.isoformat()} close {directive.account}"
            return [header] + self._encode_metadata(directive.metadata, INDENT)
        if isinstance(directive, Include):
            return [f"include {quote(directive.path)}"]
        if isinstance(directive, Comment):
            return [directive.text]
        if isinstance(directive, Blank):
            return [""]
        if isinstance(directive, RawDirective):
            return directive.text.split("\n")
        raise TypeError(f"Cannot encode {type(directive).__name__}")

    def _encode_metadata(self, metadata: dict, indent: str) -> list[str]:
        return [
            f"{indent}{key}: {format_meta_value(value)}"
            for key, value in metadata.items()
        ]

    def _encode_id(self, identifier, indent: str) -> list[str]:
        return [f"{indent}{self._id_key}: {quote(identifier)}"] if identifier else []

    def _encode_open(self, directive: Open) -> list[str]:
        header = f"{directive.date.isoformat()} open {directive.account}"
        if directive.currencies:
            header += " " + ",".join(directive.currencies)
        if directive.booking is not None:
            header += " " + quote(directive.booking)
        return (
            [header]
            + self._encode_id(directive.id, INDENT)
            + self._encode_metadata(directive.metadata, INDENT)
        )

    def _encode_transaction(self, txn: Transaction) -> list[str]:
        header = f"{txn.date.isoformat()} {txn.flag}"
        if txn.payee is not None:
            header += " " + quote(txn.payee)
        header += " " + quote(txn.narration)
        header += "".join(f" #{tag}" for tag in txn.tags)
        header += "".join(f" ^{link}" for link in txn.links)

        lines = [header]
        lines.extend(self._encode_id(txn.id, INDENT))
        lines.extend(self._encode_metadata(txn.metadata, INDENT))
        lines.extend(f"{INDENT}{comment}" for comment in txn.comments)
        for posting in txn.postings:
            lines.extend(self._encode_posting(posting))
        return lines

    def _encode_posting(self, posting: Posting) -> list[str]:
        line = INDENT
        if posting.flag:
            line += f"{posting.flag} "
        line += posting.account
        if posting.units is not None:
            line += f"  {format_amount(posting.units)}"
        if posting.cost is not None:
            line += f" {format_cost(posting.cost)}"
        if posting.price is not None:
            operator = "@@" if posting.price.is_total else "@"
            line += f" {operator} {format_amount(posting.price.amount)}"
        if posting.comment:
            line += f"  {posting.comment}"

        lines = [line]
        lines.extend(self._encode_metadata(posting.metadata, INDENT * 2))
        lines.extend(f"{INDENT * 2}{comment}" for comment in posting.comments)
        return lines
