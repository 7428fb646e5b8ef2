"""
Core Ledger Models for beanledger

These models are the structured, in-memory form of ledger text.
The Format Codec turns text into these directives and back again.

They are designed to:
1. Carry every piece of content the codec must re-emit
2. Compare by content, so round-trips can be checked with ==
3. Reject impossible values (bad flags, bad currencies) at construction

DESIGN DECISION: Directives are a tagged union keyed by `kind`.
Anything the engine does not model (option, plugin, balance, price ...)
becomes a RawDirective holding its original text verbatim, so no user
content is ever dropped on rewrite.
"""

import datetime
import re
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


ACCOUNT_PATTERN = r"[A-Z][A-Za-z0-9\-]*(?::[A-Z0-9][A-Za-z0-9\-]*)+"
CURRENCY_PATTERN = r"[A-Z][A-Z0-9'._\-]{0,22}[A-Z0-9]|[A-Z]"
FLAG_CHARACTERS = "*!&#?%PSTCURM"
META_KEY_PATTERN = r"[a-z][A-Za-z0-9_\-]*"

ACCOUNT_RE = re.compile(rf"^(?:{ACCOUNT_PATTERN})$")
CURRENCY_RE = re.compile(rf"^(?:{CURRENCY_PATTERN})$")
TAG_RE = re.compile(r"^[A-Za-z0-9\-_/.]+$")
META_KEY_RE = re.compile(rf"^(?:{META_KEY_PATTERN})$")

CLEARED_FLAG = "*"
PENDING_FLAG = "!"

MetaValue = Union[bool, datetime.date, Decimal, str]


def _check_currency(v: str) -> str:
    if not CURRENCY_RE.match(v):
        raise ValueError(f"Invalid currency: {v!r}")
    return v


def _check_account(v: str) -> str:
    if not ACCOUNT_RE.match(v):
        raise ValueError(f"Invalid account name: {v!r}")
    return v


def _check_comments(values: list[str]) -> list[str]:
    for value in values:
        if not value.startswith(";") or "\n" in value:
            raise ValueError(f"Comment must be a single line starting with ';': {value!r}")
    return values


def _unique_labels(values: list[str], prefix: str) -> list[str]:
    seen: list[str] = []
    for value in values:
        value = value[1:] if value.startswith(prefix) else value
        if not TAG_RE.match(value):
            raise ValueError(f"Invalid {'tag' if prefix == '#' else 'link'}: {value!r}")
        if value not in seen:
            seen.append(value)
    return seen


# =============================================================================
# AMOUNTS
# =============================================================================

class Amount(BaseModel):
    """A number of units of one currency."""
    model_config = ConfigDict(frozen=True)

    number: Decimal
    currency: str

    @field_validator("number")
    @classmethod
    def validate_number(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError(f"Amount must be a finite number, got {v}")
        return v

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return _check_currency(v)

    def __str__(self) -> str:
        return f"{self.number} {self.currency}"

    def __neg__(self) -> "Amount":
        return Amount(number=-self.number, currency=self.currency)


class Cost(BaseModel):
    """
    Cost annotation of a posting: {N CUR} per unit, {{N CUR}} total.

    An empty cost ({}) leaves number and currency unset; it is kept so
    it can be written back, but contributes no weight of its own.
    """
    model_config = ConfigDict(frozen=True)

    number: Optional[Decimal] = None
    currency: Optional[str] = None
    is_total: bool = False
    date: Optional[datetime.date] = None
    label: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        return _check_currency(v) if v is not None else v

    @model_validator(mode="after")
    def validate_pair(self) -> "Cost":
        if (self.number is None) != (self.currency is None):
            raise ValueError("Cost needs both a number and a currency")
        return self


class Price(BaseModel):
    """Price annotation of a posting: @ N CUR per unit, @@ N CUR total."""
    model_config = ConfigDict(frozen=True)

    amount: Amount
    is_total: bool = False


# =============================================================================
# POSTINGS AND TRANSACTIONS
# =============================================================================

class Posting(BaseModel):
    """
    One leg of a transaction.

    units may be omitted on at most one posting of a transaction;
    its amount is then the balancing remainder.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    account: str
    units: Optional[Amount] = None
    cost: Optional[Cost] = None
    price: Optional[Price] = None
    flag: Optional[str] = None
    metadata: dict[str, MetaValue] = Field(default_factory=dict)
    comment: Optional[str] = Field(
        default=None,
        description="Inline comment written after the posting on the same line"
    )
    comments: list[str] = Field(
        default_factory=list,
        description="Comment lines written below the posting"
    )

    @field_validator("account")
    @classmethod
    def validate_account(cls, v: str) -> str:
        return _check_account(v)

    @field_validator("flag")
    @classmethod
    def validate_flag(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and (len(v) != 1 or v not in FLAG_CHARACTERS):
            raise ValueError(f"Invalid posting flag: {v!r}")
        return v

    @field_validator("comments")
    @classmethod
    def validate_comments(cls, v: list[str]) -> list[str]:
        return _check_comments(v)

    @field_validator("comment")
    @classmethod
    def validate_comment(cls, v: Optional[str]) -> Optional[str]:
        return _check_comments([v])[0] if v is not None else v


class TransactionSpec(BaseModel):
    """
    Caller-supplied content of a transaction.

    This is what add/update operations receive. The engine allocates
    the identifier and turns the spec into a Transaction directive.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    date: datetime.date
    flag: str = Field(
        default=CLEARED_FLAG,
        description="One-character status flag ('*' cleared, '!' pending)"
    )
    payee: Optional[str] = None
    narration: str = ""
    tags: list[str] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)
    postings: list[Posting] = Field(default_factory=list)
    metadata: dict[str, MetaValue] = Field(default_factory=dict)

    @field_validator("flag")
    @classmethod
    def validate_flag(cls, v: str) -> str:
        if len(v) != 1 or v not in FLAG_CHARACTERS:
            raise ValueError(f"Invalid transaction flag: {v!r}")
        return v

    @field_validator("payee", "narration")
    @classmethod
    def validate_single_line(cls, v: Optional[str]) -> Optional[str]:
        """Ledger strings cannot span lines."""
        if v is not None and ("\n" in v or "\r" in v):
            raise ValueError("Payee and narration must be a single line")
        return v

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str]) -> list[str]:
        return _unique_labels(v, "#")

    @field_validator("links")
    @classmethod
    def validate_links(cls, v: list[str]) -> list[str]:
        return _unique_labels(v, "^")

    def to_transaction(self, transaction_id: Optional[str]) -> "Transaction":
        fields = self.model_dump(include=set(TransactionSpec.model_fields))
        return Transaction(id=transaction_id, **fields)


class Transaction(TransactionSpec):
    """
    A transaction directive as stored in a monthly file.

    id is the persisted identifier (metadata), or a derived
    '<file>:<line>' address when the text carries none.
    """
    kind: Literal["transaction"] = "transaction"
    id: Optional[str] = None
    comments: list[str] = Field(
        default_factory=list,
        description="Comment lines between the header and the first posting"
    )

    @field_validator("comments")
    @classmethod
    def validate_comments(cls, v: list[str]) -> list[str]:
        return _check_comments(v)

    def to_spec(self) -> TransactionSpec:
        return TransactionSpec(**self.model_dump(exclude={"kind", "id", "comments"}))


# =============================================================================
# OTHER DIRECTIVES
# =============================================================================

class Open(BaseModel):
    """Opens an account, optionally restricted to a list of currencies."""
    kind: Literal["open"] = "open"
    id: Optional[str] = None
    date: datetime.date
    account: str
    currencies: list[str] = Field(default_factory=list)
    booking: Optional[str] = None
    metadata: dict[str, MetaValue] = Field(default_factory=dict)

    @field_validator("account")
    @classmethod
    def validate_account(cls, v: str) -> str:
        return _check_account(v)

    @field_validator("currencies")
    @classmethod
    def validate_currencies(cls, v: list[str]) -> list[str]:
        return [_check_currency(c) for c in v]


class Close(BaseModel):
    """Closes an account; postings after this date are rejected."""
    kind: Literal["close"] = "close"
    date: datetime.date
    account: str
    metadata: dict[str, MetaValue] = Field(default_factory=dict)

    @field_validator("account")
    @classmethod
    def validate_account(cls, v: str) -> str:
        return _check_account(v)


class Include(BaseModel):
    """Reference to another ledger file, relative to the including file."""
    kind: Literal["include"] = "include"
    path: str = Field(..., min_length=1)


class Comment(BaseModel):
    """A top-level comment line, kept verbatim (including its marker)."""
    kind: Literal["comment"] = "comment"
    text: str

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        if "\n" in v or not v.lstrip().startswith((";", "*", "#")):
            raise ValueError(f"Not a comment line: {v!r}")
        if v[:1] in (" ", "\t") and not v.lstrip().startswith(";"):
            raise ValueError(f"Indented comments must start with ';': {v!r}")
        return v


class Blank(BaseModel):
    """An empty line separating directives."""
    kind: Literal["blank"] = "blank"


class RawDirective(BaseModel):
    """
    A directive the engine does not model.

    text holds the original lines verbatim (joined by newlines, no
    trailing newline). date is parsed from the first line when it has
    one, so the directive still takes part in date ordering.
    """
    kind: Literal["raw"] = "raw"
    text: str = Field(..., min_length=1)
    date: Optional[datetime.date] = None


Directive = Annotated[
    Union[Transaction, Open, Close, Include, Comment, Blank, RawDirective],
    Field(discriminator="kind"),
]


def directive_date(directive: BaseModel) -> Optional[datetime.date]:
    """Date used to order a directive within its file, if it has one."""
    return getattr(directive, "date", None)


# =============================================================================
# ACCOUNT VIEW
# =============================================================================

class Account(BaseModel):
    """
    An account as seen by callers: its open directive plus, once
    closed, the date of its close directive.
    """

    id: Optional[str] = None
    name: str
    open_date: datetime.date
    close_date: Optional[datetime.date] = None
    currencies: list[str] = Field(default_factory=list)
    metadata: dict[str, MetaValue] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_dates(self) -> "Account":
        if self.close_date and self.close_date < self.open_date:
            raise ValueError("Close date cannot be before open date")
        return self

    @property
    def is_closed(self) -> bool:
        return self.close_date is not None

    def is_open_on(self, when: datetime.date) -> bool:
        """Postings are allowed from the open date through the close date."""
        if when < self.open_date:
            return False
        return self.close_date is None or when <= self.close_date

    def allows_currency(self, currency: str) -> bool:
        return not self.currencies or currency in self.currencies


# =============================================================================
# DERIVED IDENTIFIERS
# =============================================================================

DERIVED_ID_RE = re.compile(r"^(?P<file>[^/\\:]+\.bean):(?P<line>[1-9]\d*)$")


def derived_id(file: str, line: int) -> str:
    """
    Address of a directive that carries no persisted id.

    Only valid until the file is next rewritten above that line.
    """
    return f"{file}:{line}"


def parse_derived_id(value: str) -> Optional[tuple[str, int]]:
    """Split a derived id into (file, line); None for persisted ids."""
    match = DERIVED_ID_RE.match(value)
    if match is None:
        return None
    return match.group("file"), int(match.group("line"))
