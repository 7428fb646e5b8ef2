"""
Ledger Text Decoder

Turns ledger text into an ordered list of directives.

DESIGN DECISION: The decoder is line-oriented, like the format itself.
A directive is a non-indented line plus every indented line below it;
a blank line or the next non-indented line ends it.

What it recognizes:
- include "file"
- YYYY-MM-DD open / close
- YYYY-MM-DD <flag|txn> transactions with postings, tags, links,
  costs, prices and metadata
- top-level comments and blank lines (kept for faithful rewrites)

Anything else that is well-formed (option, plugin, balance, price,
pad, note, ...) becomes a RawDirective and is written back verbatim.
Malformed text raises ParseError with the 1-based line and column.
"""

import datetime
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional

from beanledger.errors import ParseError
from beanledger.models.ledger import (
    ACCOUNT_PATTERN,
    CURRENCY_PATTERN,
    FLAG_CHARACTERS,
    META_KEY_PATTERN,
    Amount,
    Blank,
    Close,
    Comment,
    Cost,
    Include,
    MetaValue,
    Open,
    Price,
    RawDirective,
    Transaction,
)


NUMBER = r"[-+]?(?:\d[\d,]*(?:\.\d*)?|\.\d+)"
CURRENCY = rf"(?:{CURRENCY_PATTERN})"
STRING = r'"(?:[^"\\]|\\.)*"'

DATE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})(?=\s|$)")
FULL_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
NUMBER_RE = re.compile(rf"^{NUMBER}$")
META_RE = re.compile(rf"^({META_KEY_PATTERN}):(?:\s+(.*?))?\s*$")
INCLUDE_RE = re.compile(rf"^include\s+({STRING})\s*$")
OPEN_RE = re.compile(
    rf"^open\s+(?P<account>{ACCOUNT_PATTERN})"
    rf"(?:\s+(?P<currencies>{CURRENCY}(?:\s*,\s*{CURRENCY})*))?"
    rf"(?:\s+(?P<booking>{STRING}))?\s*$"
)
CLOSE_RE = re.compile(rf"^close\s+(?P<account>{ACCOUNT_PATTERN})\s*$")
POSTING_RE = re.compile(
    rf"^(?:(?P<flag>[{re.escape(FLAG_CHARACTERS)}])\s+)?"
    rf"(?P<account>{ACCOUNT_PATTERN})"
    rf"(?:\s+(?P<number>{NUMBER})\s+(?P<currency>{CURRENCY}))?"
    r"(?:\s*(?P<cost>\{\{[^{}]*\}\}|\{[^{}]*\}))?"
    rf"(?:\s*(?P<price_op>@@|@)\s*(?P<price_number>{NUMBER})\s+(?P<price_currency>{CURRENCY}))?"
    r"\s*$"
)
COST_COMPONENT_RE = re.compile(
    r"\s*(?:"
    r"(?P<date>\d{4}-\d{2}-\d{2})"
    rf"|(?P<label>{STRING})"
    rf"|(?P<number>{NUMBER})\s+(?P<currency>{CURRENCY})"
    r")\s*(?:,|$)"
)
HEADER_TOKEN_RE = re.compile(
    rf"\s*(?:(?P<string>{STRING})|#(?P<tag>[A-Za-z0-9\-_/.]+)|\^(?P<link>[A-Za-z0-9\-_/.]+))"
)
KEYWORD_RE = re.compile(r"^([a-z][a-z\-]*)\b")
TAG_LINE_RE = re.compile(r"^[#^][A-Za-z0-9]")

TOP_LEVEL_COMMENT_MARKERS = (";", "*", "#")
UNDATED_RAW_KEYWORDS = {"option", "plugin", "pushtag", "poptag", "pushmeta", "popmeta"}


@dataclass
class DirectiveSpan:
    """Where a decoded directive sits in the source text (1-based lines)."""
    line: int
    end_line: int
    posting_lines: list[int] = field(default_factory=list)


@dataclass
class ParsedLedger:
    """Directives of one file, with a span per directive (same order)."""
    directives: list
    spans: list[DirectiveSpan]


def unescape_string(token: str) -> str:
    """Strip the quotes of a string token and resolve its escapes."""
    return re.sub(r"\\(.)", r"\1", token[1:-1])


def parse_number(text: str) -> Decimal:
    return Decimal(text.replace(",", ""))


def split_inline_comment(text: str) -> tuple[str, Optional[str]]:
    """Split 'content ; comment' on the first ';' outside a string."""
    in_string = False
    escaped = False
    for index, char in enumerate(text):
        if escaped:
            escaped = False
        elif char == "\\" and in_string:
            escaped = True
        elif char == '"':
            in_string = not in_string
        elif char == ";" and not in_string:
            return text[:index].rstrip(), text[index:]
    return text.rstrip(), None


def _indent_width(line: str) -> int:
    expanded = line.expandtabs(4)
    return len(expanded) - len(expanded.lstrip())


class LedgerDecoder:
    """
    Line-oriented ledger parser.

    id_key names the metadata entry holding a directive's stable
    identifier; it is lifted out of metadata into the directive's id.
    """

    def __init__(self, id_key: str = "id"):
        self._id_key = id_key

    def parse(self, text: str, file: Optional[str] = None) -> ParsedLedger:
        """Parse ledger text, keeping the source span of every directive."""
        try:
            return self._parse(text)
        except ParseError as e:
            raise e.with_file(file) if file else e

    def decode(self, text: str) -> list:
        return self._parse(text).directives

    # -------------------------------------------------------------------------
    # Top level
    # -------------------------------------------------------------------------

    def _parse(self, text: str) -> ParsedLedger:
        lines = text.splitlines()
        directives: list = []
        spans: list[DirectiveSpan] = []
        index = 0

        while index < len(lines):
            line = lines[index]
            lineno = index + 1

            if not line.strip():
                directives.append(Blank())
                spans.append(DirectiveSpan(lineno, lineno))
                index += 1
                continue

            if line[0] in " \t":
                if line.strip().startswith(";"):
                    directives.append(Comment(text=line.rstrip()))
                    spans.append(DirectiveSpan(lineno, lineno))
                    index += 1
                    continue
                raise ParseError(
                    "Indented line outside of a directive",
                    lineno,
                    _indent_width(line) + 1,
                )

            if line.startswith(TOP_LEVEL_COMMENT_MARKERS):
                directives.append(Comment(text=line.rstrip()))
                spans.append(DirectiveSpan(lineno, lineno))
                index += 1
                continue

            end = index + 1
            while end < len(lines) and lines[end].strip() and lines[end][0] in " \t":
                end += 1
            block = lines[index:end]

            directive, posting_lines = self._parse_block(block, lineno)
            directives.append(directive)
            spans.append(DirectiveSpan(lineno, lineno + len(block) - 1, posting_lines))
            index = end

        return ParsedLedger(directives, spans)

    def _parse_block(self, block: list[str], lineno: int) -> tuple[object, list[int]]:
        header = block[0]
        date_match = DATE_RE.match(header)

        if date_match is None:
            keyword = KEYWORD_RE.match(header)
            if keyword and keyword.group(1) == "include":
                return self._parse_include(block, lineno), []
            if keyword and keyword.group(1) in UNDATED_RAW_KEYWORDS:
                return RawDirective(text="\n".join(block)), []
            raise ParseError("Expected a date, include or directive keyword", lineno, 1)

        try:
            when = datetime.date.fromisoformat(date_match.group(1))
        except ValueError:
            raise ParseError(f"Invalid date: {date_match.group(1)}", lineno, 1)

        content, _ = split_inline_comment(header[date_match.end():])
        rest = content.strip()
        rest_column = len(header) - len(header[date_match.end():].lstrip()) + 1
        if not rest:
            raise ParseError("Missing directive after date", lineno, len(header) + 1)

        token = rest.split()[0]
        if token == "open":
            return self._parse_open(block, lineno, when, rest, rest_column), []
        if token == "close":
            return self._parse_close(block, lineno, when, rest, rest_column), []
        if token == "txn" or (len(token) == 1 and token in FLAG_CHARACTERS):
            return self._parse_transaction(block, lineno, when, rest, rest_column)
        if KEYWORD_RE.match(token):
            return RawDirective(text="\n".join(block), date=when), []
        raise ParseError(f"Unknown directive: {token!r}", lineno, rest_column)

    # -------------------------------------------------------------------------
    # Simple directives
    # -------------------------------------------------------------------------

    def _parse_include(self, block: list[str], lineno: int) -> Include:
        content, _ = split_inline_comment(block[0])
        match = INCLUDE_RE.match(content)
        if match is None:
            raise ParseError('Malformed include; expected include "file"', lineno, 1)
        for offset, line in enumerate(block[1:], start=1):
            if not line.strip().startswith(";"):
                raise ParseError("Include does not take indented lines", lineno + offset, 1)
        return Include(path=unescape_string(match.group(1)))

    def _parse_open(self, block, lineno, when, rest, column) -> Open:
        match = OPEN_RE.match(rest)
        if match is None:
            raise ParseError("Malformed open directive", lineno, column)
        currencies = match.group("currencies")
        booking = match.group("booking")
        metadata = self._parse_metadata_lines(block[1:], lineno + 1)
        identifier = self._pop_id(metadata)
        return Open(
            id=identifier,
            date=when,
            account=match.group("account"),
            currencies=[c.strip() for c in currencies.split(",")] if currencies else [],
            booking=unescape_string(booking) if booking else None,
            metadata=metadata,
        )

    def _parse_close(self, block, lineno, when, rest, column) -> Close:
        match = CLOSE_RE.match(rest)
        if match is None:
            raise ParseError("Malformed close directive", lineno, column)
        return Close(
            date=when,
            account=match.group("account"),
            metadata=self._parse_metadata_lines(block[1:], lineno + 1),
        )

    def _parse_metadata_lines(self, lines: list[str], first_lineno: int) -> dict:
        metadata: dict = {}
        for offset, line in enumerate(lines):
            stripped = line.strip()
            if stripped.startswith(";"):
                continue
            key, value = self._parse_meta(stripped, first_lineno + offset, _indent_width(line) + 1)
            metadata[key] = value
        return metadata

    def _pop_id(self, metadata: dict) -> Optional[str]:
        value = metadata.get(self._id_key)
        if isinstance(value, str) and value:
            del metadata[self._id_key]
            return value
        return None

    def _parse_meta(self, text: str, lineno: int, column: int) -> tuple[str, MetaValue]:
        content, _ = split_inline_comment(text)
        match = META_RE.match(content)
        if match is None:
            raise ParseError("Expected 'key: value' metadata", lineno, column)
        return match.group(1), self._parse_meta_value(match.group(2) or "")

    @staticmethod
    def _parse_meta_value(raw: str) -> MetaValue:
        if not raw:
            return ""
        if re.fullmatch(STRING, raw):
            return unescape_string(raw)
        if raw in ("TRUE", "FALSE"):
            return raw == "TRUE"
        if FULL_DATE_RE.match(raw):
            try:
                return datetime.date.fromisoformat(raw)
            except ValueError:
                return raw
        if NUMBER_RE.match(raw):
            try:
                return parse_number(raw)
            except InvalidOperation:
                return raw
        return raw

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def _parse_transaction(self, block, lineno, when, rest, column):
        token = rest.split()[0]
        flag = "*" if token == "txn" else token
        strings, tags, links = self._parse_header_tokens(
            rest[len(token):], lineno, column + len(token)
        )
        if len(strings) > 2:
            raise ParseError("Too many strings in transaction header", lineno, column)
        payee = strings[0] if len(strings) == 2 else None
        narration = strings[-1] if strings else ""

        metadata: dict = {}
        comments: list[str] = []
        postings: list[dict] = []
        posting_lines: list[int] = []
        posting_indent = 0

        for offset, line in enumerate(block[1:], start=1):
            line_no = lineno + offset
            indent = _indent_width(line)
            stripped = line.strip()

            if stripped.startswith(";"):
                if postings:
                    postings[-1]["comments"].append(stripped)
                else:
                    comments.append(stripped)
                continue

            if TAG_LINE_RE.match(stripped):
                _, more_tags, more_links = self._parse_header_tokens(stripped, line_no, indent + 1)
                tags.extend(t for t in more_tags if t not in tags)
                links.extend(k for k in more_links if k not in links)
                continue

            if META_RE.match(split_inline_comment(stripped)[0]):
                key, value = self._parse_meta(stripped, line_no, indent + 1)
                if not postings:
                    metadata[key] = value
                elif indent > posting_indent:
                    postings[-1]["metadata"][key] = value
                else:
                    raise ParseError(
                        "Metadata after a posting must be indented below it",
                        line_no,
                        indent + 1,
                    )
                continue

            postings.append(self._parse_posting(stripped, line_no, indent + 1))
            posting_lines.append(line_no)
            posting_indent = indent

        identifier = self._pop_id(metadata)
        try:
            transaction = Transaction(
                id=identifier,
                date=when,
                flag=flag,
                payee=payee,
                narration=narration,
                tags=tags,
                links=links,
                postings=postings,
                metadata=metadata,
                comments=comments,
            )
        except ValueError as e:
            raise ParseError(f"Invalid transaction: {e}", lineno, 1)
        return transaction, posting_lines

    @staticmethod
    def _parse_header_tokens(text: str, lineno: int, column: int):
        strings: list[str] = []
        tags: list[str] = []
        links: list[str] = []
        position = 0
        while position < len(text):
            if not text[position:].strip():
                break
            match = HEADER_TOKEN_RE.match(text, position)
            if match is None:
                offset = len(text[position:]) - len(text[position:].lstrip())
                raise ParseError(
                    "Unexpected token in transaction header",
                    lineno,
                    column + position + offset,
                )
            if match.group("string") is not None:
                strings.append(unescape_string(match.group("string")))
            elif match.group("tag") is not None:
                if match.group("tag") not in tags:
                    tags.append(match.group("tag"))
            elif match.group("link") not in links:
                links.append(match.group("link"))
            position = match.end()
        return strings, tags, links

    def _parse_posting(self, text: str, lineno: int, column: int) -> dict:
        content, inline_comment = split_inline_comment(text)
        match = POSTING_RE.match(content)
        if match is None:
            raise ParseError("Malformed posting", lineno, column)

        units = None
        if match.group("number") is not None:
            units = Amount(
                number=parse_number(match.group("number")),
                currency=match.group("currency"),
            )

        price = None
        if match.group("price_op") is not None:
            price = Price(
                amount=Amount(
                    number=parse_number(match.group("price_number")),
                    currency=match.group("price_currency"),
                ),
                is_total=match.group("price_op") == "@@",
            )

        cost = None
        if match.group("cost") is not None:
            cost = self._parse_cost(
                match.group("cost"),
                lineno,
                column + match.start("cost"),
            )

        return {
            "account": match.group("account"),
            "flag": match.group("flag"),
            "units": units,
            "cost": cost,
            "price": price,
            "metadata": {},
            "comment": inline_comment,
            "comments": [],
        }

    @staticmethod
    def _parse_cost(token: str, lineno: int, column: int) -> Cost:
        is_total = token.startswith("{{")
        inner = token[2:-2] if is_total else token[1:-1]
        values: dict = {}
        position = 0
        while inner[position:].strip():
            match = COST_COMPONENT_RE.match(inner, position)
            if match is None or match.end() == position:
                raise ParseError("Malformed cost", lineno, column)
            if match.group("date"):
                try:
                    values["date"] = datetime.date.fromisoformat(match.group("date"))
                except ValueError:
                    raise ParseError("Invalid cost date", lineno, column)
            elif match.group("label"):
                values["label"] = unescape_string(match.group("label"))
            else:
                values["number"] = parse_number(match.group("number"))
                values["currency"] = match.group("currency")
            position = match.end()
        return Cost(is_total=is_total, **values)
