"""
Ledger Verification Pipeline

DESIGN DECISION: Verification runs in four phases, in this order:

PHASE 1 - PARSE:
- Every file reachable from the main file is re-read from disk and parsed
- Missing include targets, and *.bean files nothing includes
- Transactions stored outside their month's file, or out of date order

PHASE 2 - CROSS-REFERENCE:
- Duplicate or malformed open/close directives
- Every posting's account exists and is open on the transaction date
- Posting currencies are permitted by their account

PHASE 3 - BALANCE:
- Each transaction sums to zero per currency (one omitted amount allowed)

PHASE 4 - IDENTITY:
- No identifier is used by two directives (e.g. after an interrupted move)
- No stored identifier equals the derived <file>:<line> address of an
  id-less directive, which would make that address ambiguous

IMPORTANT: Verification NEVER touches the files or the in-memory index.
It reports what it finds; it fixes nothing. An empty result means the
ledger is fully consistent.
"""

import datetime
import posixpath
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import structlog

from beanledger.errors import (
    AlreadyClosedError,
    DuplicateAccountError,
    InvalidDateError,
    ParseError,
    UnknownAccountError,
    ValidationError,
)
from beanledger.models.ledger import Account, Close, Include, Open, Transaction, derived_id
from beanledger.models.verification import Diagnostic, Severity
from beanledger.services.storage import MONTH_FILE_RE, FileSnapshot, LedgerStoreInterface
from beanledger.validation.balance import check_balance
from beanledger.validation.rules import posting_problems


logger = structlog.get_logger(__name__)

PHASE_PARSE = 1
PHASE_REFERENCES = 2
PHASE_BALANCE = 3
PHASE_IDENTITY = 4


@dataclass
class _Finding:
    phase: int
    diagnostic: Diagnostic

    def sort_key(self) -> tuple:
        return (self.phase, self.diagnostic.file, self.diagnostic.line or 0)


class LedgerVerifier:
    """
    Re-validates the whole ledger as it is on disk.

    Usage:
        verifier = LedgerVerifier(store, "main.bean", "accounts.bean", Decimal("0"))
        for diagnostic in verifier.verify():
            print(diagnostic)
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        main_file: str,
        accounts_file: str,
        tolerance: Decimal,
        id_key: str = "id",
    ):
        self._store = store
        self._main_file = main_file
        self._accounts_file = accounts_file
        self._tolerance = tolerance
        self._id_key = id_key

    def verify(self) -> list[Diagnostic]:
        """Run every phase and return the findings, most fundamental first."""
        findings: list[_Finding] = []

        snapshots = self._parse_phase(findings)
        accounts = self._account_phase(snapshots, findings)
        self._posting_phase(snapshots, accounts, findings)
        self._identity_phase(snapshots, findings)

        findings.sort(key=_Finding.sort_key)
        diagnostics = [f.diagnostic for f in findings]
        logger.info(
            "ledger_verified",
            files=len(snapshots),
            errors=sum(d.severity == Severity.ERROR for d in diagnostics),
            warnings=sum(d.severity == Severity.WARNING for d in diagnostics),
        )
        return diagnostics

    # =========================================================================
    # PHASE 1: PARSE
    # =========================================================================

    def _parse_phase(self, findings: list[_Finding]) -> list[FileSnapshot]:
        snapshots: list[FileSnapshot] = []
        reachable: set[str] = set()

        if self._store.exists(self._main_file):
            queue = [(self._main_file, None, None)]
            while queue:
                name, parent, line = queue.pop(0)
                if name in reachable:
                    continue
                reachable.add(name)

                if not self._store.exists(name):
                    findings.append(self._finding(
                        PHASE_PARSE, "MissingIncludeError", parent, line,
                        f"Included file {name} does not exist",
                    ))
                    continue

                try:
                    snapshot = self._store.read(name)
                except ParseError as e:
                    findings.append(self._finding(
                        PHASE_PARSE, "ParseError", name, e.line,
                        f"{e.message} (column {e.column})",
                    ))
                    continue
                snapshots.append(snapshot)

                for index, directive in enumerate(snapshot.directives):
                    if not isinstance(directive, Include):
                        continue
                    line_no = snapshot.spans[index].line
                    target = posixpath.normpath(directive.path)
                    if "/" in target or "\\" in target:
                        findings.append(self._finding(
                            PHASE_PARSE, "UnsupportedIncludeWarning", name, line_no,
                            f"Include of {directive.path} leaves the data directory; not verified",
                            severity=Severity.WARNING,
                        ))
                        continue
                    queue.append((target, name, line_no))

        for name in self._store.list_files():
            if name not in reachable:
                findings.append(self._finding(
                    PHASE_PARSE, "UnregisteredFileWarning", name, None,
                    f"{name} is not included from {self._main_file}",
                    severity=Severity.WARNING,
                ))

        for snapshot in snapshots:
            self._check_file_placement(snapshot, findings)
        return snapshots

    def _check_file_placement(self, snapshot: FileSnapshot, findings: list[_Finding]) -> None:
        month = MONTH_FILE_RE.match(snapshot.name)
        previous: Optional[datetime.date] = None

        for index, directive in enumerate(snapshot.directives):
            if not isinstance(directive, Transaction):
                continue
            line = snapshot.spans[index].line

            if month is None or (directive.date.year, directive.date.month) != (
                int(month.group(1)), int(month.group(2))
            ):
                expected = f"{directive.date.year:04d}-{directive.date.month:02d}.bean"
                findings.append(self._finding(
                    PHASE_PARSE, "InvalidDateError", snapshot.name, line,
                    f"Transaction dated {directive.date} belongs in {expected}",
                ))
            elif previous is not None and directive.date < previous:
                findings.append(self._finding(
                    PHASE_PARSE, "InvalidDateError", snapshot.name, line,
                    f"Transaction dated {directive.date} follows one dated {previous}",
                ))
            previous = directive.date if previous is None else max(previous, directive.date)

    # =========================================================================
    # PHASE 2: CROSS-REFERENCE
    # =========================================================================

    def _account_phase(
        self,
        snapshots: list[FileSnapshot],
        findings: list[_Finding],
    ) -> dict[str, Account]:
        accounts: dict[str, Account] = {}

        for snapshot in snapshots:
            for index, directive in enumerate(snapshot.directives):
                line = snapshot.spans[index].line

                if isinstance(directive, (Open, Close)) and snapshot.name != self._accounts_file:
                    findings.append(self._finding(
                        PHASE_REFERENCES, "MisplacedDirectiveWarning", snapshot.name, line,
                        f"{directive.kind} {directive.account} is outside {self._accounts_file}",
                        severity=Severity.WARNING,
                    ))

                if isinstance(directive, Open):
                    if directive.account in accounts:
                        findings.append(self._error(PHASE_REFERENCES, snapshot.name, line, DuplicateAccountError(
                            f"{directive.account} is opened more than once"
                        )))
                        continue
                    accounts[directive.account] = Account(
                        id=directive.id,
                        name=directive.account,
                        open_date=directive.date,
                        currencies=directive.currencies,
                    )

                elif isinstance(directive, Close):
                    account = accounts.get(directive.account)
                    if account is None:
                        findings.append(self._error(PHASE_REFERENCES, snapshot.name, line, UnknownAccountError(
                            f"Close of {directive.account}, which is not opened before it"
                        )))
                    elif account.is_closed:
                        findings.append(self._error(PHASE_REFERENCES, snapshot.name, line, AlreadyClosedError(
                            f"{directive.account} is closed more than once"
                        )))
                    elif directive.date < account.open_date:
                        findings.append(self._error(PHASE_REFERENCES, snapshot.name, line, InvalidDateError(
                            f"{directive.account} closes on {directive.date}, "
                            f"before it opens on {account.open_date}"
                        )))
                    else:
                        accounts[directive.account] = account.model_copy(
                            update={"close_date": directive.date}
                        )
        return accounts

    def _posting_phase(
        self,
        snapshots: list[FileSnapshot],
        accounts: dict[str, Account],
        findings: list[_Finding],
    ) -> None:
        for snapshot in snapshots:
            for index, directive in enumerate(snapshot.directives):
                if not isinstance(directive, Transaction):
                    continue
                span = snapshot.spans[index]

                for posting_index, error in posting_problems(directive, accounts):
                    line = (
                        span.posting_lines[posting_index]
                        if posting_index < len(span.posting_lines)
                        else span.line
                    )
                    findings.append(self._error(PHASE_REFERENCES, snapshot.name, line, error))

                # PHASE 3: BALANCE
                try:
                    check_balance(directive, self._tolerance)
                except ValidationError as e:
                    findings.append(self._error(PHASE_BALANCE, snapshot.name, span.line, e))

    # =========================================================================
    # PHASE 4: IDENTITY
    # =========================================================================

    def _identity_phase(self, snapshots: list[FileSnapshot], findings: list[_Finding]) -> None:
        seen: dict[str, list[tuple[str, int]]] = defaultdict(list)
        for snapshot in snapshots:
            for index, directive in enumerate(snapshot.directives):
                if not isinstance(directive, (Open, Transaction)):
                    continue
                line = snapshot.spans[index].line
                identifier = directive.id or derived_id(snapshot.name, line)
                seen[identifier].append((snapshot.name, line))

        for identifier, places in seen.items():
            if len(places) < 2:
                continue
            first_file, first_line = places[0]
            for file, line in places[1:]:
                findings.append(self._finding(
                    PHASE_IDENTITY, "DuplicateIdentifierError", file, line,
                    f"{self._id_key} {identifier!r} is also used at {first_file}:{first_line}",
                ))

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _finding(
        phase: int,
        code: str,
        file: Optional[str],
        line: Optional[int],
        message: str,
        severity: Severity = Severity.ERROR,
    ) -> _Finding:
        return _Finding(
            phase=phase,
            diagnostic=Diagnostic(
                severity=severity,
                code=code,
                file=file or "",
                line=line,
                message=message,
            ),
        )

    def _error(self, phase: int, file: str, line: int, error: ValidationError) -> _Finding:
        return self._finding(phase, type(error).__name__, file, line, error.message)

    @staticmethod
    def summary(diagnostics: list[Diagnostic]) -> str:
        """
        Human-readable summary of a verification result.
        """
        if not diagnostics:
            return "Ledger is consistent."
        errors = sum(d.severity == Severity.ERROR for d in diagnostics)
        warnings = len(diagnostics) - errors
        lines = [f"{errors} error(s), {warnings} warning(s):"]
        lines.extend(f"  {d}" for d in diagnostics)
        return "\n".join(lines)
