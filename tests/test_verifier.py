"""
Tests for the ledger verifier

Test strategy:
1. Build a clean ledger through the engine (verify() must be empty)
2. Damage it by hand, the way an editor or a crash would
3. Check exactly which diagnostics come back, and where
"""

import pytest
from datetime import date

from beanledger.models.verification import Severity
from beanledger.validation import LedgerVerifier


def append(data_dir, name: str, text: str) -> None:
    with open(data_dir / name, "a", encoding="utf-8") as f:
        f.write(text)


def line_of(data_dir, name: str, needle: str) -> int:
    lines = (data_dir / name).read_text().splitlines()
    return next(i for i, line in enumerate(lines, start=1) if needle in line)


@pytest.fixture
def ledger(engine, accounts, payment):
    """Accounts plus one valid March transaction; Expenses:Travel opens in June."""
    engine.open_account("Expenses:Travel", "2024-06-01")
    engine.add_transaction(payment(date(2024, 3, 15)))
    return engine


class TestVerifier:
    """Test verification of a ledger on disk."""

    def test_clean_ledger(self, ledger):
        """Test that a ledger built through the engine verifies clean."""
        assert ledger.verify() == []

    def test_empty_data_dir(self, engine):
        """Test that an empty ledger is consistent."""
        assert engine.verify() == []

    def test_posting_before_open(self, ledger, data_dir):
        """Test a hand-written posting to a not-yet-open account."""
        append(data_dir, "2024-03.bean", (
            "\n"
            '2024-03-20 * "Train"\n'
            "  Expenses:Travel  5.00 USD\n"
            "  Assets:Bank  -5.00 USD\n"
        ))

        diagnostics = ledger.verify()
        assert len(diagnostics) == 1
        [finding] = diagnostics
        assert finding.code == "AccountNotOpenError"
        assert finding.severity == Severity.ERROR
        assert finding.file == "2024-03.bean"
        assert finding.line == line_of(data_dir, "2024-03.bean", "Expenses:Travel")

    def test_unbalanced_by_hand(self, ledger, data_dir):
        """Test a hand-written transaction that does not balance."""
        append(data_dir, "2024-03.bean", (
            "\n"
            '2024-03-21 * "Oops"\n'
            "  Expenses:Food  5.00 USD\n"
            "  Assets:Bank  -4.00 USD\n"
        ))

        [finding] = ledger.verify()
        assert finding.code == "UnbalancedTransactionError"
        assert finding.line == line_of(data_dir, "2024-03.bean", "Oops")

    def test_parse_error(self, ledger, data_dir):
        """Test that a broken file is reported with its line."""
        append(data_dir, "2024-03.bean", "\n2024-03-22 * \"Broken\"\n  Assets:Bank 10\n")

        diagnostics = ledger.verify()
        assert [d.code for d in diagnostics] == ["ParseError"]
        assert diagnostics[0].file == "2024-03.bean"
        assert diagnostics[0].line == line_of(data_dir, "2024-03.bean", "Assets:Bank 10")

    def test_duplicate_identifier(self, ledger, data_dir):
        """Test the trace an interrupted move leaves behind."""
        text = (data_dir / "2024-03.bean").read_text()
        append(data_dir, "2024-03.bean", "\n" + text)

        diagnostics = ledger.verify()
        assert [d.code for d in diagnostics] == ["DuplicateIdentifierError"]
        assert diagnostics[0].line == len(text.splitlines()) + 2

    def test_stored_id_equal_to_derived_address(self, ledger, data_dir):
        """Test a stored id that is also another transaction's derived address."""
        (data_dir / "2024-04.bean").write_text(
            '2024-04-02 * "Tagged"\n'
            '  id: "2024-05.bean:1"\n'
            "  Expenses:Food  1.00 USD\n"
            "  Assets:Bank\n"
        )
        (data_dir / "2024-05.bean").write_text(
            '2024-05-02 * "Plain"\n'
            "  Expenses:Food  1.00 USD\n"
            "  Assets:Bank\n"
        )
        append(data_dir, "main.bean", 'include "2024-04.bean"\ninclude "2024-05.bean"\n')

        [finding] = ledger.verify()
        assert finding.code == "DuplicateIdentifierError"
        assert "2024-05.bean:1" in finding.message

    def test_misrouted_transaction(self, ledger, data_dir):
        """Test a transaction stored in the wrong month's file."""
        append(data_dir, "2024-03.bean", (
            "\n"
            '2024-04-02 * "April"\n'
            "  Expenses:Food  1.00 USD\n"
            "  Assets:Bank\n"
        ))
        assert [d.code for d in ledger.verify()] == ["InvalidDateError"]

    def test_out_of_order(self, ledger, data_dir):
        """Test a transaction older than the one before it."""
        append(data_dir, "2024-03.bean", (
            "\n"
            '2024-03-02 * "Early"\n'
            "  Expenses:Food  1.00 USD\n"
            "  Assets:Bank\n"
        ))
        [finding] = ledger.verify()
        assert finding.code == "InvalidDateError"
        assert "follows" in finding.message

    def test_missing_include(self, ledger, data_dir):
        """Test an include whose file does not exist."""
        append(data_dir, "main.bean", 'include "2024-09.bean"\n')
        [finding] = ledger.verify()
        assert finding.code == "MissingIncludeError"
        assert finding.file == "main.bean"
        assert finding.line == line_of(data_dir, "main.bean", "2024-09.bean")

    def test_unregistered_file(self, ledger, data_dir):
        """Test a ledger file nothing includes."""
        (data_dir / "2024-07.bean").write_text("")
        [finding] = ledger.verify()
        assert finding.code == "UnregisteredFileWarning"
        assert finding.severity == Severity.WARNING
        assert finding.file == "2024-07.bean"

    def test_close_with_later_postings(self, ledger, accounts):
        """Test closing an account before its last posting."""
        ledger.close_account(accounts["food"], "2024-03-10")
        [finding] = ledger.verify()
        assert finding.code == "AccountNotOpenError"

    def test_duplicate_open(self, ledger, data_dir):
        """Test an account opened twice by hand."""
        append(data_dir, "accounts.bean", "\n2024-02-01 open Assets:Bank\n")
        [finding] = ledger.verify()
        assert finding.code == "DuplicateAccountError"
        assert finding.file == "accounts.bean"

    def test_findings_ordered_by_phase(self, ledger, data_dir):
        """Test that parse problems come before reference problems."""
        append(data_dir, "2024-03.bean", (
            "\n"
            '2024-03-20 * "Train"\n'
            "  Expenses:Travel  5.00 USD\n"
            "  Assets:Bank  -5.00 USD\n"
        ))
        append(data_dir, "main.bean", 'include "2024-09.bean"\n')

        codes = [d.code for d in ledger.verify()]
        assert codes == ["MissingIncludeError", "AccountNotOpenError"]

    def test_verify_is_read_only(self, ledger, data_dir):
        """Test that verification changes no file."""
        append(data_dir, "2024-03.bean", "\n2024-03-22 * \"Broken\"\n  Assets:Bank 10\n")
        before = {p.name: p.read_text() for p in data_dir.glob("*.bean")}
        ledger.verify()
        assert {p.name: p.read_text() for p in data_dir.glob("*.bean")} == before

    def test_summary(self, ledger, data_dir):
        """Test the human-readable summary."""
        assert LedgerVerifier.summary([]) == "Ledger is consistent."
        (data_dir / "2024-07.bean").write_text("")
        summary = LedgerVerifier.summary(ledger.verify())
        assert summary.startswith("0 error(s), 1 warning(s):")
        assert "2024-07.bean" in summary


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
