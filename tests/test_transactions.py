"""
Tests for transaction operations

Test strategy:
1. Drive the engine end to end against a temporary data directory
2. Check routing (which file), ordering (where in the file) and the
   main file's include list after every mutation
3. Rejected requests must leave every file byte-for-byte unchanged
"""

import pytest
from datetime import date
from decimal import Decimal

from beanledger.audit import InMemoryAuditStorage
from beanledger.config import get_settings
from beanledger.engine import LedgerEngine, create_engine
from beanledger.errors import (
    AccountNotOpenError,
    ConflictError,
    CurrencyNotAllowedError,
    EmptyTransactionError,
    LedgerError,
    NotFoundError,
    UnbalancedTransactionError,
    UnknownAccountError,
    ValidationError,
)
from beanledger.models.audit import AuditEventType
from beanledger.models.ledger import Amount, Posting, TransactionSpec
from beanledger.models.query import TransactionFilter
from beanledger.services.storage import FileLedgerStore
from beanledger.validation.balance import residual


def snapshot_files(data_dir) -> dict[str, str]:
    return {p.name: p.read_text() for p in sorted(data_dir.glob("*.bean"))}


def includes(data_dir) -> list[str]:
    return [
        line for line in (data_dir / "main.bean").read_text().splitlines()
        if line.startswith("include")
    ]


class TestAddTransaction:
    """Test adding transactions."""

    def test_routes_to_monthly_file(self, engine, accounts, payment, data_dir):
        """Test that a transaction lands in its month's file only."""
        txn_id = engine.add_transaction(payment(date(2024, 3, 15)))

        assert (data_dir / "2024-03.bean").exists()
        assert sorted(p.name for p in data_dir.glob("*.bean")) == [
            "2024-03.bean", "accounts.bean", "main.bean",
        ]
        assert f'id: "{txn_id}"' in (data_dir / "2024-03.bean").read_text()
        assert includes(data_dir) == ['include "accounts.bean"', 'include "2024-03.bean"']

    def test_include_added_once(self, engine, accounts, payment, data_dir):
        """Test that a second transaction in the month reuses the include."""
        engine.add_transaction(payment(date(2024, 3, 15)))
        engine.add_transaction(payment(date(2024, 3, 16)))
        assert includes(data_dir).count('include "2024-03.bean"') == 1

    def test_includes_stay_sorted(self, engine, accounts, payment, data_dir):
        """Test include order: accounts first, then months by name."""
        engine.add_transaction(payment(date(2024, 5, 1)))
        engine.add_transaction(payment(date(2024, 1, 15)))
        engine.add_transaction(payment(date(2024, 2, 1)))
        assert includes(data_dir) == [
            'include "accounts.bean"',
            'include "2024-01.bean"',
            'include "2024-02.bean"',
            'include "2024-05.bean"',
        ]

    def test_date_order_within_file(self, engine, accounts, payment):
        """Test that files stay sorted and same-date entries keep insertion order."""
        engine.add_transaction(payment(date(2024, 3, 20), narration="first on 20th"))
        engine.add_transaction(payment(date(2024, 3, 10), narration="10th"))
        engine.add_transaction(payment(date(2024, 3, 20), narration="second on 20th"))
        engine.add_transaction(payment(date(2024, 3, 1), narration="1st"))

        narrations = [t.narration for t in engine.list_transactions()]
        assert narrations == ["1st", "10th", "first on 20th", "second on 20th"]

    def test_returns_fresh_ids(self, engine, accounts, payment):
        """Test that every add gets its own id."""
        ids = {engine.add_transaction(payment(date(2024, 3, 1))) for _ in range(3)}
        assert len(ids) == 3

    def test_accepts_dict(self, engine, accounts):
        """Test that a plain dict is validated into a spec."""
        txn_id = engine.add_transaction({
            "date": "2024-03-05",
            "narration": "Groceries",
            "postings": [
                {"account": "Expenses:Food", "units": {"number": "7.25", "currency": "USD"}},
                {"account": "Assets:Bank"},
            ],
        })
        assert engine.get_transaction(txn_id).postings[1].units is None

    def test_caller_id_metadata_is_dropped(self, engine, accounts, payment):
        """Test that the id metadata key is reserved."""
        txn_id = engine.add_transaction(payment(date(2024, 3, 1), metadata={"id": "mine", "memo": "x"}))
        assert txn_id != "mine"
        assert engine.get_transaction(txn_id).metadata == {"memo": "x"}

    def test_audit_event(self, engine, accounts, payment, audit_storage):
        """Test the audit trail of an add."""
        txn_id = engine.add_transaction(payment(date(2024, 3, 1)))
        events = audit_storage.get_events_by_entity("transaction", txn_id)
        assert [e.event_type for e in events] == [AuditEventType.TRANSACTION_ADDED]
        types = {e.event_type for e in audit_storage.events}
        assert AuditEventType.FILE_CREATED in types
        assert AuditEventType.INCLUDE_ADDED in types


class TestRejectedTransactions:
    """Test that invalid transactions are refused before any write."""

    @pytest.fixture(autouse=True)
    def setup(self, engine, accounts, data_dir):
        self.engine = engine
        self.data_dir = data_dir
        self.before = snapshot_files(data_dir)
        yield
        assert snapshot_files(data_dir) == self.before

    def spec(self, *postings, when=date(2024, 3, 1)) -> TransactionSpec:
        return TransactionSpec(date=when, narration="x", postings=list(postings))

    def test_unknown_account(self):
        """Test postings to accounts that were never opened."""
        with pytest.raises(UnknownAccountError) as exc:
            self.engine.add_transaction(self.spec(
                Posting(account="Expenses:Travel", units=Amount(number=Decimal("5"), currency="USD")),
                Posting(account="Assets:Bank", units=Amount(number=Decimal("-5"), currency="USD")),
            ))
        assert exc.value.field == "postings[0].account"

    def test_before_open_date(self, payment):
        """Test a transaction dated before the accounts open."""
        with pytest.raises(AccountNotOpenError):
            self.engine.add_transaction(payment(date(2023, 12, 31)))

    def test_unbalanced(self):
        """Test a non-zero residual."""
        with pytest.raises(UnbalancedTransactionError):
            self.engine.add_transaction(self.spec(
                Posting(account="Expenses:Food", units=Amount(number=Decimal("5"), currency="USD")),
                Posting(account="Assets:Bank", units=Amount(number=Decimal("-4"), currency="USD")),
            ))

    def test_two_missing_amounts(self):
        """Test that only one amount may be omitted."""
        with pytest.raises(UnbalancedTransactionError):
            self.engine.add_transaction(self.spec(
                Posting(account="Expenses:Food", units=Amount(number=Decimal("5"), currency="USD")),
                Posting(account="Assets:Bank"),
                Posting(account="Income:Salary"),
            ))

    def test_empty(self):
        """Test a transaction without postings."""
        with pytest.raises(EmptyTransactionError):
            self.engine.add_transaction(self.spec())

    def test_currency_not_allowed(self):
        """Test a currency outside the account's list."""
        with pytest.raises(CurrencyNotAllowedError):
            self.engine.add_transaction(self.spec(
                Posting(account="Expenses:Food", units=Amount(number=Decimal("5"), currency="EUR")),
                Posting(account="Assets:Bank", units=Amount(number=Decimal("-5"), currency="EUR")),
            ))

    def test_invalid_metadata_key(self, payment):
        """Test that a malformed metadata key names the field and key."""
        with pytest.raises(ValidationError, match="Invalid metadata key") as exc:
            self.engine.add_transaction(payment(date(2024, 3, 1), metadata={"Bad Key": "x"}))
        assert exc.value.field == "metadata"
        assert exc.value.value == "Bad Key"

    def test_multiline_posting_metadata(self):
        """Test that metadata strings must fit on one line."""
        with pytest.raises(ValidationError, match="single line") as exc:
            self.engine.add_transaction(self.spec(
                Posting(
                    account="Expenses:Food",
                    units=Amount(number=Decimal("5"), currency="USD"),
                    metadata={"memo": "two\nlines"},
                ),
                Posting(account="Assets:Bank", units=Amount(number=Decimal("-5"), currency="USD")),
            ))
        assert exc.value.field == "postings[0].metadata.memo"

    def test_malformed_dict(self):
        """Test that a malformed dict fails model validation."""
        with pytest.raises(ValueError):
            self.engine.add_transaction({"date": "2024-03-01", "flag": "xx"})

    def test_errors_are_validation_errors(self):
        """Test that every rejection shares the ValidationError base."""
        with pytest.raises(ValidationError):
            self.engine.add_transaction(self.spec())


class TestClosedAccounts:
    """Test the close-date boundary."""

    def test_close_date_is_inclusive(self, engine, accounts, payment):
        """Test postings on and after the close date."""
        engine.close_account(accounts["food"], "2024-03-31")
        engine.add_transaction(payment(date(2024, 3, 31)))
        with pytest.raises(AccountNotOpenError):
            engine.add_transaction(payment(date(2024, 4, 1)))


class TestBalanceTolerance:
    """Test rounding tolerance."""

    @staticmethod
    def sub_cent_residual() -> TransactionSpec:
        return TransactionSpec(
            date=date(2024, 3, 1),
            postings=[
                Posting(account="Expenses:Food", units=Amount(number=Decimal("10.004"), currency="USD")),
                Posting(account="Assets:Bank", units=Amount(number=Decimal("-10.00"), currency="USD")),
            ],
        )

    def test_balance_is_exact_by_default(self, engine, accounts, data_dir):
        """Test that any residual is rejected and nothing is written."""
        with pytest.raises(UnbalancedTransactionError, match="0.004 USD"):
            engine.add_transaction(self.sub_cent_residual())
        assert not (data_dir / "2024-03.bean").exists()

    def test_verify_reports_sub_cent_residual(self, engine, accounts, data_dir):
        """Test that the verifier applies the same exact default."""
        engine.add_transaction(
            TransactionSpec(
                date=date(2024, 3, 1),
                postings=[
                    Posting(account="Expenses:Food", units=Amount(number=Decimal("1"), currency="USD")),
                    Posting(account="Assets:Bank", units=Amount(number=Decimal("-1"), currency="USD")),
                ],
            )
        )
        text = (data_dir / "2024-03.bean").read_text()
        (data_dir / "2024-03.bean").write_text(text.replace("-1 USD", "-0.999 USD"))

        assert [d.code for d in engine.verify()] == ["UnbalancedTransactionError"]

    def test_configured_tolerance(self, settings):
        """Test that a configured tolerance accepts a small residual."""
        relaxed = settings.model_copy(update={"balance_tolerance": Decimal("0.005")})
        with LedgerEngine(relaxed) as engine:
            engine.open_account("Assets:Bank", "2024-01-01")
            engine.open_account("Expenses:Food", "2024-01-01")
            engine.add_transaction(self.sub_cent_residual())
            assert engine.verify() == []

    def test_cost_weight(self, engine, accounts):
        """Test that postings at cost balance by their cost."""
        engine.open_account("Assets:Broker", "2024-01-01")
        engine.add_transaction(TransactionSpec(
            date=date(2024, 3, 1),
            narration="Buy",
            postings=[
                Posting(
                    account="Assets:Broker",
                    units=Amount(number=Decimal("10"), currency="STOCK"),
                    cost={"number": Decimal("100"), "currency": "USD"},
                ),
                Posting(account="Assets:Bank", units=Amount(number=Decimal("-1000"), currency="USD")),
            ],
        ))


class TestGetAndList:
    """Test reads."""

    def test_get(self, engine, accounts, payment):
        """Test fetching by id."""
        txn_id = engine.add_transaction(payment(date(2024, 3, 15), payee="Cafe", tags=["food"]))
        txn = engine.get_transaction(txn_id)
        assert txn.id == txn_id
        assert txn.payee == "Cafe"
        assert txn.tags == ["food"]
        assert txn.postings[0].units.number == Decimal("10.00")

    def test_get_unknown(self, engine, accounts):
        """Test NotFoundError for an unknown id."""
        with pytest.raises(NotFoundError):
            engine.get_transaction("does-not-exist")

    def test_list_merges_months_chronologically(self, engine, accounts, payment):
        """Test that listings span files in date order."""
        engine.add_transaction(payment(date(2024, 4, 2), narration="april"))
        engine.add_transaction(payment(date(2024, 2, 10), narration="february"))
        engine.add_transaction(payment(date(2024, 3, 5), narration="march"))
        assert [t.narration for t in engine.list_transactions()] == ["february", "march", "april"]

    def test_date_filter_limits_files_read(self, engine, accounts, payment):
        """Test that a date range only reads the months it covers."""
        engine.add_transaction(payment(date(2024, 2, 10)))
        engine.add_transaction(payment(date(2024, 3, 5)))
        engine.add_transaction(payment(date(2024, 4, 2)))

        listing = engine.list_transactions(
            TransactionFilter(date_from=date(2024, 3, 1), date_to=date(2024, 3, 31))
        )
        assert listing.files == ["2024-03.bean"]
        assert [t.date for t in listing] == [date(2024, 3, 5)]

    def test_account_and_tag_filters(self, engine, accounts, payment):
        """Test content filters."""
        engine.add_transaction(payment(date(2024, 3, 1), tags=["trip"]))
        engine.add_transaction(TransactionSpec(
            date=date(2024, 3, 2),
            narration="Pay",
            postings=[
                Posting(account="Assets:Bank", units=Amount(number=Decimal("100"), currency="USD")),
                Posting(account="Income:Salary", units=Amount(number=Decimal("-100"), currency="USD")),
            ],
        ))
        assert len(list(engine.list_transactions(TransactionFilter(account="Income")))) == 1
        assert len(list(engine.list_transactions(TransactionFilter(account="Assets")))) == 2
        assert len(list(engine.list_transactions(TransactionFilter(tag="trip")))) == 1

    def test_listing_is_a_snapshot(self, engine, accounts, payment):
        """Test that later writes do not show up in an existing listing."""
        engine.add_transaction(payment(date(2024, 3, 1)))
        listing = engine.list_transactions()
        engine.add_transaction(payment(date(2024, 3, 2)))

        assert len(list(listing)) == 1
        assert len(list(listing)) == 1
        assert len(list(engine.list_transactions())) == 2

    def test_interpolation(self, engine, accounts):
        """Test that listings can fill in the omitted amount."""
        engine.add_transaction(TransactionSpec(
            date=date(2024, 3, 1),
            postings=[
                Posting(account="Expenses:Food", units=Amount(number=Decimal("12.34"), currency="USD")),
                Posting(account="Assets:Bank"),
            ],
        ))

        raw = next(iter(engine.list_transactions()))
        assert raw.postings[1].units is None

        filled = next(iter(engine.list_transactions(interpolate=True)))
        assert filled.postings[1].units == Amount(number=Decimal("-12.34"), currency="USD")
        assert all(v == 0 for v in residual(filled.postings).values())


class TestUpdateTransaction:
    """Test replacing transaction content."""

    def test_update_in_place(self, engine, accounts, payment):
        """Test changing content within the same month."""
        txn_id = engine.add_transaction(payment(date(2024, 3, 15)))
        engine.update_transaction(txn_id, payment(date(2024, 3, 15), amount="25.00", narration="Dinner"))

        txn = engine.get_transaction(txn_id)
        assert txn.narration == "Dinner"
        assert txn.postings[0].units.number == Decimal("25.00")

    def test_update_reorders_within_month(self, engine, accounts, payment):
        """Test that a new date in the same month keeps the file sorted."""
        first = engine.add_transaction(payment(date(2024, 3, 1), narration="a"))
        engine.add_transaction(payment(date(2024, 3, 10), narration="b"))
        engine.update_transaction(first, payment(date(2024, 3, 20), narration="a"))
        assert [t.narration for t in engine.list_transactions()] == ["b", "a"]

    def test_move_to_other_month(self, engine, accounts, payment, data_dir, audit_storage):
        """Test that a new month moves the transaction and keeps its id."""
        txn_id = engine.add_transaction(payment(date(2024, 3, 15)))
        engine.update_transaction(txn_id, payment(date(2024, 4, 2)))

        assert not (data_dir / "2024-03.bean").exists()
        assert (data_dir / "2024-04.bean").exists()
        assert includes(data_dir) == ['include "accounts.bean"', 'include "2024-04.bean"']
        assert engine.get_transaction(txn_id).date == date(2024, 4, 2)

        events = audit_storage.get_events_by_entity("transaction", txn_id)
        assert events[-1].event_type == AuditEventType.TRANSACTION_MOVED
        assert events[-1].details == {"source": "2024-03.bean", "target": "2024-04.bean"}

    def test_invalid_update_changes_nothing(self, engine, accounts, payment, data_dir):
        """Test that a rejected update leaves the files as they were."""
        txn_id = engine.add_transaction(payment(date(2024, 3, 15)))
        before = snapshot_files(data_dir)
        with pytest.raises(AccountNotOpenError):
            engine.update_transaction(txn_id, payment(date(2023, 6, 1)))
        assert snapshot_files(data_dir) == before

    def test_update_unknown(self, engine, accounts, payment):
        """Test NotFoundError on update."""
        with pytest.raises(NotFoundError):
            engine.update_transaction("nope", payment(date(2024, 3, 1)))


class TestDeleteTransaction:
    """Test removing transactions."""

    def test_add_then_delete_restores_files(self, engine, accounts, payment, data_dir):
        """Test that deleting what was just added restores every file."""
        engine.add_transaction(payment(date(2024, 3, 1), narration="kept early"))
        engine.add_transaction(payment(date(2024, 3, 20), narration="kept late"))
        before = snapshot_files(data_dir)

        for when in (date(2024, 2, 28), date(2024, 3, 10), date(2024, 3, 1), date(2024, 3, 25)):
            txn_id = engine.add_transaction(payment(when, narration="temporary"))
            engine.delete_transaction(txn_id)
            assert snapshot_files(data_dir) == before

    def test_last_delete_removes_file_and_include(self, engine, accounts, payment, data_dir):
        """Test that an emptied month disappears."""
        txn_id = engine.add_transaction(payment(date(2024, 3, 1)))
        engine.delete_transaction(txn_id)

        assert not (data_dir / "2024-03.bean").exists()
        assert includes(data_dir) == ['include "accounts.bean"']
        with pytest.raises(NotFoundError):
            engine.get_transaction(txn_id)

    def test_delete_twice(self, engine, accounts, payment):
        """Test NotFoundError on a second delete."""
        txn_id = engine.add_transaction(payment(date(2024, 3, 1)))
        engine.delete_transaction(txn_id)
        with pytest.raises(NotFoundError):
            engine.delete_transaction(txn_id)


class TestClearing:
    """Test flag changes."""

    def test_unclear_and_clear(self, engine, accounts, payment, data_dir):
        """Test toggling between pending and cleared."""
        txn_id = engine.add_transaction(payment(date(2024, 3, 1)))

        engine.unclear_transaction(txn_id)
        assert engine.get_transaction(txn_id).flag == "!"
        assert (data_dir / "2024-03.bean").read_text().startswith('2024-03-01 ! "Lunch"')

        engine.clear_transaction(txn_id)
        assert engine.get_transaction(txn_id).flag == "*"

    def test_clear_is_idempotent(self, engine, accounts, payment, audit_storage):
        """Test that clearing a cleared transaction changes nothing."""
        txn_id = engine.add_transaction(payment(date(2024, 3, 1)))
        engine.clear_transaction(txn_id)
        events = audit_storage.get_events_by_entity("transaction", txn_id)
        assert AuditEventType.TRANSACTION_FLAG_CHANGED not in {e.event_type for e in events}


class TestConflictRetry:
    """Test re-running a read-modify-write cycle after an outside edit."""

    @pytest.fixture
    def racing_editor(self, monkeypatch, data_dir):
        """Append a comment to a file right before the engine writes it."""
        original = FileLedgerStore.write
        edits = []

        def install(name: str, times: int):
            def write(store, file, directives, expected_hash):
                if file == name and len(edits) < times:
                    edits.append(file)
                    with open(data_dir / file, "a") as f:
                        f.write("; edited by hand\n")
                return original(store, file, directives, expected_hash)

            monkeypatch.setattr(FileLedgerStore, "write", write)
            return edits

        return install

    def test_add_retries_and_keeps_outside_edit(
        self, engine, accounts, payment, data_dir, audit_storage, racing_editor
    ):
        """Test that one conflicting edit is absorbed by a retry."""
        engine.add_transaction(payment(date(2024, 3, 1)))
        edits = racing_editor("2024-03.bean", times=1)

        txn_id = engine.add_transaction(payment(date(2024, 3, 5), narration="later"))

        assert edits == ["2024-03.bean"]
        assert "; edited by hand" in (data_dir / "2024-03.bean").read_text()
        assert engine.get_transaction(txn_id).narration == "later"
        assert len(list(engine.list_transactions())) == 2
        types = [e.event_type for e in audit_storage.events]
        assert AuditEventType.WRITE_CONFLICT in types
        assert types[-1] == AuditEventType.TRANSACTION_ADDED
        assert engine.verify() == []

    def test_retries_are_bounded(self, engine, accounts, payment, settings, racing_editor):
        """Test that a file that keeps changing fails with ConflictError."""
        engine.add_transaction(payment(date(2024, 3, 1)))
        edits = racing_editor("2024-03.bean", times=100)

        with pytest.raises(ConflictError):
            engine.add_transaction(payment(date(2024, 3, 5)))
        assert len(edits) == settings.conflict_retry_attempts
        assert len(list(engine.list_transactions())) == 1


class TestHandEditedFiles:
    """Test files written outside the engine."""

    HAND_WRITTEN = (
        '2024-05-03 * "Market"\n'
        "  Expenses:Food  4.00 USD\n"
        "  Assets:Bank\n"
    )

    def write_month(self, data_dir):
        (data_dir / "2024-05.bean").write_text(self.HAND_WRITTEN)
        main = (data_dir / "main.bean").read_text()
        (data_dir / "main.bean").write_text(main + 'include "2024-05.bean"\n')

    def test_derived_id(self, engine, accounts, data_dir):
        """Test that a transaction without an id is addressed by file and line."""
        self.write_month(data_dir)

        [txn] = list(engine.list_transactions())
        assert txn.id == "2024-05.bean:1"
        assert engine.get_transaction("2024-05.bean:1").narration == "Market"

    def test_flag_change_persists_fresh_id(self, engine, accounts, data_dir):
        """Test that touching a hand-written transaction gives it a real id."""
        self.write_month(data_dir)
        new_id = engine.unclear_transaction("2024-05.bean:1")

        assert new_id != "2024-05.bean:1"
        text = (data_dir / "2024-05.bean").read_text()
        assert f'id: "{new_id}"' in text
        assert "2024-05.bean:1" not in text
        assert engine.get_transaction(new_id).flag == "!"
        assert engine.verify() == []

    def test_moving_hand_written_keeps_neighbour_addressable(self, engine, accounts, data_dir):
        """Test that a derived address never ends up naming two transactions."""
        first = (
            '2024-05-01 * "First"\n'
            "  Expenses:Food  1.00 USD\n"
            "  Assets:Bank\n"
            "\n"
        )
        self.write_month(data_dir)
        (data_dir / "2024-05.bean").write_text(first + self.HAND_WRITTEN)
        assert engine.get_transaction("2024-05.bean:5").narration == "Market"

        spec = engine.get_transaction("2024-05.bean:1").to_spec()
        moved_id = engine.update_transaction(
            "2024-05.bean:1", spec.model_copy(update={"date": date(2024, 6, 1)})
        )

        assert moved_id != "2024-05.bean:1"
        assert engine.get_transaction(moved_id).narration == "First"
        assert engine.get_transaction(moved_id).date == date(2024, 6, 1)
        # the neighbour moved up to line 1 and is the only one with that address
        assert engine.get_transaction("2024-05.bean:1").narration == "Market"
        ids = [t.id for t in engine.list_transactions()]
        assert len(ids) == len(set(ids)) == 2
        assert engine.verify() == []

    def test_deleting_hand_written_then_addressing_neighbour(self, engine, accounts, data_dir):
        """Test deleting by derived address, then re-deriving the neighbour."""
        self.write_month(data_dir)
        (data_dir / "2024-05.bean").write_text(
            self.HAND_WRITTEN + "\n" + self.HAND_WRITTEN.replace("Market", "Bakery")
        )

        engine.delete_transaction("2024-05.bean:1")
        [txn] = list(engine.list_transactions())
        assert txn.id == "2024-05.bean:1"
        assert engine.get_transaction("2024-05.bean:1").narration == "Bakery"

    def test_assign_missing_identifiers(self, engine, accounts, data_dir):
        """Test that ids can be persisted for a whole ledger at once."""
        self.write_month(data_dir)
        assert engine.assign_missing_identifiers() == 1

        [txn] = list(engine.list_transactions())
        assert txn.id != "2024-05.bean:1"
        assert engine.get_transaction(txn.id).narration == "Market"
        assert engine.assign_missing_identifiers() == 0

    def test_add_after_outside_edit(self, engine, accounts, payment, data_dir):
        """Test that the engine picks up hand edits before writing."""
        engine.add_transaction(payment(date(2024, 5, 1)))
        with open(data_dir / "2024-05.bean", "a") as f:
            f.write("\n" + self.HAND_WRITTEN)

        engine.add_transaction(payment(date(2024, 5, 10), narration="later"))
        narrations = [t.narration for t in engine.list_transactions()]
        assert narrations == ["Lunch", "Market", "later"]

    def test_reindex(self, engine, accounts, data_dir):
        """Test that reindex picks up new files."""
        self.write_month(data_dir)
        stats = engine.reindex()
        assert stats == {"files": 1, "accounts": 3, "transactions": 1}


class TestEngineLifecycle:
    """Test open/close."""

    def test_closed_engine_refuses_calls(self, settings):
        """Test that calls before open() fail."""
        engine = LedgerEngine(settings)
        with pytest.raises(LedgerError, match="not open"):
            engine.list_accounts()

    def test_context_manager(self, settings, payment):
        """Test using the engine in a with-block."""
        with LedgerEngine(settings) as engine:
            engine.open_account("Assets:Bank", "2024-01-01")
            engine.open_account("Expenses:Food", "2024-01-01")
            engine.add_transaction(payment(date(2024, 3, 1)))
        assert not engine.is_open

    def test_create_engine(self, tmp_path, monkeypatch):
        """Test the environment-driven factory with a data dir override."""
        monkeypatch.chdir(tmp_path)
        get_settings.cache_clear()
        storage = InMemoryAuditStorage()

        engine = create_engine(tmp_path / "books", storage)
        try:
            assert engine.is_open
            assert engine.settings.data_dir == tmp_path / "books"
            assert AuditEventType.REINDEXED in [e.event_type for e in storage.events]
        finally:
            engine.close()
            get_settings.cache_clear()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
