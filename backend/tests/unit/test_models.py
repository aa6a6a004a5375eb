"""Unit tests for SQLAlchemy models."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from models import Entry, Holding, Transaction
from models.entry import TRADE, TRANSACTION
from models.transaction import ACTIVITY_LABELS, TRANSACTION_KINDS, cast_bool
from services.exceptions import EntryTypeCollisionError
from services.transfer_service import kind_for_account
from tests.fixtures import create_account, create_holding, create_link, create_transaction_entry


def test_account_defaults(account):
    assert account.status == "active"
    assert account.is_visible is True
    assert account.is_investment is False
    assert account.created_at is not None


@pytest.mark.parametrize("status,visible", [("draft", True), ("disabled", False), ("pending_deletion", False)])
def test_account_visibility(db, family, status, visible):
    assert create_account(db, family, status=status).is_visible is visible


def test_can_delete_holdings_requires_every_link(db, brokerage_account):
    assert brokerage_account.can_delete_holdings is True

    create_link(db, brokerage_account, "PlaidAccount")
    assert brokerage_account.can_delete_holdings is True

    create_link(db, brokerage_account, "SnaptradeAccount", allows_holdings_deletion=False)
    assert brokerage_account.can_delete_holdings is False


def test_transfer_kinds_are_transaction_kinds(db, family):
    for account_type in ("loan", "credit_card", "investment", "depository"):
        account = create_account(db, family, account_type, account_type)
        assert kind_for_account(account) in TRANSACTION_KINDS


def test_trade_labels_are_known_activity_labels():
    assert {"Buy", "Sell", "Dividend", "Interest", "Fee", "Contribution"} <= set(ACTIVITY_LABELS)


class TestEntry:
    def test_payload_as_returns_payload(self, db, account):
        entry = create_transaction_entry(db, account, "5", date(2024, 1, 1))
        assert entry.payload_as(TRANSACTION) is entry.transaction

    def test_payload_as_refuses_other_type(self, db, account):
        entry = create_transaction_entry(db, account, "5", date(2024, 1, 1), external_id="x1")

        with pytest.raises(EntryTypeCollisionError) as exc_info:
            entry.payload_as(TRADE)
        assert exc_info.value.external_id == "x1"
        assert exc_info.value.existing_type == TRANSACTION

    def test_external_id_unique_per_account_and_source(self, db, account):
        create_transaction_entry(db, account, "5", date(2024, 1, 1), external_id="x1", source="plaid")

        with pytest.raises(IntegrityError):
            with db.begin_nested():
                create_transaction_entry(
                    db, account, "6", date(2024, 1, 2), external_id="x1", source="plaid"
                )

    def test_same_external_id_from_other_source_is_allowed(self, db, account):
        create_transaction_entry(db, account, "5", date(2024, 1, 1), external_id="x1", source="plaid")
        create_transaction_entry(db, account, "5", date(2024, 1, 1), external_id="x1", source="simplefin")

        assert db.query(Entry).count() == 2

    def test_deleting_entry_deletes_payload(self, db, account):
        entry = create_transaction_entry(db, account, "5", date(2024, 1, 1))

        db.delete(entry)
        db.flush()

        assert db.query(Transaction).count() == 0


class TestTransaction:
    def test_pending_flag_is_per_source(self):
        txn = Transaction(extra={"plaid": {"pending": True}, "simplefin": {"pending": False}})

        assert txn.is_pending_for("plaid") is True
        assert txn.is_pending_for("simplefin") is False
        assert txn.is_pending_for("csv") is False
        assert txn.is_pending is True

    def test_string_flags(self):
        txn = Transaction(extra={"plaid": {"pending": "false"}})
        assert txn.is_pending is False

    def test_suggestion_is_not_a_pending_block(self):
        txn = Transaction(extra={"potential_posted_match": {"entry_id": "e1"}})

        assert txn.is_pending is False
        assert txn.potential_posted_match == {"entry_id": "e1"}

    @pytest.mark.parametrize("kind,expected", [("funds_movement", True), ("cc_payment", True), ("standard", False)])
    def test_is_transfer(self, kind, expected):
        assert Transaction(kind=kind).is_transfer is expected


@pytest.mark.parametrize(
    "value,expected",
    [(True, True), ("true", True), (" Yes ", True), (1, True), ("0", False), ("false", False), (None, False)],
)
def test_cast_bool(value, expected):
    assert cast_bool(value) is expected


class TestHolding:
    def test_remapped_security(self, db, brokerage_account, security):
        holding = create_holding(db, brokerage_account, security, date(2024, 3, 1))
        assert holding.security_remapped is False
        assert holding.security_replaceable_by_provider is True

        holding.security_locked = True
        holding.provider_security_id = "other"
        assert holding.security_remapped is True
        assert holding.security_replaceable_by_provider is False

    def test_one_row_per_slot(self, db, brokerage_account, security, plaid_link):
        create_holding(db, brokerage_account, security, date(2024, 3, 1), account_provider_id=plaid_link.id)

        with pytest.raises(IntegrityError):
            with db.begin_nested():
                create_holding(
                    db, brokerage_account, security, date(2024, 3, 1), account_provider_id=plaid_link.id
                )
        assert db.query(Holding).count() == 1

    def test_amounts_are_decimals(self, db, brokerage_account, security):
        holding = create_holding(db, brokerage_account, security, date(2024, 3, 1), qty="3", amount="30")
        db.expire(holding)
        assert holding.qty == Decimal("3")
        assert isinstance(holding.amount, Decimal)
