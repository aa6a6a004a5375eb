"""Tests for TransferMatcher."""

from datetime import date
from decimal import Decimal

import pytest

from models import Category, ExchangeRate, RejectedTransfer, Transfer
from services.exceptions import TransferMatchInProgressError
from services.transfer_matcher import TransferMatcher
from tests.fixtures import create_account, create_transaction_entry


def _pair(db, source_account, destination_account, amount="500", outflow_day=10, inflow_day=11):
    """Money leaves ``source_account`` (positive) and arrives in ``destination_account``."""
    outflow = create_transaction_entry(
        db, source_account, Decimal(amount), date(2024, 5, outflow_day), name="Transfer out"
    )
    inflow = create_transaction_entry(
        db, destination_account, -Decimal(amount), date(2024, 5, inflow_day), name="Transfer in"
    )
    return inflow, outflow


class TestCandidates:
    def test_exact_same_currency_match(self, db, family, account, savings_account):
        inflow, outflow = _pair(db, account, savings_account)

        candidates = TransferMatcher(db, family).candidates()

        assert len(candidates) == 1
        assert candidates[0].inflow_transaction_id == inflow.transaction.id
        assert candidates[0].outflow_transaction_id == outflow.transaction.id
        assert candidates[0].date_diff == 1

    def test_outside_date_window_is_ignored(self, db, family, account, savings_account):
        _pair(db, account, savings_account, outflow_day=1, inflow_day=6)

        assert TransferMatcher(db, family).candidates() == []

    def test_same_account_is_ignored(self, db, family, account):
        _pair(db, account, account)

        assert TransferMatcher(db, family).candidates() == []

    def test_other_family_accounts_are_ignored(self, db, family, other_family, account):
        foreign = create_account(db, other_family, "Their checking")
        _pair(db, account, foreign)

        assert TransferMatcher(db, family).candidates() == []
        assert TransferMatcher(db, other_family).candidates() == []

    def test_disabled_accounts_are_ignored(self, db, family, account):
        disabled = create_account(db, family, "Old savings", status="disabled")
        _pair(db, account, disabled)

        assert TransferMatcher(db, family).candidates() == []

    def test_excluded_entries_are_ignored(self, db, family, account, savings_account):
        inflow, _ = _pair(db, account, savings_account)
        inflow.excluded = True
        db.flush()

        assert TransferMatcher(db, family).candidates() == []

    def test_amount_mismatch_in_same_currency(self, db, family, account, savings_account):
        create_transaction_entry(db, account, Decimal("500"), date(2024, 5, 10))
        create_transaction_entry(db, savings_account, Decimal("-499.99"), date(2024, 5, 10))

        assert TransferMatcher(db, family).candidates() == []

    def test_fx_within_tolerance_matches(self, db, family, account):
        euro_account = create_account(db, family, "Euro account", currency="EUR")
        db.add(ExchangeRate(from_currency="USD", to_currency="EUR", date=date(2024, 5, 10), rate=Decimal("0.9")))
        db.flush()
        create_transaction_entry(db, account, Decimal("100"), date(2024, 5, 10))
        create_transaction_entry(db, euro_account, Decimal("-86"), date(2024, 5, 11), currency="EUR")

        assert len(TransferMatcher(db, family).candidates()) == 1

    def test_fx_outside_tolerance_does_not_match(self, db, family, account):
        euro_account = create_account(db, family, "Euro account", currency="EUR")
        db.add(ExchangeRate(from_currency="USD", to_currency="EUR", date=date(2024, 5, 10), rate=Decimal("0.9")))
        db.flush()
        create_transaction_entry(db, account, Decimal("100"), date(2024, 5, 10))
        create_transaction_entry(db, euro_account, Decimal("-75"), date(2024, 5, 11), currency="EUR")

        assert TransferMatcher(db, family).candidates() == []

    def test_fx_without_rate_does_not_match(self, db, family, account):
        euro_account = create_account(db, family, "Euro account", currency="EUR")
        create_transaction_entry(db, account, Decimal("100"), date(2024, 5, 10))
        create_transaction_entry(db, euro_account, Decimal("-90"), date(2024, 5, 10), currency="EUR")

        assert TransferMatcher(db, family).candidates() == []

    def test_closest_dates_first(self, db, family, account, savings_account, credit_card_account):
        far_inflow, _ = _pair(db, account, savings_account, amount="200", outflow_day=10, inflow_day=13)
        near_inflow, _ = _pair(db, account, credit_card_account, amount="300", outflow_day=10, inflow_day=10)

        candidates = TransferMatcher(db, family).candidates()

        assert [c.inflow_transaction_id for c in candidates] == [
            near_inflow.transaction.id,
            far_inflow.transaction.id,
        ]


class TestAutoMatch:
    def test_creates_transfer_and_sets_kinds(self, db, family, account, savings_account):
        inflow, outflow = _pair(db, account, savings_account)

        transfers = TransferMatcher(db, family).auto_match()

        assert len(transfers) == 1
        assert inflow.transaction.kind == "funds_movement"
        assert outflow.transaction.kind == "funds_movement"

    def test_credit_card_payment_kind(self, db, family, account, credit_card_account):
        inflow, outflow = _pair(db, account, credit_card_account)

        TransferMatcher(db, family).auto_match()

        assert inflow.transaction.kind == "funds_movement"
        assert outflow.transaction.kind == "cc_payment"

    def test_investment_contribution_gets_category(self, db, family, account, brokerage_account):
        _, outflow = _pair(db, account, brokerage_account)

        TransferMatcher(db, family).auto_match()

        category = db.query(Category).filter_by(family_id=family.id).one()
        assert outflow.transaction.kind == "investment_contribution"
        assert outflow.transaction.category_id == category.id

    def test_existing_category_is_kept(self, db, family, account, brokerage_account):
        goals = Category(family_id=family.id, name="Savings goals")
        db.add(goals)
        db.flush()
        _, outflow = _pair(db, account, brokerage_account)
        outflow.transaction.category_id = goals.id
        db.flush()

        TransferMatcher(db, family).auto_match()

        assert outflow.transaction.category_id == goals.id

    def test_each_transaction_used_once(self, db, family, account, savings_account, credit_card_account):
        # One outflow, two equally sized inflows: only the closer one pairs
        outflow = create_transaction_entry(db, account, Decimal("250"), date(2024, 5, 10))
        near = create_transaction_entry(db, savings_account, Decimal("-250"), date(2024, 5, 11))
        far = create_transaction_entry(db, credit_card_account, Decimal("-250"), date(2024, 5, 13))

        transfers = TransferMatcher(db, family).auto_match()

        assert len(transfers) == 1
        assert transfers[0].inflow_transaction_id == near.transaction.id
        assert transfers[0].outflow_transaction_id == outflow.transaction.id
        assert far.transaction.kind == "standard"

    def test_no_transaction_in_two_transfers(self, db, family, account, savings_account, credit_card_account):
        for day in (10, 11, 12):
            create_transaction_entry(db, account, Decimal("100"), date(2024, 5, day))
            create_transaction_entry(db, savings_account, Decimal("-100"), date(2024, 5, day))
            create_transaction_entry(db, credit_card_account, Decimal("-100"), date(2024, 5, day))

        TransferMatcher(db, family).auto_match()

        ids = []
        for transfer in db.query(Transfer).all():
            ids.extend([transfer.inflow_transaction_id, transfer.outflow_transaction_id])
        assert len(ids) == len(set(ids))
        assert db.query(Transfer).count() == 3

    def test_rerun_is_noop(self, db, family, account, savings_account):
        _pair(db, account, savings_account)

        TransferMatcher(db, family).auto_match()
        second = TransferMatcher(db, family).auto_match()

        assert second == []
        assert db.query(Transfer).count() == 1

    def test_rejected_pair_is_never_proposed(self, db, family, account, savings_account):
        inflow, outflow = _pair(db, account, savings_account)
        db.add(
            RejectedTransfer(
                inflow_transaction_id=inflow.transaction.id,
                outflow_transaction_id=outflow.transaction.id,
            )
        )
        db.flush()

        assert TransferMatcher(db, family).auto_match() == []
        assert TransferMatcher(db, family).auto_match() == []
        assert db.query(Transfer).count() == 0

    def test_rejected_pair_frees_transactions_for_other_pairs(
        self, db, family, account, savings_account, credit_card_account
    ):
        outflow = create_transaction_entry(db, account, Decimal("250"), date(2024, 5, 10))
        near = create_transaction_entry(db, savings_account, Decimal("-250"), date(2024, 5, 10))
        far = create_transaction_entry(db, credit_card_account, Decimal("-250"), date(2024, 5, 12))
        db.add(
            RejectedTransfer(
                inflow_transaction_id=near.transaction.id,
                outflow_transaction_id=outflow.transaction.id,
            )
        )
        db.flush()

        transfers = TransferMatcher(db, family).auto_match()

        assert [t.inflow_transaction_id for t in transfers] == [far.transaction.id]

    def test_concurrent_run_for_same_family_is_refused(self, db, family):
        assert TransferMatcher._claim(family.id)
        try:
            assert TransferMatcher.is_matching_in_progress(family.id)
            with pytest.raises(TransferMatchInProgressError):
                TransferMatcher(db, family).auto_match()
        finally:
            TransferMatcher._release(family.id)

    def test_other_family_is_not_blocked(self, db, family, other_family):
        assert TransferMatcher._claim(family.id)
        try:
            assert TransferMatcher(db, other_family).auto_match() == []
        finally:
            TransferMatcher._release(family.id)
        assert not TransferMatcher.is_matching_in_progress(family.id)

    def test_finished_runs_leave_no_family_state(self, db, family, account, savings_account):
        _pair(db, account, savings_account)

        TransferMatcher(db, family).auto_match()

        assert family.id not in TransferMatcher._running_families
