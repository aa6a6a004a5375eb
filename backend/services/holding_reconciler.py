"""Holding reconciler - upserts provider position snapshots.

Several providers may report positions for the same account. A holding is
claimed by the provider link that created it; other links never overwrite
it, while unowned holdings (manual or legacy rows) are adopted by the first
link that reports them.
"""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Account, Holding, Security
from services.cost_basis_policy import PROVIDER, CostBasisPolicy
from services.exceptions import MissingCorrelationKeyError
from services.import_report import ADOPTED, COLLISION, ImportReport

logger = logging.getLogger(__name__)


def _to_decimal(value) -> Decimal | None:
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))


class HoldingReconciler:
    """Reconciles provider holdings for a single account."""

    def __init__(self, db: Session, account: Account, report: ImportReport | None = None):
        self.db = db
        self.account = account
        self.report = report if report is not None else ImportReport()

    def reconcile(
        self,
        security: Security,
        quantity,
        amount,
        currency: str,
        date: date,
        price=None,
        cost_basis=None,
        external_id: str | None = None,
        account_provider_id: str | None = None,
        delete_future: bool = False,
    ) -> Holding:
        """Create or update the holding for one reported position.

        Returns the holding that now represents the position. When another
        provider link already owns the ``(security, date, currency)`` slot
        its row is returned unchanged.

        Raises:
            MissingCorrelationKeyError: If security is None.
        """
        if security is None:
            raise MissingCorrelationKeyError("security")

        quantity = _to_decimal(quantity)
        amount = _to_decimal(amount)
        price = _to_decimal(price)
        if price is None:
            price = (amount / quantity) if quantity else Decimal("0")

        holding = self._find(security, date, currency, external_id, account_provider_id)

        owner = self._composite_owner(security, date, currency, account_provider_id)
        if owner is not None:
            self._record_collision(owner, security, date, currency, account_provider_id)
            return owner

        try:
            with self.db.begin_nested():
                if holding is None:
                    holding = Holding(
                        account_id=self.account.id,
                        date=date,
                        currency=currency,
                        security_locked=False,
                        cost_basis_locked=False,
                        account_provider_id=account_provider_id,
                    )
                    self.db.add(holding)
                    is_new = True
                else:
                    is_new = False
                self._apply_snapshot(
                    holding, security, quantity, amount, price, cost_basis,
                    date, currency, external_id, account_provider_id, is_new,
                )
                self.db.flush()
        except IntegrityError:
            holding = self._resolve_conflict(
                security, quantity, amount, price, cost_basis,
                date, currency, external_id, account_provider_id,
            )
            if holding is None:
                raise

        if delete_future:
            self.delete_future_holdings(security, date, account_provider_id)

        return holding

    # -- lookups -----------------------------------------------------------

    def _base_query(self):
        return self.db.query(Holding).filter(Holding.account_id == self.account.id)

    def _scoped(self, query, account_provider_id: str | None):
        if account_provider_id:
            query = query.filter(Holding.account_provider_id == account_provider_id)
        return query

    def _find(
        self,
        security: Security,
        date: date,
        currency: str,
        external_id: str | None,
        account_provider_id: str | None,
    ) -> Holding | None:
        if not external_id:
            return (
                self._base_query()
                .filter_by(security_id=security.id, date=date, currency=currency)
                .first()
            )

        holding = self._base_query().filter(Holding.external_id == external_id).first()
        if holding is not None:
            return holding

        # Provider asserted this security before and the user remapped it
        holding = self._scoped(
            self._base_query().filter_by(
                provider_security_id=security.id, date=date, currency=currency
            ),
            account_provider_id,
        ).first()
        if holding is not None:
            return holding

        # Resolver handed back a different Security row for the same ticker
        holding = self._scoped(
            self._base_query()
            .join(Security, Security.id == Holding.provider_security_id)
            .filter(
                Security.ticker == security.ticker,
                Holding.date == date,
                Holding.currency == currency,
            ),
            account_provider_id,
        ).first()
        if holding is not None:
            return holding

        return self._scoped(
            self._base_query().filter_by(security_id=security.id, date=date, currency=currency),
            account_provider_id,
        ).first()

    def _composite_owner(
        self,
        security: Security,
        date: date,
        currency: str,
        account_provider_id: str | None,
    ) -> Holding | None:
        """The holding in this slot if a *different* provider link owns it."""
        if not account_provider_id:
            return None
        existing = (
            self._base_query()
            .filter_by(security_id=security.id, date=date, currency=currency)
            .first()
        )
        if (
            existing is not None
            and existing.account_provider_id is not None
            and existing.account_provider_id != account_provider_id
        ):
            return existing
        return None

    # -- writes ------------------------------------------------------------

    def _apply_snapshot(
        self,
        holding: Holding,
        security: Security,
        quantity: Decimal,
        amount: Decimal,
        price: Decimal,
        cost_basis,
        date: date,
        currency: str,
        external_id: str | None,
        account_provider_id: str | None,
        is_new: bool,
    ) -> None:
        if is_new or holding.security_replaceable_by_provider:
            holding.security = security
        holding.provider_security = security
        holding.date = date
        holding.currency = currency
        holding.qty = quantity
        holding.amount = amount
        holding.price = price

        decision = CostBasisPolicy.reconcile(None if is_new else holding, cost_basis, PROVIDER)
        if decision.should_update:
            holding.cost_basis = decision.cost_basis
            holding.cost_basis_source = decision.cost_basis_source

        if account_provider_id and holding.account_provider_id is None:
            holding.account_provider_id = account_provider_id
            self._record_adoption(holding, account_provider_id)
        if external_id:
            holding.external_id = external_id

    def _resolve_conflict(
        self,
        security: Security,
        quantity: Decimal,
        amount: Decimal,
        price: Decimal,
        cost_basis,
        date: date,
        currency: str,
        external_id: str | None,
        account_provider_id: str | None,
    ) -> Holding | None:
        """Reconcile with the row a concurrent writer created first."""
        existing = (
            self._base_query()
            .filter_by(security_id=security.id, date=date, currency=currency)
            .first()
        )
        if existing is None and external_id:
            existing = self._base_query().filter(Holding.external_id == external_id).first()
        if existing is None:
            return None

        if (
            account_provider_id
            and existing.account_provider_id is not None
            and existing.account_provider_id != account_provider_id
        ):
            self._record_collision(existing, security, date, currency, account_provider_id)
            return existing

        try:
            with self.db.begin_nested():
                existing.qty = quantity
                existing.amount = amount
                existing.price = price
                decision = CostBasisPolicy.reconcile(existing, cost_basis, PROVIDER)
                if decision.should_update:
                    existing.cost_basis = decision.cost_basis
                    existing.cost_basis_source = decision.cost_basis_source
                if account_provider_id and existing.account_provider_id is None:
                    existing.account_provider_id = account_provider_id
                    self._record_adoption(existing, account_provider_id)
                if external_id and not existing.external_id:
                    existing.external_id = external_id
                self.db.flush()
        except IntegrityError:
            logger.warning(
                "Could not update holding %s after concurrent insert (security=%s date=%s)",
                existing.id, security.id, date,
            )
        return existing

    def delete_future_holdings(
        self, security: Security, date: date, account_provider_id: str | None = None
    ) -> int:
        """Delete holdings of ``security`` dated after ``date``.

        Only runs when every provider linked to the account allows deletion,
        and is limited to ``account_provider_id``'s rows when given.
        """
        if not self.account.can_delete_holdings:
            logger.warning(
                "Skipping future holdings deletion for account %s "
                "because not all providers allow deletion",
                self.account.id,
            )
            return 0

        query = self._scoped(
            self._base_query().filter(Holding.security_id == security.id, Holding.date > date),
            account_provider_id,
        )
        future = query.all()
        for holding in future:
            self.db.delete(holding)
        if future:
            self.db.flush()
            logger.info(
                "Deleted %d future holdings of %s on account %s",
                len(future), security.ticker, self.account.id,
            )
        return len(future)

    # -- reporting ---------------------------------------------------------

    def _record_collision(
        self,
        existing: Holding,
        security: Security,
        date: date,
        currency: str,
        account_provider_id: str | None,
    ) -> None:
        logger.warning(
            "Cross-provider holding collision for account=%s security=%s date=%s "
            "currency=%s; returning existing id=%s",
            self.account.id, security.id, date, currency, existing.id,
        )
        self.report.record(
            COLLISION,
            entry_id=existing.id,
            external_id=existing.external_id,
            reason="owned_by_other_provider",
            detail={
                "owner_account_provider_id": existing.account_provider_id,
                "account_provider_id": account_provider_id,
            },
        )

    def _record_adoption(self, holding: Holding, account_provider_id: str) -> None:
        if holding.id is None:
            return
        logger.info("Provider link %s adopted holding %s", account_provider_id, holding.id)
        self.report.record(ADOPTED, entry_id=holding.id, external_id=holding.external_id)
