"""Provider-reported account state: balances and type-specific details."""

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from models import Account
from models.account import ACCOUNT_DETAIL_ATTRIBUTES
from services.enrichment import to_jsonable

logger = logging.getLogger(__name__)


class AccountService:
    """Account-level updates that accompany a provider sync."""

    @staticmethod
    def update_balance(
        db: Session,
        account: Account,
        balance,
        cash_balance=None,
        source: str | None = None,
    ) -> Account:
        """Store the provider's current balance.

        ``cash_balance`` is the uninvested part of an investment account;
        when the provider does not report it the whole balance is cash.
        """
        account.balance = Decimal(str(balance))
        account.cash_balance = account.balance if cash_balance is None else Decimal(str(cash_balance))
        db.flush()
        logger.debug(
            "Updated balance of account %s from %s: %s (cash %s)",
            account.id, source, account.balance, account.cash_balance,
        )
        return account

    @staticmethod
    def update_accountable_attributes(
        db: Session, account: Account, attributes: dict | None, source: str | None = None
    ) -> bool:
        """Merge provider details (APR, minimum payment, ...) into ``account.details``.

        Only attributes known for the account's type are kept and None values
        are ignored.

        Returns:
            True if anything was written.
        """
        allowed = ACCOUNT_DETAIL_ATTRIBUTES.get(account.account_type, ())
        valid = {
            key: to_jsonable(value)
            for key, value in (attributes or {}).items()
            if value is not None and key in allowed
        }
        ignored = sorted(set(attributes or {}) - set(allowed))
        if ignored:
            logger.debug(
                "Ignoring unknown %s attributes from %s: %s", account.account_type, source, ignored
            )
        if not valid:
            return False

        account.details = {**(account.details or {}), **valid}
        db.flush()
        logger.info(
            "Updated %s details of account %s from %s: %s",
            account.account_type, account.id, source, sorted(valid),
        )
        return True
