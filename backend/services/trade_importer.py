"""Trade importer - find-or-create for provider buy/sell events."""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Account, Entry, Security, Trade
from models.entry import TRADE
from services.exceptions import MissingCorrelationKeyError
from services.import_report import ImportReport

logger = logging.getLogger(__name__)


def build_trade_name(quantity, ticker: str) -> str:
    """E.g. "Buy 10 shares of AAPL" or "Sell 2.5 shares of VTI"."""
    quantity = Decimal(str(quantity))
    verb = "Sell" if quantity < 0 else "Buy"
    shares = abs(quantity).normalize()
    # normalize() turns 100 into 1E+2
    shares_text = f"{shares:f}"
    noun = "share" if shares == 1 else "shares"
    return f"{verb} {shares_text} {noun} of {ticker}"


class TradeImporter:
    """Imports trades for one account.

    Trades are fully provider-owned once linked: every import overwrites
    quantity, price, currency and label.
    """

    def __init__(self, db: Session, account: Account, report: ImportReport | None = None):
        self.db = db
        self.account = account
        self.report = report if report is not None else ImportReport()

    def import_trade(
        self,
        security: Security,
        quantity,
        price,
        amount,
        currency: str,
        date: date,
        source: str,
        name: str | None = None,
        external_id: str | None = None,
        activity_label: str | None = None,
    ) -> Entry:
        """Create or update the trade entry for one provider event.

        Without ``external_id`` a new entry is always created.

        Raises:
            MissingCorrelationKeyError: If security or source is missing.
            EntryTypeCollisionError: If the key belongs to a non-trade entry.
        """
        if security is None:
            raise MissingCorrelationKeyError("security")
        if not source:
            raise MissingCorrelationKeyError("source")

        kwargs = dict(
            security=security,
            quantity=Decimal(str(quantity)),
            price=Decimal(str(price)),
            amount=Decimal(str(amount)),
            currency=currency,
            date=date,
            source=source,
            name=name,
            external_id=external_id,
            activity_label=activity_label,
        )
        try:
            with self.db.begin_nested():
                entry = self._import(**kwargs)
                self.db.flush()
        except IntegrityError:
            if not external_id:
                raise
            logger.info("Concurrent insert for trade %s/%s, retrying", source, external_id)
            with self.db.begin_nested():
                entry = self._import(**kwargs)
                self.db.flush()
        return entry

    def _import(
        self,
        security: Security,
        quantity: Decimal,
        price: Decimal,
        amount: Decimal,
        currency: str,
        date: date,
        source: str,
        name: str | None,
        external_id: str | None,
        activity_label: str | None,
    ) -> Entry:
        entry = None
        if external_id:
            entry = (
                self.db.query(Entry)
                .filter_by(account_id=self.account.id, external_id=external_id, source=source)
                .first()
            )

        if entry is None:
            entry = Entry(
                account_id=self.account.id,
                entryable_type=TRADE,
                external_id=external_id,
                source=source,
                excluded=False,
                user_modified=False,
                import_locked=False,
                attribute_provenance={},
            )
            entry.trade = Trade()
            self.db.add(entry)
            logger.debug("Creating trade entry %s/%s", source, external_id)

        trade = entry.payload_as(TRADE)
        if trade.provider_security_id != security.id:
            # Not remapped by the user, or the provider now asserts another security
            trade.security = security
            trade.provider_security_id = None
        trade.qty = quantity
        trade.price = price
        trade.currency = currency
        trade.investment_activity_label = activity_label or ("Sell" if quantity < 0 else "Buy")

        entry.date = date
        entry.amount = amount
        entry.currency = currency
        entry.name = name or build_trade_name(quantity, security.ticker)
        return entry
