"""Normalized record types handed to the reconciliation engine.

Provider adapters (Plaid, SimpleFIN, SnapTrade, CSV imports, ...) live
upstream of this package. They parse their payloads into these dataclasses;
the engine never sees raw provider data.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal


@dataclass
class ProviderTransaction:
    """Normalized cash transaction.

    Amount sign follows the ledger convention: positive is money leaving
    the account, negative is money arriving.
    """

    external_id: str  # Provider's unique ID for this transaction
    amount: Decimal
    currency: str  # Currency code (e.g., "USD")
    date: date
    name: str
    pending: bool = False
    pending_link_id: str | None = None  # Provider ID of the pending txn this posts
    category_id: str | None = None
    merchant_id: str | None = None
    notes: str | None = None
    activity_label: str | None = None  # Provider-asserted investment activity label
    extra: dict | None = None  # Provider metadata merged into Transaction.extra


@dataclass
class ProviderHolding:
    """Normalized position snapshot."""

    ticker: str
    quantity: Decimal
    amount: Decimal  # Total market value
    currency: str
    date: date
    price: Decimal | None = None
    cost_basis: Decimal | None = None
    external_id: str | None = None
    security_name: str | None = None
    exchange_operating_mic: str | None = None


@dataclass
class ProviderTrade:
    """Normalized buy/sell event. Quantity is negative for sells."""

    ticker: str
    quantity: Decimal
    price: Decimal
    amount: Decimal
    currency: str
    date: date
    external_id: str | None = None
    name: str | None = None
    activity_label: str | None = None
    exchange_operating_mic: str | None = None


@dataclass
class AccountSyncBatch:
    """All records one provider connection produced for one account."""

    account_id: str
    source: str  # Provider name, e.g. "plaid"
    account_provider_id: str | None = None
    transactions: list[ProviderTransaction] = field(default_factory=list)
    holdings: list[ProviderHolding] = field(default_factory=list)
    trades: list[ProviderTrade] = field(default_factory=list)
    replace_future_holdings: bool = False
    balance: Decimal | None = None  # Current balance; None when not reported
    cash_balance: Decimal | None = None
    account_attributes: dict | None = None  # Type-specific details, e.g. {"apr": ...}

    @property
    def record_count(self) -> int:
        return len(self.transactions) + len(self.holdings) + len(self.trades)
