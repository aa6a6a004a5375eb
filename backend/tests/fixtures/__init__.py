"""Test fixtures and sample data."""
import pytest
from datetime import date
from decimal import Decimal

from models import Account, AccountProvider, Entry, Family, Holding, Security, Transaction
from models.entry import TRANSACTION
from sqlalchemy.orm import Session


def get_or_create_security(
    db: Session, ticker: str, name: str | None = None, mic: str | None = None
) -> Security:
    """Get or create a Security record for the given ticker.

    This is a helper function (not a fixture) for tests that need more
    than the default ``security`` fixture.
    """
    sec = db.query(Security).filter_by(ticker=ticker, exchange_operating_mic=mic).first()
    if sec is None:
        sec = Security(ticker=ticker, name=name or ticker, exchange_operating_mic=mic)
        db.add(sec)
        db.flush()
    return sec


def create_account(
    db: Session,
    family: Family,
    name: str = "Checking",
    account_type: str = "depository",
    currency: str = "USD",
    status: str = "active",
) -> Account:
    acct = Account(
        family_id=family.id,
        name=name,
        account_type=account_type,
        currency=currency,
        status=status,
    )
    db.add(acct)
    db.flush()
    return acct


def create_link(
    db: Session,
    account: Account,
    provider_type: str = "PlaidAccount",
    allows_holdings_deletion: bool = True,
) -> AccountProvider:
    link = AccountProvider(
        account_id=account.id,
        provider_type=provider_type,
        provider_account_id=f"{provider_type.lower()}-{account.id[:8]}",
        allows_holdings_deletion=allows_holdings_deletion,
    )
    db.add(link)
    db.flush()
    db.refresh(account)
    return link


def create_transaction_entry(
    db: Session,
    account: Account,
    amount,
    entry_date: date,
    name: str = "Manual entry",
    currency: str = "USD",
    external_id: str | None = None,
    source: str | None = None,
    pending: bool = False,
    merchant_id: str | None = None,
    **flags,
) -> Entry:
    """Insert a transaction entry directly, bypassing the reconciler."""
    extra = {source: {"pending": True}} if pending and source else {}
    entry = Entry(
        account_id=account.id,
        entryable_type=TRANSACTION,
        date=entry_date,
        amount=Decimal(str(amount)),
        currency=currency,
        name=name,
        external_id=external_id,
        source=source,
        excluded=flags.get("excluded", False),
        user_modified=flags.get("user_modified", False),
        import_locked=flags.get("import_locked", False),
        attribute_provenance={},
    )
    entry.transaction = Transaction(
        kind="standard", extra=extra, attribute_provenance={}, merchant_id=merchant_id
    )
    db.add(entry)
    db.flush()
    return entry


def create_holding(
    db: Session,
    account: Account,
    security: Security,
    holding_date: date,
    qty="10",
    amount="1000",
    currency: str = "USD",
    account_provider_id: str | None = None,
    external_id: str | None = None,
    **kwargs,
) -> Holding:
    holding = Holding(
        account_id=account.id,
        security_id=security.id,
        provider_security_id=kwargs.pop("provider_security_id", security.id),
        date=holding_date,
        currency=currency,
        qty=Decimal(str(qty)),
        price=Decimal(str(amount)) / Decimal(str(qty)),
        amount=Decimal(str(amount)),
        account_provider_id=account_provider_id,
        external_id=external_id,
        security_locked=kwargs.pop("security_locked", False),
        cost_basis_locked=kwargs.pop("cost_basis_locked", False),
        **kwargs,
    )
    db.add(holding)
    db.flush()
    return holding


@pytest.fixture
def family(db):
    """Create the household every other fixture belongs to."""
    fam = Family(name="Smith Household", currency="USD")
    db.add(fam)
    db.flush()
    return fam


@pytest.fixture
def other_family(db):
    fam = Family(name="Jones Household", currency="USD")
    db.add(fam)
    db.flush()
    return fam


@pytest.fixture
def account(db, family):
    """Create a test checking account."""
    return create_account(db, family, "Checking", "depository")


@pytest.fixture
def savings_account(db, family):
    return create_account(db, family, "Savings", "depository")


@pytest.fixture
def credit_card_account(db, family):
    return create_account(db, family, "Visa", "credit_card")


@pytest.fixture
def brokerage_account(db, family):
    """Create a test investment account."""
    return create_account(db, family, "Brokerage", "investment")


@pytest.fixture
def plaid_link(db, brokerage_account):
    return create_link(db, brokerage_account, "PlaidAccount")


@pytest.fixture
def simplefin_link(db, brokerage_account):
    return create_link(db, brokerage_account, "SimplefinAccount")


@pytest.fixture
def security(db):
    """Create a test security."""
    return get_or_create_security(db, "AAPL", "Apple Inc.")
