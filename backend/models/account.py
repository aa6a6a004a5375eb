"""Account and AccountProvider models."""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow

INVESTMENT_ACCOUNT_TYPES = frozenset({"investment", "crypto"})
VISIBLE_STATUSES = ("draft", "active")

# Type-specific details a provider may report, keyed by account_type
ACCOUNT_DETAIL_ATTRIBUTES = {
    "credit_card": ("available_credit", "minimum_payment", "apr", "annual_fee", "expiration_date"),
    "loan": ("interest_rate", "rate_type", "term_months", "initial_balance"),
    "investment": ("subtype",),
    "crypto": ("subtype",),
    "depository": ("subtype",),
}


class Account(Base):
    """A canonical ledger account belonging to a family.

    An account may be fed by several provider connections at once, each
    represented by one AccountProvider row.
    """

    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    family_id = Column(
        String(36), ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String, nullable=False)
    # depository | credit_card | loan | investment | crypto | property | other_asset | other_liability
    account_type = Column(String, nullable=False, default="depository")
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(String, nullable=False, default="active")  # draft | active | disabled | pending_deletion
    balance = Column(Numeric(19, 4), nullable=True)
    cash_balance = Column(Numeric(19, 4), nullable=True)
    details = Column(JSON, nullable=False, default=lambda: {})
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    family = relationship("Family", back_populates="accounts")
    account_providers = relationship(
        "AccountProvider", back_populates="account", cascade="all, delete-orphan"
    )
    entries = relationship("Entry", back_populates="account", cascade="all, delete-orphan")
    holdings = relationship("Holding", back_populates="account", cascade="all, delete-orphan")

    @property
    def is_investment(self) -> bool:
        """True for brokerage and crypto accounts."""
        return self.account_type in INVESTMENT_ACCOUNT_TYPES

    @property
    def is_visible(self) -> bool:
        return self.status in VISIBLE_STATUSES

    @property
    def can_delete_holdings(self) -> bool:
        """Whether every linked provider allows pruning of holdings.

        A single provider that does not allow deletion locks the whole
        account, since pruning is keyed by security and would otherwise
        reach positions another provider still reports.
        """
        return all(link.allows_holdings_deletion for link in self.account_providers)


class AccountProvider(Base):
    """Link between an Account and one provider connection.

    ``provider_type`` is the discriminator (e.g., "PlaidAccount",
    "SimplefinAccount"); an account has at most one link per type.
    """

    __tablename__ = "account_providers"
    __table_args__ = (
        UniqueConstraint("account_id", "provider_type", name="uix_account_provider_type"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider_type = Column(String, nullable=False)
    provider_account_id = Column(String, nullable=False)  # Provider's external account ID
    allows_holdings_deletion = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    account = relationship("Account", back_populates="account_providers")
