"""Transaction, Trade and Valuation models - the payloads of an Entry."""

from sqlalchemy import JSON, Column, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid

TRANSACTION_KINDS = (
    "standard",
    "funds_movement",
    "cc_payment",
    "loan_payment",
    "one_time",
    "investment_contribution",
)

# Kinds where money moves between two accounts of the family
TRANSFER_KINDS = ("funds_movement", "cc_payment", "loan_payment", "investment_contribution")

ACTIVITY_LABELS = (
    "Buy", "Sell", "Sweep In", "Sweep Out", "Dividend", "Reinvestment",
    "Interest", "Fee", "Transfer", "Contribution", "Withdrawal", "Exchange", "Other",
)

# Automatic cash management inside an investment account
INTERNAL_MOVEMENT_LABELS = ("Transfer", "Sweep In", "Sweep Out", "Exchange")

POTENTIAL_MATCH_KEY = "potential_posted_match"


def cast_bool(value) -> bool:
    """Interpret provider flag values ("true", 1, True, ...) as a bool."""
    if isinstance(value, str):
        return value.strip().lower() in ("true", "t", "1", "yes", "y")
    return bool(value)


class Transaction(Base):
    """Cash transaction payload.

    ``extra`` is a JSON bag keyed by provider name, e.g.
    ``{"plaid": {"pending": true}}``. The pending/posted lifecycle lives
    there because every provider reports it differently.
    """

    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    entry_id = Column(
        String(36), ForeignKey("entries.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    category_id = Column(String(36), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    merchant_id = Column(String(36), ForeignKey("merchants.id", ondelete="SET NULL"), nullable=True)
    kind = Column(String, nullable=False, default="standard")
    investment_activity_label = Column(String, nullable=True)
    extra = Column(JSON, nullable=False, default=lambda: {})
    attribute_provenance = Column(JSON, nullable=False, default=lambda: {})

    # Relationships
    entry = relationship("Entry", back_populates="transaction")
    category = relationship("Category")
    merchant = relationship("Merchant")

    @property
    def is_transfer(self) -> bool:
        return self.kind in TRANSFER_KINDS

    def is_pending_for(self, source: str) -> bool:
        """Whether ``source`` currently reports this transaction as pending."""
        block = (self.extra or {}).get(source)
        return isinstance(block, dict) and cast_bool(block.get("pending"))

    @property
    def is_pending(self) -> bool:
        """Whether any provider currently reports this transaction as pending."""
        return any(
            isinstance(block, dict) and cast_bool(block.get("pending"))
            for block in (self.extra or {}).values()
        )

    @property
    def potential_posted_match(self) -> dict | None:
        return (self.extra or {}).get(POTENTIAL_MATCH_KEY)


class Trade(Base):
    """Buy/sell payload. Quantity is signed: negative for sells."""

    __tablename__ = "trades"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    entry_id = Column(
        String(36), ForeignKey("entries.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    security_id = Column(
        String(36), ForeignKey("securities.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    # Set while a user remap points the trade away from the imported security
    provider_security_id = Column(
        String(36), ForeignKey("securities.id", ondelete="SET NULL"), nullable=True
    )
    qty = Column(Numeric(24, 8), nullable=False)
    price = Column(Numeric(19, 4), nullable=False)
    currency = Column(String(3), nullable=False)
    investment_activity_label = Column(String, nullable=True)

    # Relationships
    entry = relationship("Entry", back_populates="trade")
    security = relationship("Security", foreign_keys=[security_id])
    provider_security = relationship("Security", foreign_keys=[provider_security_id])


class Valuation(Base):
    """Balance anchor payload (the entry amount is the account value)."""

    __tablename__ = "valuations"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    entry_id = Column(
        String(36), ForeignKey("entries.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    kind = Column(String, nullable=False, default="reconciliation")

    # Relationships
    entry = relationship("Entry", back_populates="valuation")
