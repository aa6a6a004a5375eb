"""Holding model - a dated position snapshot for one security in one account."""

from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow

# Cost basis source priority (higher = takes precedence)
COST_BASIS_SOURCE_PRIORITY = {
    None: 0,
    "calculated": 1,
    "provider": 2,
    "manual": 3,
}


class Holding(Base):
    """A position snapshot.

    ``security`` is what the ledger shows; ``provider_security`` remembers
    what the provider asserted so a user remap can always be undone.
    """

    __tablename__ = "holdings"
    __table_args__ = (
        UniqueConstraint(
            "account_id", "security_id", "date", "currency",
            name="uix_holding_account_security_date_currency",
        ),
        UniqueConstraint("account_id", "external_id", name="uix_holding_account_external"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    security_id = Column(
        String(36), ForeignKey("securities.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    provider_security_id = Column(
        String(36), ForeignKey("securities.id", ondelete="SET NULL"), nullable=True
    )
    security_locked = Column(Boolean, nullable=False, default=False)
    date = Column(Date, nullable=False)
    currency = Column(String(3), nullable=False)
    qty = Column(Numeric(24, 8), nullable=False, default=Decimal("0"))
    price = Column(Numeric(19, 4), nullable=False, default=Decimal("0"))
    amount = Column(Numeric(19, 4), nullable=False, default=Decimal("0"))
    cost_basis = Column(Numeric(19, 4), nullable=True)
    cost_basis_source = Column(String, nullable=True)  # manual | provider | calculated
    cost_basis_locked = Column(Boolean, nullable=False, default=False)
    external_id = Column(String, nullable=True)
    account_provider_id = Column(
        String(36), ForeignKey("account_providers.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    account = relationship("Account", back_populates="holdings")
    security = relationship("Security", foreign_keys=[security_id])
    provider_security = relationship("Security", foreign_keys=[provider_security_id])
    account_provider = relationship("AccountProvider")

    @property
    def security_replaceable_by_provider(self) -> bool:
        """False once the user has remapped (and thereby locked) the security."""
        return not self.security_locked

    @property
    def security_remapped(self) -> bool:
        return (
            self.provider_security_id is not None
            and self.provider_security_id != self.security_id
        )
