"""Family model - the household that owns accounts, categories and merchants."""

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class Family(Base):
    """A household. Every ledger row ultimately belongs to exactly one family."""

    __tablename__ = "families"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    accounts = relationship("Account", back_populates="family")
    categories = relationship("Category", back_populates="family")


class Category(Base):
    """A user-visible transaction category, scoped to a family."""

    __tablename__ = "categories"
    __table_args__ = (
        UniqueConstraint("family_id", "name", name="uix_category_family_name"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    family_id = Column(
        String(36), ForeignKey("families.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    family = relationship("Family", back_populates="categories")


class Merchant(Base):
    """A merchant, either family-defined or asserted by a provider.

    Provider merchants are identified by ``(source, provider_merchant_id)``.
    """

    __tablename__ = "merchants"
    __table_args__ = (
        UniqueConstraint(
            "source", "provider_merchant_id", name="uix_merchant_source_provider_id"
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    family_id = Column(String(36), ForeignKey("families.id", ondelete="CASCADE"), nullable=True)
    name = Column(String, nullable=False)
    source = Column(String, nullable=True)  # e.g., "plaid"; None for family merchants
    provider_merchant_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
