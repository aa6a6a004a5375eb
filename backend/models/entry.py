"""Entry model - one economic event on one account."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow
from services.exceptions import EntryTypeCollisionError

TRANSACTION = "Transaction"
TRADE = "Trade"
VALUATION = "Valuation"


class Entry(Base):
    """A canonical ledger row.

    The economic payload lives in exactly one of the ``transactions``,
    ``trades`` or ``valuations`` tables; ``entryable_type`` says which.
    ``(account_id, source, external_id)`` is the idempotency key for
    provider syncs (SQL NULLs never collide, so manual rows are exempt).
    """

    __tablename__ = "entries"
    __table_args__ = (
        UniqueConstraint(
            "account_id", "source", "external_id",
            name="uix_entry_account_source_external",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    entryable_type = Column(String, nullable=False)
    date = Column(Date, nullable=False, index=True)
    amount = Column(Numeric(19, 4), nullable=False)
    currency = Column(String(3), nullable=False)
    name = Column(String, nullable=False)
    notes = Column(Text, nullable=True)

    # Provider correlation key
    external_id = Column(String, nullable=True)
    source = Column(String, nullable=True)  # e.g., "plaid", "simplefin"

    # Protection flags (see services.sync_protection)
    excluded = Column(Boolean, nullable=False, default=False)
    user_modified = Column(Boolean, nullable=False, default=False)
    import_locked = Column(Boolean, nullable=False, default=False)

    # attribute -> {"value": ..., "source": ..., "locked": bool}
    attribute_provenance = Column(JSON, nullable=False, default=lambda: {})

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    account = relationship("Account", back_populates="entries")
    transaction = relationship(
        "Transaction", uselist=False, back_populates="entry", cascade="all, delete-orphan"
    )
    trade = relationship(
        "Trade", uselist=False, back_populates="entry", cascade="all, delete-orphan"
    )
    valuation = relationship(
        "Valuation", uselist=False, back_populates="entry", cascade="all, delete-orphan"
    )

    @property
    def entryable(self):
        """The payload row selected by ``entryable_type``."""
        if self.entryable_type == TRANSACTION:
            return self.transaction
        if self.entryable_type == TRADE:
            return self.trade
        if self.entryable_type == VALUATION:
            return self.valuation
        return None

    def payload_as(self, expected_type: str):
        """Return the payload, refusing to reinterpret it as another kind.

        Raises:
            EntryTypeCollisionError: If the entry holds a different payload type.
        """
        if self.entryable_type != expected_type:
            raise EntryTypeCollisionError(
                external_id=self.external_id,
                existing_type=self.entryable_type,
                expected_type=expected_type,
            )
        return self.entryable
