"""Transfer and RejectedTransfer models."""

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class Transfer(Base):
    """A pairing of one inflow and one outflow transaction across two accounts.

    Inflow amounts are negative (money arriving), outflow amounts positive.
    Each transaction can sit on at most one side of one transfer.
    """

    __tablename__ = "transfers"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    inflow_transaction_id = Column(
        String(36), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    outflow_transaction_id = Column(
        String(36), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    status = Column(String, nullable=False, default="pending")  # pending | confirmed
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    inflow_transaction = relationship("Transaction", foreign_keys=[inflow_transaction_id])
    outflow_transaction = relationship("Transaction", foreign_keys=[outflow_transaction_id])


class RejectedTransfer(Base):
    """A pair the user declined; auto-matching never proposes it again."""

    __tablename__ = "rejected_transfers"
    __table_args__ = (
        UniqueConstraint(
            "inflow_transaction_id", "outflow_transaction_id",
            name="uix_rejected_transfer_pair",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    inflow_transaction_id = Column(
        String(36), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )
    outflow_transaction_id = Column(
        String(36), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )
    created_at = Column(DateTime, default=utcnow)
