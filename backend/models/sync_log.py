"""SyncLogEntry model - records per-account results for each sync."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class SyncLogEntry(Base):
    """A log entry recording the result of reconciling one account batch.

    Each sync session has one log entry per account batch processed.
    """

    __tablename__ = "sync_log_entries"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    sync_session_id = Column(String(36), ForeignKey("sync_sessions.id"), nullable=False)
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    source = Column(String, nullable=False)
    status = Column(String, nullable=False)  # "success" | "failed"
    error_messages = Column(JSON, nullable=True)  # list[str]
    records_processed = Column(Integer, default=0)
    records_skipped = Column(Integer, default=0)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    sync_session = relationship("SyncSession", back_populates="sync_log_entries")
