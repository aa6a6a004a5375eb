"""SyncSession model - one reconciliation run for a family."""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class SyncSession(Base):
    """A sync session representing a point-in-time reconciliation run."""

    __tablename__ = "sync_sessions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    family_id = Column(String(36), ForeignKey("families.id", ondelete="CASCADE"), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utcnow)
    is_complete = Column(Boolean, default=False)
    error_message = Column(Text, nullable=True)
    stats = Column(JSON, nullable=True)  # ImportReport.summary() for the whole run
    transfers_matched = Column(Integer, default=0)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    sync_log_entries = relationship("SyncLogEntry", back_populates="sync_session")
