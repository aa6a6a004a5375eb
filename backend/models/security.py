"""Security model - master ticker list."""

from sqlalchemy import Column, DateTime, String, UniqueConstraint

from database import Base
from models.utils import generate_uuid, utcnow


class Security(Base):
    """A security/ticker in the master list.

    The same ticker may exist more than once when listed on different
    exchanges, so uniqueness is on ``(ticker, exchange_operating_mic)``.
    """

    __tablename__ = "securities"
    __table_args__ = (
        UniqueConstraint("ticker", "exchange_operating_mic", name="uix_security_ticker_mic"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    ticker = Column(String, nullable=False, index=True)
    name = Column(String, nullable=True)  # Company/fund name
    exchange_operating_mic = Column(String, nullable=True)  # e.g., "XNAS"
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
