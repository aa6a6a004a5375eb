"""ExchangeRate model - daily FX rates used by transfer matching."""

from sqlalchemy import Column, Date, Numeric, String, UniqueConstraint

from database import Base
from models.utils import generate_uuid


class ExchangeRate(Base):
    """Rate to convert one unit of ``from_currency`` into ``to_currency`` on ``date``."""

    __tablename__ = "exchange_rates"
    __table_args__ = (
        UniqueConstraint(
            "from_currency", "to_currency", "date", name="uix_exchange_rate_pair_date"
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    from_currency = Column(String(3), nullable=False)
    to_currency = Column(String(3), nullable=False)
    date = Column(Date, nullable=False)
    rate = Column(Numeric(18, 8), nullable=False)
