"""Service for managing Security records."""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from models import Security

logger = logging.getLogger(__name__)


class SecurityService:
    """Centralized operations on the Security master list."""

    @staticmethod
    def ensure_exists(
        db: Session,
        ticker: str,
        name: Optional[str] = None,
        exchange_operating_mic: Optional[str] = None,
    ) -> Security:
        """Ensure a Security record exists for ``(ticker, exchange_operating_mic)``.

        Creates the record if it doesn't exist. An existing record only has
        its name filled in when it has none.

        Args:
            db: Database session
            ticker: The security ticker symbol
            name: Optional security name
            exchange_operating_mic: Optional listing exchange (e.g., "XNAS")

        Returns:
            The Security record (flushed but not committed)
        """
        ticker = ticker.strip().upper()
        security = (
            db.query(Security)
            .filter_by(ticker=ticker, exchange_operating_mic=exchange_operating_mic)
            .first()
        )

        if not security:
            security = Security(
                ticker=ticker,
                name=name or ticker,
                exchange_operating_mic=exchange_operating_mic,
            )
            db.add(security)
            db.flush()
            logger.info("Created security: %s (%s)", ticker, exchange_operating_mic or "no MIC")
        elif name and not security.name:
            security.name = name
            db.flush()
            logger.info("Filled missing security name: %s -> %s", ticker, name)

        return security
