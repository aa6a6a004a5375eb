"""User operations on holdings: manual cost basis and security remapping."""

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from models import Entry, Holding, Security, Trade
from services.cost_basis_policy import MANUAL

logger = logging.getLogger(__name__)


class HoldingService:
    """Hand edits that provider syncs must respect afterwards."""

    @staticmethod
    def set_manual_cost_basis(db: Session, holding: Holding, value) -> Holding:
        """Set and lock a user-entered cost basis."""
        holding.cost_basis = Decimal(str(value))
        holding.cost_basis_source = MANUAL
        holding.cost_basis_locked = True
        db.flush()
        logger.info("Set manual cost basis on holding %s", holding.id)
        return holding

    @staticmethod
    def unlock_cost_basis(db: Session, holding: Holding) -> Holding:
        """Allow automated sources to update the cost basis again."""
        holding.cost_basis_locked = False
        db.flush()
        return holding

    @staticmethod
    def remap_security(db: Session, holding: Holding, new_security: Security) -> Holding:
        """Point every holding and trade of the account at ``new_security``.

        The provider-asserted security is remembered on each holding and the
        mapping is locked so later syncs keep it. When a holding would land
        in a slot the account already has for ``new_security``, the two are
        merged into the existing row.

        Returns:
            The holding that now carries the position for ``holding``'s slot.
        """
        old_security_id = holding.security_id
        if old_security_id == new_security.id:
            return holding

        affected = (
            db.query(Holding)
            .filter(
                Holding.account_id == holding.account_id,
                Holding.security_id == old_security_id,
            )
            .all()
        )

        result = holding
        for row in affected:
            target = (
                db.query(Holding)
                .filter_by(
                    account_id=row.account_id,
                    security_id=new_security.id,
                    date=row.date,
                    currency=row.currency,
                )
                .first()
            )
            if target is not None:
                target.qty = (target.qty or 0) + (row.qty or 0)
                target.amount = (target.amount or 0) + (row.amount or 0)
                if target.provider_security_id is None:
                    target.provider_security_id = row.provider_security_id or old_security_id
                target.security_locked = True
                if row is holding:
                    result = target
                db.delete(row)
                # Free the slot before the next row moves
                db.flush()
                continue

            if row.provider_security_id is None:
                row.provider_security_id = old_security_id
            row.security = new_security
            row.security_locked = True

        trades = (
            db.query(Trade)
            .join(Entry, Entry.id == Trade.entry_id)
            .filter(Entry.account_id == holding.account_id, Trade.security_id == old_security_id)
            .all()
        )
        for trade in trades:
            if trade.provider_security_id is None:
                trade.provider_security_id = old_security_id
            trade.security = new_security

        db.flush()
        logger.info(
            "Remapped %d holdings and %d trades on account %s to %s",
            len(affected), len(trades), holding.account_id, new_security.ticker,
        )
        return result

    @staticmethod
    def reset_security_to_provider(db: Session, holding: Holding) -> Holding:
        """Undo a remap: show the provider's security again and unlock it."""
        provider_security = holding.provider_security
        if provider_security is None:
            return holding
        remapped_security_id = holding.security_id

        remapped = (
            db.query(Holding)
            .filter(
                Holding.account_id == holding.account_id,
                Holding.security_id == remapped_security_id,
                Holding.provider_security_id == provider_security.id,
            )
            .all()
        )
        for row in remapped:
            row.security = provider_security
            row.security_locked = False

        # Only trades the remap moved; ones that always had this security stay
        trades = (
            db.query(Trade)
            .join(Entry, Entry.id == Trade.entry_id)
            .filter(
                Entry.account_id == holding.account_id,
                Trade.security_id == remapped_security_id,
                Trade.provider_security_id == provider_security.id,
            )
            .all()
        )
        for trade in trades:
            trade.security = provider_security
            trade.provider_security_id = None

        db.flush()
        logger.info(
            "Reset %d holdings and %d trades on account %s to provider security %s",
            len(remapped), len(trades), holding.account_id, provider_security.ticker,
        )
        return holding
