"""Transfer service - manual pairing, rejection and confirmation of transfers."""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Account, RejectedTransfer, Transaction, Transfer
from services.category_service import CategoryService
from services.exceptions import InvalidTransferError

logger = logging.getLogger(__name__)

FUNDS_MOVEMENT = "funds_movement"
INVESTMENT_CONTRIBUTION = "investment_contribution"

_KIND_BY_DESTINATION_TYPE = {
    "loan": "loan_payment",
    "credit_card": "cc_payment",
    "investment": INVESTMENT_CONTRIBUTION,
    "crypto": INVESTMENT_CONTRIBUTION,
}


def kind_for_account(account: Account) -> str:
    """Outflow kind implied by the account the money arrives in."""
    return _KIND_BY_DESTINATION_TYPE.get(account.account_type, FUNDS_MOVEMENT)


class TransferService:
    """Operations on Transfer and RejectedTransfer rows."""

    @staticmethod
    def is_in_transfer(db: Session, transaction_id: str) -> bool:
        return (
            db.query(Transfer.id)
            .filter(
                (Transfer.inflow_transaction_id == transaction_id)
                | (Transfer.outflow_transaction_id == transaction_id)
            )
            .first()
            is not None
        )

    @staticmethod
    def apply_transfer_kinds(db: Session, inflow: Transaction, outflow: Transaction) -> None:
        """Classify both sides of a new transfer by the destination account."""
        destination = inflow.entry.account
        inflow.kind = FUNDS_MOVEMENT
        outflow.kind = kind_for_account(destination)
        if outflow.kind == INVESTMENT_CONTRIBUTION and outflow.category_id is None:
            category = CategoryService.investment_contributions_category(db, destination.family_id)
            outflow.category_id = category.id

    @staticmethod
    def create_transfer(
        db: Session,
        inflow: Transaction,
        outflow: Transaction,
        status: str = "confirmed",
        notes: str | None = None,
    ) -> Transfer:
        """Pair two transactions by hand.

        Raises:
            InvalidTransferError: If the pair cannot form a transfer.
        """
        inflow_entry, outflow_entry = inflow.entry, outflow.entry
        if inflow.id == outflow.id or inflow_entry.account_id == outflow_entry.account_id:
            raise InvalidTransferError("Transfer must be between two different accounts")
        if inflow_entry.account.family_id != outflow_entry.account.family_id:
            raise InvalidTransferError("Transfer accounts must belong to the same family")
        if inflow_entry.amount >= 0 or outflow_entry.amount <= 0:
            raise InvalidTransferError("Inflow must be negative and outflow positive")
        for transaction in (inflow, outflow):
            if TransferService.is_in_transfer(db, transaction.id):
                raise InvalidTransferError(
                    f"Transaction {transaction.id} is already part of a transfer"
                )

        transfer = Transfer(
            inflow_transaction_id=inflow.id,
            outflow_transaction_id=outflow.id,
            status=status,
            notes=notes,
        )
        try:
            with db.begin_nested():
                db.add(transfer)
                db.flush()
        except IntegrityError as e:
            raise InvalidTransferError("One of the transactions is already part of a transfer") from e

        TransferService.apply_transfer_kinds(db, inflow, outflow)
        db.flush()
        logger.info("Created transfer %s (%s -> %s)", transfer.id, outflow.id, inflow.id)
        return transfer

    @staticmethod
    def confirm_transfer(db: Session, transfer: Transfer) -> Transfer:
        transfer.status = "confirmed"
        db.flush()
        return transfer

    @staticmethod
    def reject_transfer(db: Session, transfer: Transfer) -> RejectedTransfer:
        """Undo a pairing and make sure auto-matching never proposes it again."""
        inflow, outflow = transfer.inflow_transaction, transfer.outflow_transaction
        rejected = (
            db.query(RejectedTransfer)
            .filter_by(inflow_transaction_id=inflow.id, outflow_transaction_id=outflow.id)
            .first()
        )
        if rejected is None:
            rejected = RejectedTransfer(
                inflow_transaction_id=inflow.id, outflow_transaction_id=outflow.id
            )
            db.add(rejected)

        inflow.kind = "standard"
        outflow.kind = "standard"
        db.delete(transfer)
        db.flush()
        logger.info("Rejected transfer between %s and %s", outflow.id, inflow.id)
        return rejected
