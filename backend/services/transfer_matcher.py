"""Transfer auto-matcher - pairs inflows and outflows across a family's accounts.

Runs once per family after every account of a sync has been reconciled.
Candidates are accepted greedily, closest dates first, and each transaction
ends up in at most one transfer.
"""

import bisect
import logging
import threading
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from models import Account, Entry, ExchangeRate, Family, RejectedTransfer, Transaction, Transfer
from models.account import VISIBLE_STATUSES
from models.entry import TRANSACTION
from services.exceptions import TransferMatchInProgressError
from services.transfer_service import TransferService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferCandidate:
    inflow_transaction_id: str
    outflow_transaction_id: str
    date_diff: int


class TransferMatcher:
    """Finds and records transfers for one family.

    Matching reads candidates and then writes transfers, so two runs for
    the same family must not overlap. Runs for different families are
    independent.
    """

    # Families with a run in progress, shared by every matcher in the process.
    # Ids are removed when their run ends. A multi-process deployment needs
    # an external lock per family instead.
    _running_families: set[str] = set()
    _running_guard = threading.Lock()

    def __init__(
        self,
        db: Session,
        family: Family,
        date_window: int | None = None,
        fx_tolerance: float | None = None,
    ):
        self.db = db
        self.family = family
        self.date_window = (
            settings.TRANSFER_MATCH_DATE_WINDOW_DAYS if date_window is None else date_window
        )
        self.fx_tolerance = Decimal(
            str(settings.TRANSFER_MATCH_FX_TOLERANCE if fx_tolerance is None else fx_tolerance)
        )
        self._rates: dict[tuple[str, str, date], Decimal | None] = {}

    @classmethod
    def _claim(cls, family_id: str) -> bool:
        """Mark a run for ``family_id`` as started; False if one already is."""
        with cls._running_guard:
            if family_id in cls._running_families:
                return False
            cls._running_families.add(family_id)
            return True

    @classmethod
    def _release(cls, family_id: str) -> None:
        with cls._running_guard:
            cls._running_families.discard(family_id)

    @classmethod
    def is_matching_in_progress(cls, family_id: str) -> bool:
        with cls._running_guard:
            return family_id in cls._running_families

    # -- candidates --------------------------------------------------------

    def _family_entries(self) -> list[Entry]:
        return (
            self.db.query(Entry)
            .join(Account, Account.id == Entry.account_id)
            .join(Transaction, Transaction.entry_id == Entry.id)
            .filter(
                Account.family_id == self.family.id,
                Account.status.in_(VISIBLE_STATUSES),
                Entry.entryable_type == TRANSACTION,
            )
            .all()
        )

    def _transferred_ids(self) -> set[str]:
        ids = set()
        for inflow_id, outflow_id in self.db.query(
            Transfer.inflow_transaction_id, Transfer.outflow_transaction_id
        ).all():
            ids.add(inflow_id)
            ids.add(outflow_id)
        return ids

    def _rejected_pairs(self) -> set[tuple[str, str]]:
        return set(
            self.db.query(
                RejectedTransfer.inflow_transaction_id, RejectedTransfer.outflow_transaction_id
            ).all()
        )

    def _rate(self, from_currency: str, to_currency: str, on: date) -> Decimal | None:
        key = (from_currency, to_currency, on)
        if key not in self._rates:
            row = (
                self.db.query(ExchangeRate)
                .filter_by(from_currency=from_currency, to_currency=to_currency, date=on)
                .first()
            )
            self._rates[key] = Decimal(str(row.rate)) if row is not None else None
        return self._rates[key]

    def _amounts_match(self, inflow: Entry, outflow: Entry) -> bool:
        inflow_amount = Decimal(str(inflow.amount))
        outflow_amount = Decimal(str(outflow.amount))
        if inflow.currency == outflow.currency:
            return inflow_amount == -outflow_amount

        rate = self._rate(outflow.currency, inflow.currency, outflow.date)
        if rate is None or rate == 0:
            return False
        ratio = abs(inflow_amount / (outflow_amount * rate))
        return 1 - self.fx_tolerance <= ratio <= 1 + self.fx_tolerance

    def candidates(self) -> list[TransferCandidate]:
        """All eligible pairs, closest dates first."""
        transferred = self._transferred_ids()
        rejected = self._rejected_pairs()

        inflows, outflows = [], []
        for entry in self._family_entries():
            if entry.excluded or entry.transaction.id in transferred:
                continue
            if entry.amount < 0:
                inflows.append(entry)
            elif entry.amount > 0:
                outflows.append(entry)

        outflows.sort(key=lambda e: (e.date, e.id))
        outflow_dates = [e.date.toordinal() for e in outflows]

        found = []
        for inflow in inflows:
            day = inflow.date.toordinal()
            lo = bisect.bisect_left(outflow_dates, day - self.date_window)
            hi = bisect.bisect_right(outflow_dates, day + self.date_window)
            for outflow in outflows[lo:hi]:
                if outflow.account_id == inflow.account_id:
                    continue
                pair = (inflow.transaction.id, outflow.transaction.id)
                if pair in rejected:
                    continue
                if not self._amounts_match(inflow, outflow):
                    continue
                date_diff = abs(inflow.date - outflow.date).days
                found.append(
                    ((date_diff, inflow.date, inflow.id, outflow.id), TransferCandidate(*pair, date_diff))
                )

        found.sort(key=lambda row: row[0])
        return [candidate for _, candidate in found]

    # -- matching ----------------------------------------------------------

    def auto_match(self) -> list[Transfer]:
        """Create transfers for the best non-overlapping candidates.

        Raises:
            TransferMatchInProgressError: If a run for this family is active.
        """
        if not self._claim(self.family.id):
            raise TransferMatchInProgressError(self.family.id)

        try:
            return self._auto_match()
        finally:
            self._release(self.family.id)

    def _auto_match(self) -> list[Transfer]:
        used: set[str] = set()
        created = []

        for candidate in self.candidates():
            inflow_id = candidate.inflow_transaction_id
            outflow_id = candidate.outflow_transaction_id
            if inflow_id in used or outflow_id in used:
                continue
            used.add(inflow_id)
            used.add(outflow_id)

            transfer = Transfer(inflow_transaction_id=inflow_id, outflow_transaction_id=outflow_id)
            try:
                with self.db.begin_nested():
                    self.db.add(transfer)
                    self.db.flush()
            except IntegrityError:
                logger.info(
                    "Transfer for %s -> %s already created concurrently", outflow_id, inflow_id
                )
                continue

            inflow = self.db.get(Transaction, inflow_id)
            outflow = self.db.get(Transaction, outflow_id)
            TransferService.apply_transfer_kinds(self.db, inflow, outflow)
            created.append(transfer)
            logger.info(
                "Matched transfer %s -> %s (date diff %d)", outflow_id, inflow_id, candidate.date_diff
            )

        self.db.flush()
        if created:
            logger.info("Auto-matched %d transfers for family %s", len(created), self.family.id)
        return created
