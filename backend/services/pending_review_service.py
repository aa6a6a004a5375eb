"""User-facing review of pending/posted duplicate suggestions."""

import logging
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from config import settings
from models import Account, Entry, Transaction
from models.entry import TRANSACTION
from models.transaction import POTENTIAL_MATCH_KEY
from services.entry_reconciler import normalize_merchant_name

logger = logging.getLogger(__name__)


class PendingReviewService:
    """Operations on ``Transaction.extra["potential_posted_match"]``."""

    @staticmethod
    def has_potential_duplicate(entry: Entry) -> bool:
        transaction = entry.transaction
        return (
            transaction is not None
            and transaction.is_pending
            and transaction.potential_posted_match is not None
            and not transaction.potential_posted_match.get("dismissed")
        )

    @staticmethod
    def potential_duplicate_entry(db: Session, entry: Entry) -> Entry | None:
        """The posted entry suggested for this pending entry, if it still exists."""
        if not PendingReviewService.has_potential_duplicate(entry):
            return None
        posted_id = entry.transaction.potential_posted_match.get("entry_id")
        return db.get(Entry, posted_id) if posted_id else None

    @staticmethod
    def clear_duplicate_suggestion(db: Session, entry: Entry) -> None:
        transaction = entry.transaction
        if transaction is None or POTENTIAL_MATCH_KEY not in (transaction.extra or {}):
            return
        extra = dict(transaction.extra)
        extra.pop(POTENTIAL_MATCH_KEY)
        transaction.extra = extra
        db.flush()

    @staticmethod
    def dismiss_duplicate_suggestion(db: Session, entry: Entry) -> None:
        """Reject the suggestion but keep it, flagged, so it is not offered again."""
        suggestion = entry.transaction.potential_posted_match if entry.transaction else None
        if not suggestion:
            return
        entry.transaction.extra = {
            **entry.transaction.extra,
            POTENTIAL_MATCH_KEY: {**suggestion, "dismissed": True},
        }
        db.flush()
        logger.info("Dismissed posted match suggestion for entry %s", entry.id)

    @staticmethod
    def merge_with_duplicate(db: Session, entry: Entry) -> Entry | None:
        """Accept the suggestion: the posted entry survives, the pending one is deleted.

        Returns:
            The surviving posted entry, or None if there was nothing to merge.
        """
        posted = PendingReviewService.potential_duplicate_entry(db, entry)
        if posted is None:
            PendingReviewService.clear_duplicate_suggestion(db, entry)
            return None

        logger.info("Merging pending entry %s into posted entry %s", entry.id, posted.id)
        db.delete(entry)
        db.flush()
        return posted

    @staticmethod
    def auto_exclude_stale_pending(
        db: Session, account: Account, days: int | None = None, today: date | None = None
    ) -> int:
        """Exclude entries that have been pending for longer than ``days``.

        Providers occasionally drop a pending authorization without ever
        posting it; left alone it would distort balances forever.

        Returns:
            Number of entries excluded.
        """
        days = settings.STALE_PENDING_DAYS if days is None else days
        cutoff = (today or date.today()) - timedelta(days=days)
        entries = (
            db.query(Entry)
            .join(Transaction, Transaction.entry_id == Entry.id)
            .filter(
                Entry.account_id == account.id,
                Entry.entryable_type == TRANSACTION,
                Entry.excluded.is_(False),
                Entry.date < cutoff,
            )
            .all()
        )

        count = 0
        for entry in entries:
            if entry.transaction.is_pending:
                entry.excluded = True
                count += 1
        if count:
            db.flush()
            logger.info("Auto-excluded %d stale pending entries on account %s", count, account.id)
        return count

    @staticmethod
    def reconcile_pending_duplicates(
        db: Session,
        account: Account | None = None,
        dry_run: bool = False,
        date_window: int | None = None,
        amount_tolerance: float | None = None,
    ) -> dict:
        """Resolve pending entries whose posted form was imported separately.

        A pending entry is excluded when exactly one posted entry of the
        same account has the same amount and currency and is dated on or up
        to ``date_window`` days after it. Failing that, a single posted
        entry up to ``amount_tolerance`` larger, within the fuzzy window and
        with the same leading name words, is stored as a suggestion. More
        than one candidate is ambiguous and left alone.

        Args:
            account: Limit the pass to one account; None checks every account.
            dry_run: Report what would change without writing anything.

        Returns:
            ``{"checked", "reconciled", "suggested", "details"}`` where
            ``details`` lists one dict per match found.
        """
        date_window = settings.PENDING_MATCH_WINDOW_DAYS if date_window is None else date_window
        tolerance = Decimal(str(
            settings.PENDING_CLEANUP_AMOUNT_TOLERANCE if amount_tolerance is None else amount_tolerance
        ))
        stats = {"checked": 0, "reconciled": 0, "suggested": 0, "details": []}

        query = (
            db.query(Entry)
            .join(Transaction, Transaction.entry_id == Entry.id)
            .filter(Entry.entryable_type == TRANSACTION, Entry.excluded.is_(False))
            .order_by(Entry.date.asc(), Entry.created_at.asc())
        )
        if account is not None:
            query = query.filter(Entry.account_id == account.id)
        pending_entries = [e for e in query.all() if e.transaction.is_pending]

        for pending_entry in pending_entries:
            stats["checked"] += 1
            pending_amount = Decimal(str(pending_entry.amount))

            exact = [
                e
                for e in PendingReviewService._posted_candidates(db, pending_entry, date_window)
                if Decimal(str(e.amount)) == pending_amount
            ]
            if len(exact) == 1:
                stats["reconciled"] += 1
                stats["details"].append(_match_detail(pending_entry, exact[0], "exact"))
                if not dry_run:
                    pending_entry.excluded = True
                    logger.info(
                        "Excluded pending entry %s, posted as entry %s", pending_entry.id, exact[0].id
                    )
                continue
            if exact:
                logger.info(
                    "Skipping pending entry %s: %d posted entries with the same amount",
                    pending_entry.id, len(exact),
                )
                continue

            name_words = normalize_merchant_name(pending_entry.name)
            if not name_words or pending_amount == 0:
                continue
            low, high = abs(pending_amount), abs(pending_amount) * (1 + tolerance)
            fuzzy = [
                e
                for e in PendingReviewService._posted_candidates(
                    db, pending_entry, settings.FUZZY_MATCH_WINDOW_DAYS
                )
                if (Decimal(str(e.amount)) > 0) == (pending_amount > 0)
                and low <= abs(Decimal(str(e.amount))) <= high
                and normalize_merchant_name(e.name) == name_words
            ]
            if len(fuzzy) > 1:
                logger.info(
                    "Skipping fuzzy match for pending entry %s: %d ambiguous candidates",
                    pending_entry.id, len(fuzzy),
                )
                continue
            if not fuzzy:
                continue

            posted = fuzzy[0]
            stats["suggested"] += 1
            stats["details"].append(_match_detail(pending_entry, posted, "fuzzy_suggestion"))
            transaction = pending_entry.transaction
            if not dry_run and not transaction.potential_posted_match:
                transaction.extra = {
                    **(transaction.extra or {}),
                    POTENTIAL_MATCH_KEY: {
                        "entry_id": posted.id,
                        "reason": "fuzzy_amount_match",
                        "posted_amount": str(Decimal(str(posted.amount))),
                        "detected_at": date.today().isoformat(),
                    },
                }
                logger.info(
                    "Stored posted match suggestion %s for pending entry %s",
                    posted.id, pending_entry.id,
                )

        if not dry_run:
            db.flush()
        logger.info(
            "Pending cleanup%s: checked %d, reconciled %d, suggested %d",
            " (dry run)" if dry_run else "",
            stats["checked"], stats["reconciled"], stats["suggested"],
        )
        return stats

    @staticmethod
    def _posted_candidates(db: Session, pending_entry: Entry, window: int) -> list[Entry]:
        """Posted entries of the same account dated on or after the pending one."""
        entries = (
            db.query(Entry)
            .join(Transaction, Transaction.entry_id == Entry.id)
            .filter(
                Entry.account_id == pending_entry.account_id,
                Entry.entryable_type == TRANSACTION,
                Entry.id != pending_entry.id,
                Entry.excluded.is_(False),
                Entry.currency == pending_entry.currency,
                Entry.date >= pending_entry.date,
                Entry.date <= pending_entry.date + timedelta(days=window),
            )
            .order_by(Entry.date.asc(), Entry.created_at.asc())
            .all()
        )
        return [e for e in entries if not e.transaction.is_pending]


def _match_detail(pending_entry: Entry, posted: Entry, match_type: str) -> dict:
    return {
        "pending_id": pending_entry.id,
        "pending_name": pending_entry.name,
        "pending_amount": str(pending_entry.amount),
        "pending_date": pending_entry.date.isoformat(),
        "posted_id": posted.id,
        "posted_name": posted.name,
        "posted_amount": str(posted.amount),
        "posted_date": posted.date.isoformat(),
        "account_id": pending_entry.account_id,
        "match_type": match_type,
    }
