"""Entry reconciler - imports provider transactions into the ledger.

For every inbound transaction the reconciler decides whether it updates
the entry already keyed by ``(account, source, external_id)``, claims a
manual/CSV entry, resolves a pending entry into its posted form, or creates
a new row. Near-miss pending/posted pairs are only ever suggested to the
user, never merged automatically.
"""

import logging
import re
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from models import Account, Entry, Merchant, Transaction
from models.entry import TRANSACTION
from models.transaction import INTERNAL_MOVEMENT_LABELS, POTENTIAL_MATCH_KEY, cast_bool
from services.activity_labeler import infer_activity_label
from services.category_service import CategoryService
from services.enrichment import AUTO_SOURCE, deep_merge, enrich_attribute, is_locked
from services.exceptions import MissingCorrelationKeyError
from services.import_report import (
    AMBIGUOUS,
    CLAIMED,
    PENDING_LINKED,
    SUGGESTED,
    ImportReport,
)
from services.sync_protection import protection_reason

logger = logging.getLogger(__name__)

MEDIUM_CONFIDENCE = "medium"
LOW_CONFIDENCE = "low"


def _to_decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def normalize_merchant_name(name: str | None) -> str:
    """First three words, lowercased, punctuation stripped."""
    words = re.sub(r"[^a-z0-9\s]", " ", (name or "").lower()).split()
    return " ".join(words[:3])


class EntryReconciler:
    """Reconciles provider transactions for a single account.

    Usage:
        reconciler = EntryReconciler(db, account)
        entry = reconciler.reconcile(external_id="tx_1", source="plaid", ...)
        reconciler.report.summary()
    """

    def __init__(self, db: Session, account: Account, report: ImportReport | None = None):
        self.db = db
        self.account = account
        self.report = report if report is not None else ImportReport()

    def reconcile(
        self,
        external_id: str,
        source: str,
        amount,
        currency: str,
        date: date,
        name: str,
        category_id: str | None = None,
        merchant_id: str | None = None,
        notes: str | None = None,
        pending_link_id: str | None = None,
        extra: dict | None = None,
        pending: bool = False,
        activity_label: str | None = None,
    ) -> Entry:
        """Import one transaction and return the resulting ledger entry.

        Safe to call repeatedly with the same record. Protected entries are
        returned untouched apart from their provider metadata, and a skip
        is recorded on ``self.report``.

        Raises:
            MissingCorrelationKeyError: If external_id or source is blank.
            EntryTypeCollisionError: If the key belongs to a non-transaction entry.
        """
        if not external_id:
            raise MissingCorrelationKeyError("external_id")
        if not source:
            raise MissingCorrelationKeyError("source")

        kwargs = dict(
            external_id=external_id,
            source=source,
            amount=_to_decimal(amount),
            currency=currency,
            date=date,
            name=name,
            category_id=category_id,
            merchant_id=merchant_id,
            notes=notes,
            pending_link_id=pending_link_id,
            extra=extra,
            pending=pending,
            activity_label=activity_label,
        )
        try:
            return self._reconcile_in_savepoint(**kwargs)
        except IntegrityError:
            # Another writer created the same key first; adopt its row
            logger.info(
                "Concurrent insert for %s/%s on account %s, retrying",
                source, external_id, self.account.id,
            )
            return self._reconcile_in_savepoint(**kwargs)

    def _reconcile_in_savepoint(self, **kwargs) -> Entry:
        events = ImportReport()
        with self.db.begin_nested():
            entry = self._reconcile(events, **kwargs)
            self.db.flush()
        self.report.extend(events)
        return entry

    def _reconcile(
        self,
        events: ImportReport,
        *,
        external_id,
        source,
        amount,
        currency,
        date,
        name,
        category_id,
        merchant_id,
        notes,
        pending_link_id,
        extra,
        pending,
        activity_label,
    ) -> Entry:
        source_block = (extra or {}).get(source) or {}
        incoming_pending = bool(pending) or cast_bool(source_block.get("pending"))
        incoming_extra = deep_merge(extra, {source: {"pending": incoming_pending}})

        entry = self.find_by_key(external_id, source)
        created = False

        if entry is not None:
            transaction = entry.payload_as(TRANSACTION)
            reason = protection_reason(entry)
            if reason:
                self._merge_extra(transaction, incoming_extra)
                events.record_skip(entry, reason, source)
                return entry
        else:
            entry = self._claim_existing(
                events, external_id, source, amount, currency, date,
                incoming_pending, pending_link_id,
            )
            if entry is not None and protection_reason(entry):
                self._merge_extra(entry.transaction, incoming_extra)
                return entry
            if entry is None:
                entry = self._build_entry(external_id, source)
                created = True
            transaction = entry.transaction

        entry.amount = amount
        entry.currency = currency
        entry.date = date
        enrich_attribute(entry, "name", name or "Unknown transaction", source=source)
        if notes:
            enrich_attribute(entry, "notes", notes, source=source)
        if category_id:
            enrich_attribute(transaction, "category_id", category_id, source=source)
        if merchant_id:
            enrich_attribute(transaction, "merchant_id", merchant_id, source=source)

        if self.account.is_investment:
            self._label_activity(transaction, entry.name, activity_label, source)

        self._merge_extra(transaction, incoming_extra)
        self.db.flush()

        if created and not incoming_pending:
            self._suggest_pending_match(events, entry, source)

        return entry

    # -- lookups -----------------------------------------------------------

    def find_by_key(self, external_id: str, source: str) -> Entry | None:
        return (
            self.db.query(Entry)
            .filter_by(account_id=self.account.id, external_id=external_id, source=source)
            .first()
        )

    def find_duplicate_transaction(
        self,
        date: date,
        amount,
        currency: str,
        name: str | None = None,
        exclude_entry_ids=None,
    ) -> Entry | None:
        """Find a provider-less (manual or CSV) transaction for the same event.

        Matches on exact date, amount and currency, optionally name. The
        oldest match wins.
        """
        query = (
            self.db.query(Entry)
            .filter(
                Entry.account_id == self.account.id,
                Entry.entryable_type == TRANSACTION,
                Entry.date == date,
                Entry.currency == currency,
                Entry.external_id.is_(None),
            )
            .order_by(Entry.created_at.asc(), Entry.id.asc())
        )
        if name:
            query = query.filter(Entry.name == name)
        if exclude_entry_ids:
            query = query.filter(Entry.id.notin_(list(exclude_entry_ids)))

        amount = _to_decimal(amount)
        for candidate in query.all():
            if _to_decimal(candidate.amount) == amount:
                return candidate
        return None

    def find_pending_transaction(
        self,
        date: date,
        amount,
        currency: str,
        source: str,
        pending_link_id: str | None = None,
    ) -> Entry | None:
        """Find the pending entry a posted transaction resolves.

        The provider's own link id wins; otherwise the most recent pending
        entry from the same source with the exact amount, dated up to
        ``PENDING_MATCH_WINDOW_DAYS`` before the posted date.
        """
        if pending_link_id:
            linked = self.find_by_key(pending_link_id, source)
            if (
                linked is not None
                and linked.entryable_type == TRANSACTION
                and not linked.excluded
            ):
                return linked

        amount = _to_decimal(amount)
        window_start = date - timedelta(days=settings.PENDING_MATCH_WINDOW_DAYS)
        for candidate in self._pending_candidates(source, currency, window_start, date):
            if _to_decimal(candidate.amount) == amount:
                return candidate
        return None

    def _pending_candidates(
        self, source: str, currency: str, start: date, end: date
    ) -> list[Entry]:
        """Entries still reported pending by ``source``, newest first.

        Excluded entries (stale or dismissed by the user) never take part.
        """
        entries = (
            self.db.query(Entry)
            .join(Transaction, Transaction.entry_id == Entry.id)
            .filter(
                Entry.account_id == self.account.id,
                Entry.entryable_type == TRANSACTION,
                Entry.source == source,
                Entry.currency == currency,
                Entry.excluded.is_(False),
                Entry.date >= start,
                Entry.date <= end,
            )
            .order_by(Entry.date.desc(), Entry.created_at.desc())
            .all()
        )
        return [e for e in entries if e.transaction.is_pending_for(source)]

    # -- steps -------------------------------------------------------------

    def _claim_existing(
        self,
        events: ImportReport,
        external_id: str,
        source: str,
        amount: Decimal,
        currency: str,
        date: date,
        incoming_pending: bool,
        pending_link_id: str | None,
    ) -> Entry | None:
        """Reuse a manual duplicate or the pending form of this transaction."""
        duplicate = self.find_duplicate_transaction(date, amount, currency)
        if duplicate is not None:
            self._link(duplicate, external_id, source)
            reason = protection_reason(duplicate)
            if reason:
                events.record_skip(duplicate, reason, source)
            else:
                logger.info(
                    "Claimed manual entry %s for %s/%s", duplicate.id, source, external_id
                )
                events.record(
                    CLAIMED, entry_id=duplicate.id, external_id=external_id, source=source
                )
            return duplicate

        if incoming_pending:
            return None

        pending_entry = self.find_pending_transaction(
            date, amount, currency, source, pending_link_id
        )
        if pending_entry is None:
            return None

        previous_id = pending_entry.external_id
        self._link(pending_entry, external_id, source)
        reason = protection_reason(pending_entry)
        if reason:
            events.record_skip(pending_entry, reason, source)
        else:
            logger.info(
                "Reconciled pending entry %s (%s) with posted %s/%s",
                pending_entry.id, previous_id, source, external_id,
            )
            events.record(
                PENDING_LINKED,
                entry_id=pending_entry.id,
                external_id=external_id,
                source=source,
                detail={"pending_external_id": previous_id},
            )
        return pending_entry

    def _link(self, entry: Entry, external_id: str, source: str) -> None:
        entry.payload_as(TRANSACTION)
        entry.external_id = external_id
        entry.source = source

    def _build_entry(self, external_id: str, source: str) -> Entry:
        entry = Entry(
            account_id=self.account.id,
            entryable_type=TRANSACTION,
            external_id=external_id,
            source=source,
            excluded=False,
            user_modified=False,
            import_locked=False,
            attribute_provenance={},
        )
        entry.transaction = Transaction(kind="standard", extra={}, attribute_provenance={})
        self.db.add(entry)
        return entry

    def _merge_extra(self, transaction: Transaction, incoming: dict) -> None:
        merged = deep_merge(transaction.extra, incoming)
        if POTENTIAL_MATCH_KEY in merged and not any(
            isinstance(block, dict) and cast_bool(block.get("pending"))
            for block in merged.values()
        ):
            # A posted transaction has nothing left to be matched against
            merged.pop(POTENTIAL_MATCH_KEY)
        if merged != (transaction.extra or {}):
            transaction.extra = merged

    def _label_activity(
        self,
        transaction: Transaction,
        name: str | None,
        provider_label: str | None,
        source: str,
    ) -> None:
        if provider_label:
            label, label_source = provider_label, source
        else:
            label, label_source = infer_activity_label(name), AUTO_SOURCE
        if not label:
            return

        enrich_attribute(transaction, "investment_activity_label", label, source=label_source)
        if transaction.investment_activity_label != label:
            return

        if label in INTERNAL_MOVEMENT_LABELS:
            enrich_attribute(transaction, "kind", "funds_movement", source=AUTO_SOURCE)
        elif label == "Contribution":
            enrich_attribute(transaction, "kind", "investment_contribution", source=AUTO_SOURCE)
            if transaction.category_id is None and not is_locked(transaction, "category_id"):
                category = CategoryService.investment_contributions_category(
                    self.db, self.account.family_id
                )
                enrich_attribute(transaction, "category_id", category.id, source=AUTO_SOURCE)

    def _suggest_pending_match(self, events: ImportReport, posted: Entry, source: str) -> None:
        """Attach a review suggestion to the one pending entry this may resolve."""
        posted_amount = _to_decimal(posted.amount)
        if posted_amount == 0:
            return

        window_start = posted.date - timedelta(days=settings.FUZZY_MATCH_WINDOW_DAYS)
        candidates = []
        for pending_entry in self._pending_candidates(
            source, posted.currency, window_start, posted.date
        ):
            if pending_entry.id == posted.id:
                continue
            if pending_entry.transaction.potential_posted_match:
                continue
            pending_amount = _to_decimal(pending_entry.amount)
            if pending_amount == 0 or (pending_amount > 0) != (posted_amount > 0):
                continue
            # Tips and adjustments only ever raise the posted amount
            if abs(posted_amount) < abs(pending_amount):
                continue
            increase = (abs(posted_amount) - abs(pending_amount)) / abs(pending_amount)
            candidates.append((pending_entry, increase))

        medium_tolerance = Decimal(str(settings.MEDIUM_CONFIDENCE_TOLERANCE))
        low_tolerance = Decimal(str(settings.LOW_CONFIDENCE_TOLERANCE))

        medium = [e for e, increase in candidates if increase <= medium_tolerance]
        if len(medium) > 1:
            self._record_ambiguous(events, posted, medium, MEDIUM_CONFIDENCE)
            return
        if len(medium) == 1:
            self._store_suggestion(events, medium[0], posted, MEDIUM_CONFIDENCE, "fuzzy_amount_match")
            return

        posted_merchant = posted.transaction.merchant_id
        posted_name = normalize_merchant_name(posted.name)
        if posted_merchant is None or not posted_name:
            return
        low = [
            e
            for e, increase in candidates
            if medium_tolerance < increase <= low_tolerance
            and e.transaction.merchant_id == posted_merchant
            and normalize_merchant_name(e.name) == posted_name
        ]
        if len(low) > 1:
            self._record_ambiguous(events, posted, low, LOW_CONFIDENCE)
        elif len(low) == 1:
            self._store_suggestion(events, low[0], posted, LOW_CONFIDENCE, "low_confidence_match")

    def _store_suggestion(
        self,
        events: ImportReport,
        pending_entry: Entry,
        posted: Entry,
        confidence: str,
        reason: str,
    ) -> None:
        transaction = pending_entry.transaction
        suggestion = {
            "entry_id": posted.id,
            "reason": reason,
            "posted_amount": str(_to_decimal(posted.amount)),
            "confidence": confidence,
            "detected_at": date.today().isoformat(),
        }
        transaction.extra = {**(transaction.extra or {}), POTENTIAL_MATCH_KEY: suggestion}
        self.db.flush()
        logger.info(
            "Suggested posted entry %s as %s-confidence match for pending entry %s",
            posted.id, confidence, pending_entry.id,
        )
        events.record(
            SUGGESTED,
            entry_id=pending_entry.id,
            external_id=pending_entry.external_id,
            source=pending_entry.source,
            reason=reason,
            detail={"posted_entry_id": posted.id, "confidence": confidence},
        )

    def _record_ambiguous(
        self, events: ImportReport, posted: Entry, candidates: list[Entry], confidence: str
    ) -> None:
        logger.info(
            "Posted entry %s has %d %s-confidence pending candidates, not suggesting any",
            posted.id, len(candidates), confidence,
        )
        events.record(
            AMBIGUOUS,
            entry_id=posted.id,
            external_id=posted.external_id,
            source=posted.source,
            detail={"candidate_ids": [e.id for e in candidates], "confidence": confidence},
        )

    # -- merchants ---------------------------------------------------------

    def find_or_create_merchant(
        self, provider_merchant_id: str | None, name: str | None, source: str
    ) -> Merchant | None:
        """Get-or-create a provider merchant; None if the data is insufficient."""
        if not provider_merchant_id or not name:
            return None

        merchant = (
            self.db.query(Merchant)
            .filter_by(source=source, provider_merchant_id=provider_merchant_id)
            .first()
        )
        if merchant is not None:
            return merchant
        try:
            with self.db.begin_nested():
                merchant = Merchant(
                    name=name, source=source, provider_merchant_id=provider_merchant_id
                )
                self.db.add(merchant)
        except IntegrityError:
            merchant = (
                self.db.query(Merchant)
                .filter_by(source=source, provider_merchant_id=provider_merchant_id)
                .one()
            )
        return merchant
