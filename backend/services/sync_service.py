"""Sync service - runs normalized provider batches through the reconcilers."""

import logging
from datetime import date
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from integrations.exceptions import ProviderDataError, ProviderError
from integrations.provider_protocol import AccountSyncBatch
from models import Account, Family, SyncSession
from models.sync_log import SyncLogEntry
from services.account_service import AccountService
from services.entry_reconciler import EntryReconciler
from services.exceptions import ReconciliationError, TransferMatchInProgressError
from services.holding_reconciler import HoldingReconciler
from services.import_report import ImportReport
from services.pending_review_service import PendingReviewService
from services.security_service import SecurityService
from services.trade_importer import TradeImporter
from services.transfer_matcher import TransferMatcher

logger = logging.getLogger(__name__)


class SyncService:
    """Applies one family's sync run.

    Fetching from providers and scheduling happen upstream; this service
    receives the already-normalized batches, reconciles them account by
    account, and finishes with the family-wide transfer matching.
    """

    @staticmethod
    def sync_family(
        db: Session,
        family: Family,
        batches: Iterable[AccountSyncBatch],
        today: Optional[date] = None,
    ) -> SyncSession:
        """Reconcile every batch and record a SyncSession.

        A failing batch is rolled back on its own and logged; the remaining
        batches still run. Always returns the SyncSession (never raises for
        per-account failures) and commits once at the end.
        """
        batches = list(batches)
        sync_session = SyncSession(family_id=family.id, is_complete=False)
        db.add(sync_session)
        db.flush()
        logger.info("Sync started for family %s (%d batches)", family.id, len(batches))

        report = ImportReport()
        errors: list[str] = []
        any_synced = False

        for batch in batches:
            account = db.get(Account, batch.account_id)
            if account is None or account.family_id != family.id:
                logger.warning("Skipping batch for unknown account %s", batch.account_id)
                errors.append(f"{batch.account_id}: unknown account")
                continue

            batch_report = ImportReport()
            try:
                # Savepoint per account so a failure leaves earlier accounts intact
                with db.begin_nested():
                    SyncService._sync_batch(db, account, batch, batch_report)
            except ProviderError as e:
                error_msg = str(e)
                record_id = getattr(e, "record_id", None)
                errors.append(f"{account.name}: {error_msg}")
                logger.warning(
                    "Sync failed for account %s (%s) record=%s: %s",
                    account.id, batch.source, record_id, error_msg,
                )
                SyncService._create_log_entry(
                    db, sync_session, account, batch, "failed", [error_msg], batch_report
                )
            except Exception as e:
                # Safety net for unexpected errors
                error_msg = str(e)
                errors.append(f"{account.name}: {error_msg}")
                logger.error(
                    "Unexpected error syncing account %s (%s): %s",
                    account.id, batch.source, e, exc_info=True,
                )
                SyncService._create_log_entry(
                    db, sync_session, account, batch, "failed", [error_msg], batch_report
                )
            else:
                any_synced = True
                report.extend(batch_report)
                SyncService._create_log_entry(
                    db, sync_session, account, batch, "success", None, batch_report
                )

        stale_excluded = 0
        for account in db.query(Account).filter(Account.family_id == family.id).all():
            if account.is_visible:
                stale_excluded += PendingReviewService.auto_exclude_stale_pending(
                    db, account, today=today
                )

        transfers_matched = 0
        try:
            transfers_matched = len(TransferMatcher(db, family).auto_match())
        except TransferMatchInProgressError:
            logger.warning("Transfer matching already running for family %s, skipped", family.id)

        sync_session.transfers_matched = transfers_matched
        sync_session.stats = {**report.summary(), "stale_pending_excluded": stale_excluded}
        sync_session.is_complete = any_synced or not batches
        if errors:
            sync_session.error_message = "; ".join(errors)
        db.commit()

        logger.info(
            "Sync finished for family %s: session %s, %d transfers matched",
            family.id, sync_session.id[:8], transfers_matched,
        )
        return sync_session

    @staticmethod
    def _sync_batch(
        db: Session,
        account: Account,
        batch: AccountSyncBatch,
        report: ImportReport,
    ) -> None:
        entries = EntryReconciler(db, account, report)
        for record in batch.transactions:
            try:
                entries.reconcile(
                    external_id=record.external_id,
                    source=batch.source,
                    amount=record.amount,
                    currency=record.currency,
                    date=record.date,
                    name=record.name,
                    category_id=record.category_id,
                    merchant_id=record.merchant_id,
                    notes=record.notes,
                    pending_link_id=record.pending_link_id,
                    extra=record.extra,
                    pending=record.pending,
                    activity_label=record.activity_label,
                )
            except ReconciliationError as e:
                raise ProviderDataError(str(e), batch.source, record.external_id) from e

        holdings = HoldingReconciler(db, account, report)
        for record in batch.holdings:
            security = SecurityService.ensure_exists(
                db, record.ticker, record.security_name, record.exchange_operating_mic
            )
            holdings.reconcile(
                security=security,
                quantity=record.quantity,
                amount=record.amount,
                currency=record.currency,
                date=record.date,
                price=record.price,
                cost_basis=record.cost_basis,
                external_id=record.external_id,
                account_provider_id=batch.account_provider_id,
                delete_future=batch.replace_future_holdings,
            )

        trades = TradeImporter(db, account, report)
        for record in batch.trades:
            security = SecurityService.ensure_exists(
                db, record.ticker, exchange_operating_mic=record.exchange_operating_mic
            )
            try:
                trades.import_trade(
                    security=security,
                    quantity=record.quantity,
                    price=record.price,
                    amount=record.amount,
                    currency=record.currency,
                    date=record.date,
                    source=batch.source,
                    name=record.name,
                    external_id=record.external_id,
                    activity_label=record.activity_label,
                )
            except ReconciliationError as e:
                raise ProviderDataError(str(e), batch.source, record.external_id) from e

        if batch.balance is not None:
            AccountService.update_balance(
                db, account, batch.balance, batch.cash_balance, source=batch.source
            )
        if batch.account_attributes:
            AccountService.update_accountable_attributes(
                db, account, batch.account_attributes, source=batch.source
            )

    @staticmethod
    def _create_log_entry(
        db: Session,
        sync_session: SyncSession,
        account: Account,
        batch: AccountSyncBatch,
        status: str,
        error_messages: Optional[list[str]],
        report: ImportReport,
    ) -> SyncLogEntry:
        entry = SyncLogEntry(
            sync_session_id=sync_session.id,
            account_id=account.id,
            source=batch.source,
            status=status,
            error_messages=error_messages,
            records_processed=batch.record_count if status == "success" else 0,
            records_skipped=len(report.skipped),
        )
        db.add(entry)
        db.flush()
        return entry
