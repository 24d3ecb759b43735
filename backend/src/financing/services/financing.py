"""
Financing run orchestrator.

Coordinates one financing cycle:
1. Bulk-load unfinanced invoices and the offers for their creditors
2. Match every invoice against the offers of its creditor
3. Persist invoice outcomes and financing agreements
4. Commit everything in a single transaction, or nothing

This is the primary interface for triggering financing.
"""

import asyncio
import dataclasses
import logging
from collections.abc import Callable, Sequence
from datetime import date

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from financing.domain.errors import (
    ConcurrentFinancingError,
    DataInconsistencyError,
    FinancingPersistenceError,
)
from financing.domain.matching import OfferBook, match_invoice
from financing.domain.models import BatchSummary, Invoice
from financing.infrastructure.database import get_session, get_session_factory
from financing.infrastructure.repository import FinancingStore, SqlAlchemyFinancingStore

logger = logging.getLogger(__name__)


class FinancingService:
    """
    Runs financing cycles against the configured database.
    
    Runs on one service instance are serialised by an asyncio.Lock.
    Runs in other processes are kept apart by the row locks and the
    conditional invoice update of the store; losing that race raises
    ConcurrentFinancingError and rolls the whole run back.
    
    Example:
        service = FinancingService()
        summary = await service.run_financing_cycle()
        print(summary.matched, summary.unmatched)
    """
    
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        store_factory: Callable[[AsyncSession], FinancingStore] = SqlAlchemyFinancingStore,
        clock: Callable[[], date] = date.today,
    ) -> None:
        """
        Initialize financing service.
        
        Args:
            session_factory: Session factory (configured database if None)
            store_factory: Builds the storage boundary for a session
            clock: Returns the evaluation date when none is given
        """
        self.session_factory = session_factory or get_session_factory()
        self.store_factory = store_factory
        self.clock = clock
        self._lock = asyncio.Lock()
    
    async def run_financing_cycle(
        self,
        evaluation_date: date | None = None,
        dry_run: bool = False,
    ) -> BatchSummary:
        """
        Finance every unfinanced invoice that has an eligible offer.
        
        Args:
            evaluation_date: Date the financing term is measured from (today if None)
            dry_run: Compute the outcome but roll back instead of committing
            
        Returns:
            BatchSummary with counts, matches and findings
            
        Raises:
            FinancingPersistenceError: If the write phase failed; nothing was committed
        """
        async with self._lock:
            evaluation_date = evaluation_date or self.clock()
            logger.info(f"Financing started for {evaluation_date} (dry_run={dry_run})")
            
            try:
                async with get_session(self.session_factory) as session:
                    store = self.store_factory(session)
                    summary = await self._run(store, evaluation_date, dry_run)
                    if dry_run:
                        await session.rollback()
                    else:
                        await session.commit()
            except SQLAlchemyError as e:
                logger.exception("Financing run failed, rolled back")
                raise FinancingPersistenceError(f"Financing run failed: {e}") from e
            
            logger.info(
                f"Financing completed: scanned={summary.scanned}, matched={summary.matched}, "
                f"unmatched={summary.unmatched}, inconsistent={len(summary.inconsistencies)}"
            )
            return summary
    
    async def _run(
        self,
        store: FinancingStore,
        evaluation_date: date,
        dry_run: bool,
    ) -> BatchSummary:
        summary = BatchSummary(evaluation_date=evaluation_date, dry_run=dry_run)
        
        # Step 1: Bulk reads
        invoices = await store.list_unfinanced_invoices()
        creditor_ids = {invoice.creditor.id for invoice in invoices}
        offers = await store.list_offers_for_creditors(creditor_ids)
        book = OfferBook(offers, creditor_ids)
        
        for finding in book.findings:
            logger.warning(f"Ignoring offer: {finding.message}")
        summary.inconsistencies.extend(book.findings)
        
        logger.info(f"Loaded {len(invoices)} invoices and {len(book)} offers")
        
        # Step 2: Matching (pure, no I/O)
        self._match_all(invoices, book, summary)
        logger.info(f"Found financing for {summary.matched} invoices")
        
        if dry_run:
            return summary
        
        # Step 3: Writes, committed by the caller
        for match in summary.matches:
            updated = await store.update_invoice_financing_outcome(
                match.invoice_id,
                True,
                match.early_payment_amount_in_cents,
                match.discount_amount_in_cents,
            )
            if not updated:
                logger.error(f"Invoice {match.invoice_id} changed during the run")
                raise ConcurrentFinancingError(match.invoice_id)
            agreement = await store.create_financing_agreement(
                match.invoice_id,
                match.purchaser_id,
            )
            summary.agreement_ids.append(agreement.id)
        
        logger.info(f"Saved {len(summary.agreement_ids)} financing agreements")
        return summary
    
    def _match_all(
        self,
        invoices: Sequence[Invoice],
        book: OfferBook,
        summary: BatchSummary,
    ) -> None:
        """Match invoices in id order; each outcome depends only on its own invoice."""
        for invoice in sorted(invoices, key=lambda inv: inv.id):
            if invoice.financed:
                continue
            summary.scanned += 1
            logger.debug(f"Processing invoice {invoice.id}")
            
            try:
                offers = book.offers_for(invoice.creditor.id)
                match = match_invoice(invoice, offers, summary.evaluation_date)
            except DataInconsistencyError as e:
                finding = dataclasses.replace(e.finding, invoice_id=invoice.id)
                logger.warning(f"Skipping invoice {invoice.id}: {finding.message}")
                summary.inconsistencies.append(finding)
                continue
            
            if match is None:
                logger.warning(f"Couldn't find an eligible offer for invoice {invoice.id}")
                summary.unmatched_invoice_ids.append(invoice.id)
                continue
            
            summary.matches.append(match)
