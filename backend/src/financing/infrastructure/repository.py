"""
Storage boundary of the financing engine.

The engine only needs four operations from storage: two bulk reads at the
start of a run and two writes per financed invoice. The abstract
FinancingStore captures that contract; SqlAlchemyFinancingStore implements
it on top of an AsyncSession owned by the caller, so the caller decides
where the transaction begins and ends.

Design Decisions:
- Reads return detached domain dataclasses, never ORM objects
- Unfinanced invoices are locked with FOR UPDATE SKIP LOCKED; overlapping
  runs on PostgreSQL never see the same invoice (SQLite ignores the clause
  and serialises writers instead)
- The invoice update is conditional on financed being false, so a lost
  race is reported instead of overwriting amounts
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Collection, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from financing.domain.models import (
    Creditor,
    Debtor,
    FinancingAgreement,
    FinancingOffer,
    Invoice,
    Purchaser,
    PurchaserFinancingSettings,
)

from .database import (
    CreditorRecord,
    FinancingAgreementRecord,
    InvoiceRecord,
    PurchaserFinancingSettingsRecord,
)

logger = logging.getLogger(__name__)


class FinancingStore(ABC):
    """Abstract read/write contract the financing engine calls through."""
    
    @abstractmethod
    async def list_unfinanced_invoices(self) -> Sequence[Invoice]:
        """Return every invoice with financed == False, ordered by id."""
        pass
    
    @abstractmethod
    async def list_offers_for_creditors(
        self,
        creditor_ids: Collection[int],
    ) -> Sequence[FinancingOffer]:
        """Return every purchaser offer for the given creditors in one read."""
        pass
    
    @abstractmethod
    async def update_invoice_financing_outcome(
        self,
        invoice_id: int,
        financed: bool,
        early_payment_amount_in_cents: int,
        discounted_amount_in_cents: int,
    ) -> bool:
        """Record the financing outcome. Returns False if the invoice was not updated."""
        pass
    
    @abstractmethod
    async def create_financing_agreement(self, invoice_id: int, purchaser_id: int) -> FinancingAgreement:
        """Create an agreement linking the invoice to the winning purchaser."""
        pass


def _to_creditor(record: CreditorRecord) -> Creditor:
    return Creditor(
        id=record.id,
        name=record.name,
        max_financing_rate_in_bps=record.max_financing_rate_in_bps,
    )


def _to_invoice(record: InvoiceRecord) -> Invoice:
    return Invoice(
        id=record.id,
        creditor=_to_creditor(record.creditor),
        debtor=Debtor(id=record.debtor.id, name=record.debtor.name),
        maturity_date=record.maturity_date,
        value_in_cents=record.value_in_cents,
        financed=record.financed,
        early_payment_amount_in_cents=record.early_payment_amount_in_cents,
        discounted_amount_in_cents=record.discounted_amount_in_cents,
    )


def _to_offer(record: PurchaserFinancingSettingsRecord) -> FinancingOffer:
    purchaser = record.purchaser
    return FinancingOffer(
        purchaser=Purchaser(
            id=purchaser.id,
            name=purchaser.name,
            minimum_financing_term_in_days=purchaser.minimum_financing_term_in_days,
        ),
        settings=PurchaserFinancingSettings(
            id=record.id,
            purchaser_id=record.purchaser_id,
            creditor_id=record.creditor_id,
            annual_rate_in_bps=record.annual_rate_in_bps,
        ),
    )


class SqlAlchemyFinancingStore(FinancingStore):
    """
    FinancingStore backed by SQLAlchemy.
    
    The store never commits; the session's transaction is managed
    by the caller.
    """
    
    def __init__(self, session: AsyncSession) -> None:
        self.session = session
    
    async def list_unfinanced_invoices(self) -> list[Invoice]:
        stmt = (
            select(InvoiceRecord)
            .where(InvoiceRecord.financed.is_(False))
            .options(
                selectinload(InvoiceRecord.creditor),
                selectinload(InvoiceRecord.debtor),
            )
            .order_by(InvoiceRecord.id)
            .with_for_update(skip_locked=True, of=InvoiceRecord)
        )
        result = await self.session.execute(stmt)
        invoices = [_to_invoice(record) for record in result.scalars()]
        logger.debug(f"Loaded {len(invoices)} unfinanced invoices")
        return invoices
    
    async def list_offers_for_creditors(
        self,
        creditor_ids: Collection[int],
    ) -> list[FinancingOffer]:
        if not creditor_ids:
            return []
        
        stmt = (
            select(PurchaserFinancingSettingsRecord)
            .where(PurchaserFinancingSettingsRecord.creditor_id.in_(creditor_ids))
            .options(selectinload(PurchaserFinancingSettingsRecord.purchaser))
            .order_by(PurchaserFinancingSettingsRecord.id)
        )
        result = await self.session.execute(stmt)
        offers = [_to_offer(record) for record in result.scalars()]
        logger.debug(f"Loaded {len(offers)} offers for {len(creditor_ids)} creditors")
        return offers
    
    async def update_invoice_financing_outcome(
        self,
        invoice_id: int,
        financed: bool,
        early_payment_amount_in_cents: int,
        discounted_amount_in_cents: int,
    ) -> bool:
        stmt = (
            update(InvoiceRecord)
            .where(InvoiceRecord.id == invoice_id, InvoiceRecord.financed.is_(False))
            .values(
                financed=financed,
                early_payment_amount_in_cents=early_payment_amount_in_cents,
                discounted_amount_in_cents=discounted_amount_in_cents,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1
    
    async def create_financing_agreement(self, invoice_id: int, purchaser_id: int) -> FinancingAgreement:
        record = FinancingAgreementRecord(invoice_id=invoice_id, purchaser_id=purchaser_id)
        self.session.add(record)
        await self.session.flush()
        return FinancingAgreement(
            id=record.id,
            invoice_id=record.invoice_id,
            purchaser_id=record.purchaser_id,
        )
