from datetime import date, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from financing.infrastructure.database import (
    Base,
    CreditorRecord,
    DebtorRecord,
    FinancingAgreementRecord,
    InvoiceRecord,
    PurchaserFinancingSettingsRecord,
    PurchaserRecord,
)

EVALUATION_DATE = date(2024, 3, 1)


class Seeder:
    """Inserts rows through committed sessions and reads them back."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def _add(self, record):
        async with self.session_factory() as session:
            session.add(record)
            await session.commit()
            return record.id

    async def creditor(self, max_rate_in_bps: int, name: str = "Creditor1") -> int:
        return await self._add(CreditorRecord(name=name, max_financing_rate_in_bps=max_rate_in_bps))

    async def debtor(self, name: str = "Debtor1") -> int:
        return await self._add(DebtorRecord(name=name))

    async def purchaser(self, min_term_in_days: int, rates: dict[int, int], name: str = "Purchaser") -> int:
        return await self._add(PurchaserRecord(
            name=name,
            minimum_financing_term_in_days=min_term_in_days,
            financing_settings=[
                PurchaserFinancingSettingsRecord(creditor_id=creditor_id, annual_rate_in_bps=rate)
                for creditor_id, rate in rates.items()
            ],
        ))

    async def invoice(
        self,
        creditor_id: int,
        debtor_id: int,
        value_in_cents: int,
        days: int,
        **amounts,
    ) -> int:
        return await self._add(InvoiceRecord(
            creditor_id=creditor_id,
            debtor_id=debtor_id,
            value_in_cents=value_in_cents,
            maturity_date=EVALUATION_DATE + timedelta(days=days),
            **amounts,
        ))

    async def get_invoice(self, invoice_id: int) -> InvoiceRecord:
        async with self.session_factory() as session:
            return await session.get(InvoiceRecord, invoice_id)

    async def agreements(self) -> list[FinancingAgreementRecord]:
        async with self.session_factory() as session:
            result = await session.execute(select(FinancingAgreementRecord).order_by(FinancingAgreementRecord.id))
            return list(result.scalars())


@pytest.fixture
def evaluation_date() -> date:
    return EVALUATION_DATE


@pytest.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def seeder(session_factory) -> Seeder:
    return Seeder(session_factory)
