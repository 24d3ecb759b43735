from datetime import date, timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from financing.domain.errors import ConcurrentFinancingError, FinancingPersistenceError
from financing.domain.models import (
    Creditor,
    Debtor,
    FinancingAgreement,
    FinancingOffer,
    Invoice,
    Purchaser,
    PurchaserFinancingSettings,
)
from financing.infrastructure.repository import FinancingStore, SqlAlchemyFinancingStore
from financing.services.financing import FinancingService


def _service(session_factory, evaluation_date, **kwargs) -> FinancingService:
    return FinancingService(session_factory=session_factory, clock=lambda: evaluation_date, **kwargs)


async def test_finances_invoice_with_cheapest_eligible_purchaser(session_factory, seeder, evaluation_date):
    creditor = await seeder.creditor(max_rate_in_bps=3)
    debtor = await seeder.debtor()
    await seeder.purchaser(min_term_in_days=20, rates={creditor: 50}, name="Purchaser1")
    purchaser2 = await seeder.purchaser(min_term_in_days=20, rates={creditor: 40}, name="Purchaser2")
    invoice_id = await seeder.invoice(creditor, debtor, value_in_cents=1_000_000, days=30)

    summary = await _service(session_factory, evaluation_date).run_financing_cycle()

    assert (summary.scanned, summary.matched, summary.unmatched) == (1, 1, 0)
    invoice = await seeder.get_invoice(invoice_id)
    assert invoice.financed is True
    assert invoice.early_payment_amount_in_cents == 999_700
    assert invoice.discounted_amount_in_cents == 300
    assert invoice.early_payment_amount_in_cents + invoice.discounted_amount_in_cents == 1_000_000

    agreements = await seeder.agreements()
    assert [(a.invoice_id, a.purchaser_id) for a in agreements] == [(invoice_id, purchaser2)]
    assert summary.agreement_ids == [agreements[0].id]


async def test_invoice_without_eligible_purchaser_is_untouched(session_factory, seeder, evaluation_date):
    creditor = await seeder.creditor(max_rate_in_bps=3)
    debtor = await seeder.debtor()
    await seeder.purchaser(min_term_in_days=40, rates={creditor: 50})
    invoice_id = await seeder.invoice(creditor, debtor, value_in_cents=1_000_000, days=30)

    summary = await _service(session_factory, evaluation_date).run_financing_cycle()

    assert summary.matched == 0
    assert summary.unmatched_invoice_ids == [invoice_id]
    invoice = await seeder.get_invoice(invoice_id)
    assert invoice.financed is False
    assert invoice.early_payment_amount_in_cents is None
    assert invoice.discounted_amount_in_cents is None
    assert await seeder.agreements() == []


async def test_chooses_best_purchaser_among_several(session_factory, seeder, evaluation_date):
    creditor = await seeder.creditor(max_rate_in_bps=60)
    debtor = await seeder.debtor()
    cheap = await seeder.purchaser(min_term_in_days=20, rates={creditor: 30}, name="CheapPurchaser")
    await seeder.purchaser(min_term_in_days=20, rates={creditor: 100}, name="ExpensivePurchaser")
    invoice_id = await seeder.invoice(creditor, debtor, value_in_cents=1_000_000, days=30)

    await _service(session_factory, evaluation_date).run_financing_cycle()

    agreements = await seeder.agreements()
    assert [(a.invoice_id, a.purchaser_id) for a in agreements] == [(invoice_id, cheap)]
    invoice = await seeder.get_invoice(invoice_id)
    assert invoice.discounted_amount_in_cents == 300


async def test_batch_finances_only_eligible_invoices(session_factory, seeder, evaluation_date):
    creditor = await seeder.creditor(max_rate_in_bps=10)
    other_creditor = await seeder.creditor(max_rate_in_bps=10, name="Creditor2")
    debtor = await seeder.debtor()
    purchaser = await seeder.purchaser(min_term_in_days=20, rates={creditor: 40, other_creditor: 60})
    first = await seeder.invoice(creditor, debtor, value_in_cents=500_000, days=45)
    too_short = await seeder.invoice(creditor, debtor, value_in_cents=200_000, days=10)
    second = await seeder.invoice(other_creditor, debtor, value_in_cents=1_234_567, days=60)

    summary = await _service(session_factory, evaluation_date).run_financing_cycle()

    assert (summary.scanned, summary.matched, summary.unmatched) == (3, 2, 1)
    assert summary.unmatched_invoice_ids == [too_short]

    agreements = await seeder.agreements()
    assert [(a.invoice_id, a.purchaser_id) for a in agreements] == [(first, purchaser), (second, purchaser)]

    # 40bps * 45 / 360 = 5bps; 60bps * 60 / 360 = 10bps
    assert (await seeder.get_invoice(first)).discounted_amount_in_cents == 250
    assert (await seeder.get_invoice(second)).discounted_amount_in_cents == 1_235
    untouched = await seeder.get_invoice(too_short)
    assert untouched.financed is False
    assert untouched.discounted_amount_in_cents is None


async def test_financed_invoices_are_not_revisited(session_factory, seeder, evaluation_date):
    creditor = await seeder.creditor(max_rate_in_bps=3)
    debtor = await seeder.debtor()
    await seeder.purchaser(min_term_in_days=20, rates={creditor: 40})
    await seeder.invoice(creditor, debtor, value_in_cents=1_000_000, days=30)
    service = _service(session_factory, evaluation_date)

    await service.run_financing_cycle()
    summary = await service.run_financing_cycle()

    assert summary.scanned == 0
    assert summary.agreement_ids == []
    assert len(await seeder.agreements()) == 1


async def test_invoice_row_with_stray_amounts_does_not_block_batch(session_factory, seeder, evaluation_date):
    creditor = await seeder.creditor(max_rate_in_bps=3)
    debtor = await seeder.debtor()
    purchaser = await seeder.purchaser(min_term_in_days=20, rates={creditor: 40})
    good = await seeder.invoice(creditor, debtor, value_in_cents=1_000_000, days=30)
    bad = await seeder.invoice(creditor, debtor, value_in_cents=1_000_000, days=30, early_payment_amount_in_cents=5)

    summary = await _service(session_factory, evaluation_date).run_financing_cycle()

    assert (summary.scanned, summary.matched, summary.unmatched) == (2, 1, 0)
    assert summary.inconsistent_invoice_ids == [bad]
    assert summary.inconsistencies[0].code == "inconsistent_amounts"

    agreements = await seeder.agreements()
    assert [(a.invoice_id, a.purchaser_id) for a in agreements] == [(good, purchaser)]
    assert (await seeder.get_invoice(good)).financed is True

    untouched = await seeder.get_invoice(bad)
    assert untouched.financed is False
    assert (untouched.early_payment_amount_in_cents, untouched.discounted_amount_in_cents) == (5, None)


async def test_evaluation_date_overrides_clock(session_factory, seeder, evaluation_date):
    creditor = await seeder.creditor(max_rate_in_bps=3)
    debtor = await seeder.debtor()
    await seeder.purchaser(min_term_in_days=20, rates={creditor: 40})
    invoice_id = await seeder.invoice(creditor, debtor, value_in_cents=1_000_000, days=30)

    # 15 days before maturity the minimum term is no longer met
    summary = await _service(session_factory, evaluation_date).run_financing_cycle(
        evaluation_date=evaluation_date + timedelta(days=15),
    )

    assert summary.unmatched_invoice_ids == [invoice_id]


async def test_dry_run_persists_nothing(session_factory, seeder, evaluation_date):
    creditor = await seeder.creditor(max_rate_in_bps=3)
    debtor = await seeder.debtor()
    await seeder.purchaser(min_term_in_days=20, rates={creditor: 40})
    invoice_id = await seeder.invoice(creditor, debtor, value_in_cents=1_000_000, days=30)
    service = _service(session_factory, evaluation_date)

    preview = await service.run_financing_cycle(dry_run=True)

    assert preview.dry_run is True
    assert preview.matched == 1
    assert preview.agreement_ids == []
    assert (await seeder.get_invoice(invoice_id)).financed is False
    assert await seeder.agreements() == []

    summary = await service.run_financing_cycle()
    assert summary.matches == preview.matches


class FailingAgreementStore(SqlAlchemyFinancingStore):
    """Fails when creating the second agreement."""

    calls = 0

    async def create_financing_agreement(self, invoice_id: int, purchaser_id: int) -> FinancingAgreement:
        FailingAgreementStore.calls += 1
        if FailingAgreementStore.calls == 2:
            raise SQLAlchemyError("disk full")
        return await super().create_financing_agreement(invoice_id, purchaser_id)


async def test_write_failure_rolls_back_whole_batch(session_factory, seeder, evaluation_date):
    creditor = await seeder.creditor(max_rate_in_bps=3)
    debtor = await seeder.debtor()
    await seeder.purchaser(min_term_in_days=20, rates={creditor: 40})
    first = await seeder.invoice(creditor, debtor, value_in_cents=1_000_000, days=30)
    second = await seeder.invoice(creditor, debtor, value_in_cents=2_000_000, days=30)
    FailingAgreementStore.calls = 0
    service = _service(session_factory, evaluation_date, store_factory=FailingAgreementStore)

    with pytest.raises(FinancingPersistenceError):
        await service.run_financing_cycle()

    for invoice_id in (first, second):
        invoice = await seeder.get_invoice(invoice_id)
        assert invoice.financed is False
        assert invoice.early_payment_amount_in_cents is None
    assert await seeder.agreements() == []

    # The run can be retried as a whole
    summary = await _service(session_factory, evaluation_date).run_financing_cycle()
    assert summary.matched == 2
    assert len(await seeder.agreements()) == 2


class LostRaceStore(SqlAlchemyFinancingStore):
    """Behaves as if another run financed the invoices after they were loaded."""

    async def update_invoice_financing_outcome(self, invoice_id, financed, early, discounted) -> bool:
        return False


async def test_concurrently_financed_invoice_aborts_run(session_factory, seeder, evaluation_date):
    creditor = await seeder.creditor(max_rate_in_bps=3)
    debtor = await seeder.debtor()
    await seeder.purchaser(min_term_in_days=20, rates={creditor: 40})
    invoice_id = await seeder.invoice(creditor, debtor, value_in_cents=1_000_000, days=30)
    service = _service(session_factory, evaluation_date, store_factory=LostRaceStore)

    with pytest.raises(ConcurrentFinancingError) as exc_info:
        await service.run_financing_cycle()

    assert exc_info.value.invoice_id == invoice_id
    assert await seeder.agreements() == []


async def test_store_only_updates_unfinanced_invoices(session_factory, seeder):
    creditor = await seeder.creditor(max_rate_in_bps=3)
    debtor = await seeder.debtor()
    invoice_id = await seeder.invoice(creditor, debtor, value_in_cents=1_000, days=30)

    async with session_factory() as session:
        store = SqlAlchemyFinancingStore(session)
        assert await store.update_invoice_financing_outcome(invoice_id, True, 997, 3) is True
        assert await store.update_invoice_financing_outcome(invoice_id, True, 990, 10) is False
        await session.commit()

    invoice = await seeder.get_invoice(invoice_id)
    assert (invoice.early_payment_amount_in_cents, invoice.discounted_amount_in_cents) == (997, 3)


async def test_store_loads_offers_only_for_requested_creditors(session_factory, seeder):
    creditor = await seeder.creditor(max_rate_in_bps=3)
    other = await seeder.creditor(max_rate_in_bps=3, name="Creditor2")
    purchaser = await seeder.purchaser(min_term_in_days=5, rates={creditor: 40, other: 50})

    async with session_factory() as session:
        store = SqlAlchemyFinancingStore(session)
        offers = await store.list_offers_for_creditors({creditor})
        assert await store.list_offers_for_creditors(set()) == []

    assert [(o.purchaser.id, o.creditor_id, o.annual_rate_in_bps) for o in offers] == [(purchaser, creditor, 40)]
    assert offers[0].purchaser.minimum_financing_term_in_days == 5


class InMemoryStore(FinancingStore):
    """Store with hand-built data, for inputs the database schema would reject."""

    def __init__(self, invoices, offers) -> None:
        self.invoices = invoices
        self.offers = offers
        self.updates: list[int] = []
        self.agreements: list[tuple[int, int]] = []

    async def list_unfinanced_invoices(self):
        return [invoice for invoice in self.invoices if not invoice.financed]

    async def list_offers_for_creditors(self, creditor_ids):
        return self.offers

    async def update_invoice_financing_outcome(self, invoice_id, financed, early, discounted) -> bool:
        self.updates.append(invoice_id)
        return True

    async def create_financing_agreement(self, invoice_id, purchaser_id) -> FinancingAgreement:
        self.agreements.append((invoice_id, purchaser_id))
        return FinancingAgreement(id=len(self.agreements), invoice_id=invoice_id, purchaser_id=purchaser_id)


async def test_inconsistent_data_is_reported_without_affecting_other_invoices(session_factory):
    today = date(2024, 3, 1)
    debtor = Debtor(id=1, name="Debtor1")
    clean = Creditor(id=1, name="Clean", max_financing_rate_in_bps=10)
    broken = Creditor(id=2, name="Broken", max_financing_rate_in_bps=10)
    purchaser = Purchaser(id=1, name="P1", minimum_financing_term_in_days=5)

    def offer(settings_id, creditor_id, rate):
        return FinancingOffer(purchaser, PurchaserFinancingSettings(settings_id, purchaser.id, creditor_id, rate))

    def invoice(invoice_id, creditor, value=100_000):
        return Invoice(invoice_id, creditor, debtor, today + timedelta(days=30), value)

    store = InMemoryStore(
        invoices=[invoice(1, clean), invoice(2, broken), invoice(3, clean, value=-5)],
        offers=[offer(1, 1, 40), offer(2, 2, 40), offer(3, 2, 50), offer(4, 9, 10)],
    )
    service = _service(session_factory, today, store_factory=lambda session: store)

    summary = await service.run_financing_cycle()

    assert summary.scanned == 3
    assert [m.invoice_id for m in summary.matches] == [1]
    assert store.agreements == [(1, 1)]
    assert sorted(summary.inconsistent_invoice_ids) == [2, 3]
    codes = {(f.code, f.invoice_id) for f in summary.inconsistencies}
    assert codes == {
        ("unknown_creditor", None),
        ("duplicate_creditor_settings", 2),
        ("non_positive_value", 3),
    }


async def test_store_returns_created_agreement(session_factory, seeder):
    creditor = await seeder.creditor(max_rate_in_bps=3)
    debtor = await seeder.debtor()
    purchaser = await seeder.purchaser(min_term_in_days=5, rates={creditor: 40})
    invoice_id = await seeder.invoice(creditor, debtor, value_in_cents=1_000, days=30)

    async with session_factory() as session:
        agreement = await SqlAlchemyFinancingStore(session).create_financing_agreement(invoice_id, purchaser)
        await session.commit()

    assert isinstance(agreement, FinancingAgreement)
    assert (agreement.invoice_id, agreement.purchaser_id) == (invoice_id, purchaser)
    assert [a.id for a in await seeder.agreements()] == [agreement.id]
