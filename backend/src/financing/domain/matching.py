"""
Matching engine: picks the best eligible purchaser offer for an invoice.

The offer set is indexed by creditor once per batch (OfferBook), so each
invoice only looks at the offers registered for its own creditor.

Design Decisions:
- Lowest effective rate wins
- Ties are broken by (annual rate, purchaser id, settings id) so the
  result never depends on the order offers were loaded in
- No eligible offer is a normal outcome (None), never an exception
- Inconsistent offer data surfaces as DataInconsistencyError for the
  affected creditor only
"""

import logging
from collections import defaultdict
from collections.abc import Iterable
from datetime import date

from .eligibility import is_eligible
from .errors import DataInconsistencyError
from .models import DataInconsistency, FinancingOffer, Invoice, MatchResult
from .rates import discount_amount, effective_rate, financing_days

logger = logging.getLogger(__name__)


class OfferBook:
    """
    Purchaser offers indexed by creditor id.
    
    Built once per batch. Offers for creditors outside the expected set
    are dropped and reported in `findings`. A purchaser with more than one
    settings row for the same creditor makes that creditor's offers
    ambiguous; looking them up raises DataInconsistencyError.
    """
    
    def __init__(
        self,
        offers: Iterable[FinancingOffer],
        creditor_ids: Iterable[int] | None = None,
    ) -> None:
        expected = set(creditor_ids) if creditor_ids is not None else None
        self.findings: list[DataInconsistency] = []
        self._by_creditor: dict[int, list[FinancingOffer]] = defaultdict(list)
        self._ambiguous: dict[int, set[int]] = defaultdict(set)
        
        seen: dict[tuple[int, int], int] = {}
        for offer in offers:
            creditor_id = offer.creditor_id
            purchaser_id = offer.purchaser.id
            
            if expected is not None and creditor_id not in expected:
                self.findings.append(DataInconsistency(
                    code="unknown_creditor",
                    message=(
                        f"Offer {offer.settings.id} of purchaser {purchaser_id} "
                        f"references creditor {creditor_id} outside the loaded invoice set"
                    ),
                    creditor_id=creditor_id,
                    purchaser_id=purchaser_id,
                ))
                continue
            
            key = (purchaser_id, creditor_id)
            if key in seen:
                # Same settings row loaded twice is not a conflict
                if seen[key] != offer.settings.id:
                    self._ambiguous[creditor_id].add(purchaser_id)
                continue
            seen[key] = offer.settings.id
            self._by_creditor[creditor_id].append(offer)
    
    def __len__(self) -> int:
        return sum(len(offers) for offers in self._by_creditor.values())
    
    def offers_for(self, creditor_id: int) -> list[FinancingOffer]:
        """
        Offers registered for a creditor.
        
        Raises:
            DataInconsistencyError: If a purchaser has several settings for this creditor
        """
        purchasers = self._ambiguous.get(creditor_id)
        if purchasers:
            ids = ", ".join(str(p) for p in sorted(purchasers))
            raise DataInconsistencyError(DataInconsistency(
                code="duplicate_creditor_settings",
                message=f"Purchasers [{ids}] have several financing settings for creditor {creditor_id}",
                creditor_id=creditor_id,
                purchaser_id=min(purchasers),
            ))
        return list(self._by_creditor.get(creditor_id, ()))


def _selection_key(offer: FinancingOffer, rate: int) -> tuple[int, int, int, int]:
    return (rate, offer.annual_rate_in_bps, offer.purchaser.id, offer.settings.id)


def match_invoice(
    invoice: Invoice,
    offers: Iterable[FinancingOffer],
    evaluation_date: date,
) -> MatchResult | None:
    """
    Select the best eligible offer for an invoice and compute the amounts.
    
    Args:
        invoice: Unfinanced invoice
        offers: Candidate offers; offers for other creditors are ignored
        evaluation_date: The date the financing term is measured from
        
    Returns:
        MatchResult for the winning offer, or None if no offer is eligible
        
    Raises:
        DataInconsistencyError: If the invoice value is not positive, or it
            already carries financing amounts
    """
    if invoice.has_financing_amounts:
        raise DataInconsistencyError(DataInconsistency(
            code="inconsistent_amounts",
            message=(
                f"Unfinanced invoice {invoice.id} already has financing amounts "
                f"(early payment {invoice.early_payment_amount_in_cents}, "
                f"discount {invoice.discounted_amount_in_cents})"
            ),
            invoice_id=invoice.id,
            creditor_id=invoice.creditor.id,
        ))

    if invoice.value_in_cents <= 0:
        raise DataInconsistencyError(DataInconsistency(
            code="non_positive_value",
            message=f"Invoice {invoice.id} has non-positive value {invoice.value_in_cents}",
            invoice_id=invoice.id,
            creditor_id=invoice.creditor.id,
        ))
    
    creditor = invoice.creditor
    days = financing_days(evaluation_date, invoice.maturity_date)
    
    best: tuple[tuple[int, int, int, int], FinancingOffer] | None = None
    for offer in offers:
        if offer.creditor_id != creditor.id:
            continue
        if not is_eligible(offer, creditor, days):
            continue
        key = _selection_key(offer, effective_rate(offer.annual_rate_in_bps, days))
        if best is None or key < best[0]:
            best = (key, offer)
    
    if best is None:
        return None
    
    (rate, *_), offer = best
    discount = discount_amount(invoice.value_in_cents, rate)
    
    logger.debug(
        f"Invoice {invoice.id}: purchaser {offer.purchaser.id} at {rate} bps "
        f"over {days} days, discount {discount}"
    )
    
    return MatchResult(
        invoice_id=invoice.id,
        purchaser_id=offer.purchaser.id,
        settings_id=offer.settings.id,
        financing_days=days,
        effective_rate_in_bps=rate,
        discount_amount_in_cents=discount,
        early_payment_amount_in_cents=invoice.value_in_cents - discount,
    )
