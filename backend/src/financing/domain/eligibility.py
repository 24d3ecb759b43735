"""
Eligibility rules for applying a purchaser offer to an invoice.

Pure functions, no I/O.
"""

from .models import Creditor, FinancingOffer
from .rates import effective_rate


def satisfies_minimum_term(offer: FinancingOffer, financing_days: int) -> bool:
    """The term must be strictly longer than the purchaser's minimum."""
    return offer.purchaser.minimum_financing_term_in_days < financing_days


def within_rate_cap(offer: FinancingOffer, creditor: Creditor, financing_days: int) -> bool:
    """The effective rate may equal the creditor's cap but not exceed it."""
    rate = effective_rate(offer.annual_rate_in_bps, financing_days)
    return rate <= creditor.max_financing_rate_in_bps


def is_eligible(offer: FinancingOffer, creditor: Creditor, financing_days: int) -> bool:
    """
    Check whether an offer may be applied to an invoice of this creditor.
    
    Args:
        offer: Purchaser settings paired with the owning purchaser
        creditor: Creditor of the invoice
        financing_days: Term of the invoice, computed once per invoice
    """
    return (
        satisfies_minimum_term(offer, financing_days)
        and within_rate_cap(offer, creditor, financing_days)
    )
