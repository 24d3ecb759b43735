"""
Domain models for invoice financing.

These models are the entities the financing engine reads and produces.
They are plain immutable values, detached from the persistence layer,
so the matching logic can be exercised without a database.

Design Decisions:
- Using dataclasses for immutable, typed domain objects
- All money is integer cents and all rates integer basis points
- A purchaser's per-creditor settings are handed to the engine as
  FinancingOffer pairs rather than nested collections
"""

from dataclasses import dataclass, field
from datetime import date


@dataclass(frozen=True)
class Creditor:
    """
    The entity that issued the invoice and wants to be paid early.
    
    max_financing_rate_in_bps is an inclusive cap on the effective rate
    the creditor accepts for any of its invoices.
    """
    id: int
    name: str
    max_financing_rate_in_bps: int


@dataclass(frozen=True)
class Debtor:
    """The entity obliged to pay the invoice at maturity."""
    id: int
    name: str


@dataclass(frozen=True)
class Invoice:
    """
    An invoice issued by a creditor to a debtor.
    
    Once financed, early_payment_amount_in_cents and discounted_amount_in_cents
    are both set and sum exactly to value_in_cents.
    """
    id: int
    creditor: Creditor
    debtor: Debtor
    maturity_date: date
    value_in_cents: int
    financed: bool = False
    early_payment_amount_in_cents: int | None = None
    discounted_amount_in_cents: int | None = None
    
    @property
    def has_financing_amounts(self) -> bool:
        """True if either financing amount is set."""
        return (
            self.early_payment_amount_in_cents is not None
            or self.discounted_amount_in_cents is not None
        )

    @property
    def amounts_consistent(self) -> bool:
        """Amounts are either both unset, or both set and summing to the value."""
        early = self.early_payment_amount_in_cents
        discounted = self.discounted_amount_in_cents
        if early is None and discounted is None:
            return True
        if early is None or discounted is None:
            return False
        return early + discounted == self.value_in_cents


@dataclass(frozen=True)
class Purchaser:
    """
    An entity (usually a bank) that buys invoices.
    
    It pays the creditor early and collects the full value from the
    debtor at maturity.
    """
    id: int
    name: str
    minimum_financing_term_in_days: int


@dataclass(frozen=True)
class PurchaserFinancingSettings:
    """Annual rate a purchaser charges one specific creditor."""
    id: int
    purchaser_id: int
    creditor_id: int
    annual_rate_in_bps: int


@dataclass(frozen=True)
class FinancingOffer:
    """A purchaser paired with one of its per-creditor financing settings."""
    purchaser: Purchaser
    settings: PurchaserFinancingSettings
    
    @property
    def creditor_id(self) -> int:
        return self.settings.creditor_id
    
    @property
    def annual_rate_in_bps(self) -> int:
        return self.settings.annual_rate_in_bps


@dataclass(frozen=True)
class MatchResult:
    """
    The winning offer for one invoice and the resulting amounts.
    
    discount_amount_in_cents + early_payment_amount_in_cents == invoice value.
    """
    invoice_id: int
    purchaser_id: int
    settings_id: int
    financing_days: int
    effective_rate_in_bps: int
    discount_amount_in_cents: int
    early_payment_amount_in_cents: int


@dataclass(frozen=True)
class FinancingAgreement:
    """Durable link between a financed invoice and the purchaser that financed it."""
    id: int
    invoice_id: int
    purchaser_id: int


@dataclass(frozen=True)
class DataInconsistency:
    """
    Inconsistent input data found during a financing run.
    
    Inconsistencies never abort the run; they exclude the affected
    invoice (or offer) and are reported in the batch summary.
    """
    code: str
    message: str
    invoice_id: int | None = None
    creditor_id: int | None = None
    purchaser_id: int | None = None


@dataclass
class BatchSummary:
    """
    Outcome of one financing run.
    
    Mutable because it is filled in while the run progresses.
    """
    evaluation_date: date
    dry_run: bool = False
    scanned: int = 0
    matches: list[MatchResult] = field(default_factory=list)
    unmatched_invoice_ids: list[int] = field(default_factory=list)
    inconsistencies: list[DataInconsistency] = field(default_factory=list)
    agreement_ids: list[int] = field(default_factory=list)
    
    @property
    def matched(self) -> int:
        return len(self.matches)
    
    @property
    def unmatched(self) -> int:
        return len(self.unmatched_invoice_ids)
    
    @property
    def inconsistent_invoice_ids(self) -> list[int]:
        """Invoices excluded from the run because of inconsistent data."""
        return [i.invoice_id for i in self.inconsistencies if i.invoice_id is not None]
