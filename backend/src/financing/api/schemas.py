"""
Pydantic schemas for API request/response validation.

These schemas define the contract between the trigger clients and the
financing engine. Money is integer cents and rates integer basis points.
"""

from datetime import date

from pydantic import BaseModel, Field

from financing.domain.models import BatchSummary


# =============================================================================
# Request Schemas
# =============================================================================

class FinancingRunRequest(BaseModel):
    """Request to start a financing run."""
    evaluation_date: date | None = Field(
        default=None,
        description="Date the financing term is measured from (defaults to today)",
    )
    dry_run: bool = Field(
        default=False,
        description="Compute matches without persisting anything",
    )


# =============================================================================
# Response Schemas
# =============================================================================

class MatchResponse(BaseModel):
    """Winning offer for one invoice."""
    invoice_id: int
    purchaser_id: int
    financing_days: int
    effective_rate_in_bps: int
    discount_amount_in_cents: int
    early_payment_amount_in_cents: int


class InconsistencyResponse(BaseModel):
    """Inconsistent data found during the run."""
    code: str
    message: str
    invoice_id: int | None = None
    creditor_id: int | None = None
    purchaser_id: int | None = None


class FinancingRunResponse(BaseModel):
    """Outcome of a financing run."""
    evaluation_date: date
    dry_run: bool
    scanned: int
    matched: int
    unmatched: int
    inconsistent: int
    matches: list[MatchResponse] = []
    unmatched_invoice_ids: list[int] = []
    inconsistencies: list[InconsistencyResponse] = []
    agreement_ids: list[int] = []
    
    @classmethod
    def from_summary(cls, summary: BatchSummary) -> "FinancingRunResponse":
        return cls(
            evaluation_date=summary.evaluation_date,
            dry_run=summary.dry_run,
            scanned=summary.scanned,
            matched=summary.matched,
            unmatched=summary.unmatched,
            inconsistent=len(summary.inconsistent_invoice_ids),
            matches=[
                MatchResponse(
                    invoice_id=m.invoice_id,
                    purchaser_id=m.purchaser_id,
                    financing_days=m.financing_days,
                    effective_rate_in_bps=m.effective_rate_in_bps,
                    discount_amount_in_cents=m.discount_amount_in_cents,
                    early_payment_amount_in_cents=m.early_payment_amount_in_cents,
                )
                for m in summary.matches
            ],
            unmatched_invoice_ids=list(summary.unmatched_invoice_ids),
            inconsistencies=[
                InconsistencyResponse(
                    code=i.code,
                    message=i.message,
                    invoice_id=i.invoice_id,
                    creditor_id=i.creditor_id,
                    purchaser_id=i.purchaser_id,
                )
                for i in summary.inconsistencies
            ],
            agreement_ids=list(summary.agreement_ids),
        )


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str
    database: str


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: str | None = None
    code: str | None = None
