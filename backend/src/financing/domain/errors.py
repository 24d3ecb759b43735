"""
Exception hierarchy for the financing engine.

An invoice without an eligible offer is a normal outcome and has no
exception. Data inconsistencies are raised per invoice and caught by the
orchestrator; persistence errors abort the whole run.
"""

from .models import DataInconsistency


class FinancingError(Exception):
    """Base class for all financing engine errors."""


class DataInconsistencyError(FinancingError):
    """Input data for one invoice cannot be processed safely."""
    
    def __init__(self, finding: DataInconsistency) -> None:
        super().__init__(finding.message)
        self.finding = finding


class FinancingPersistenceError(FinancingError):
    """Writing the financing outcome failed; nothing from the run was committed."""


class ConcurrentFinancingError(FinancingPersistenceError):
    """
    An invoice was financed by another run after this run loaded it.
    
    The run is rolled back and can be retried as a whole.
    """
    
    def __init__(self, invoice_id: int) -> None:
        super().__init__(f"Invoice {invoice_id} was financed by a concurrent run")
        self.invoice_id = invoice_id
