"""
Financing run endpoints.

Lets a scheduler or an operator trigger a financing cycle over HTTP.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from financing.api.schemas import ErrorResponse, FinancingRunRequest, FinancingRunResponse
from financing.domain.errors import ConcurrentFinancingError, FinancingPersistenceError
from financing.services.financing import FinancingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/financing", tags=["financing"])


# Service instance (created lazily on first request)
_financing_service: FinancingService | None = None


def get_financing_service() -> FinancingService:
    """Get or create financing service instance."""
    global _financing_service
    if _financing_service is None:
        _financing_service = FinancingService()
    return _financing_service


@router.post(
    "/runs",
    response_model=FinancingRunResponse,
    status_code=status.HTTP_200_OK,
    responses={
        409: {"model": ErrorResponse, "description": "Invoice financed by a concurrent run"},
        503: {"model": ErrorResponse, "description": "Financing outcome could not be persisted"},
    },
)
async def run_financing(
    request: FinancingRunRequest | None = None,
    service: FinancingService = Depends(get_financing_service),
) -> FinancingRunResponse:
    """
    Run one financing cycle over all unfinanced invoices.
    
    Invoices without an eligible offer are reported, not treated as errors.
    The whole run commits atomically; on failure nothing is persisted
    and the run can simply be retried.
    """
    request = request or FinancingRunRequest()
    logger.info(
        f"Financing run requested: evaluation_date={request.evaluation_date}, "
        f"dry_run={request.dry_run}"
    )
    
    try:
        summary = await service.run_financing_cycle(
            evaluation_date=request.evaluation_date,
            dry_run=request.dry_run,
        )
    except ConcurrentFinancingError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except FinancingPersistenceError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    
    return FinancingRunResponse.from_summary(summary)
