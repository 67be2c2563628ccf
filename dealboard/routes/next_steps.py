"""
Next-step API routes.
HTTP endpoints for reading and (re)generating AI next-step suggestions.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from dealboard.infrastructure.observability.logging import get_logger
from dealboard.models.api.deal_api import (
    GenerateAllRequest,
    GenerateAllResponse,
    GenerateAllResult,
    GenerateNextStepRequest,
    GenerateNextStepResponse,
    NextStepModel,
)
from dealboard.routes.dependencies import get_container
from dealboard.services.container import ServiceContainer

logger = get_logger(__name__)

router = APIRouter(prefix="/api/next-steps", tags=["next-steps"])


@router.get("", response_model=dict[str, NextStepModel])
async def list_next_steps(container: ServiceContainer = Depends(get_container)):
    """All stored next steps keyed by deal id."""
    records = await container.next_steps.all_suggestions()
    return {deal_id: NextStepModel.from_domain(record) for deal_id, record in records.items()}


@router.post("/generate/{deal_id}", response_model=GenerateNextStepResponse)
async def generate_next_step(
    deal_id: str,
    request: GenerateNextStepRequest,
    container: ServiceContainer = Depends(get_container),
):
    """Force regeneration of one deal's next step."""
    deal = request.deal.to_domain()
    deal.id = deal_id

    try:
        text = await container.next_steps.generate_for_deal(deal, request.contact_id, force_refresh=True)
        return GenerateNextStepResponse(success=True, next_step=text)

    except Exception as e:
        logger.error("Error generating next step", deal_id=deal_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate next step",
        )


@router.post("/generate-all", response_model=GenerateAllResponse)
async def generate_all_next_steps(
    request: GenerateAllRequest,
    container: ServiceContainer = Depends(get_container),
):
    """Gated regeneration for many deals; only deals with new activity call the generator."""
    deals = [model.to_domain() for model in request.deals]
    results = await container.next_steps.generate_for_deals(
        deals, container.config.BULK_SUGGESTION_DELAY_SECONDS
    )
    return GenerateAllResponse(success=True, results=[GenerateAllResult(**r) for r in results])
