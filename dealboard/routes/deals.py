"""
Deal dashboard API routes.
HTTP endpoints for the deal list, pipeline stages, stage moves and cache management.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from dealboard.infrastructure.observability.logging import get_logger
from dealboard.models.api.deal_api import (
    DealModel,
    StageModel,
    UpdateStageRequest,
    UpdateStageResponse,
)
from dealboard.routes.dependencies import get_container
from dealboard.services.container import ServiceContainer
from dealboard.services.crm_client import CrmApiError
from dealboard.services.deal_enrichment import STAGE_PROPERTY

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["deals"])


def _upstream_status(error: CrmApiError) -> int:
    """Client errors pass through; anything else is a bad gateway."""
    if error.status_code and 400 <= error.status_code < 500:
        return error.status_code
    return status.HTTP_502_BAD_GATEWAY


@router.get("/deals", response_model=list[DealModel])
async def list_deals(container: ServiceContainer = Depends(get_container)):
    """Deals for the dashboard, served from the snapshot whenever one exists."""
    try:
        deals = await container.dashboard.get_deals()
        return [DealModel.from_domain(deal) for deal in deals]

    except CrmApiError as e:
        logger.error("Error fetching deals from CRM", error=str(e), status_code=e.status_code)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to fetch deals from CRM",
        )


@router.get("/stages", response_model=list[StageModel])
async def list_stages(container: ServiceContainer = Depends(get_container)):
    """All pipeline stages in display order."""
    taxonomy = await container.stages.get_taxonomy()
    return [StageModel.from_domain(stage) for stage in taxonomy.all_stages]


@router.patch("/deals/{deal_id}/stage", response_model=UpdateStageResponse)
async def update_deal_stage(
    deal_id: str,
    request: UpdateStageRequest,
    container: ServiceContainer = Depends(get_container),
):
    """Move a deal to another stage, then reconcile the snapshot in the background."""
    try:
        updated = await container.crm.update_object("deals", deal_id, {STAGE_PROPERTY: request.stage_id})
    except CrmApiError as e:
        logger.error(
            "Error updating deal stage",
            deal_id=deal_id,
            stage_id=request.stage_id,
            error=str(e),
            status_code=e.status_code,
        )
        raise HTTPException(status_code=_upstream_status(e), detail="Failed to update deal stage")

    # The moved deal's last-modified marker changed, so the next pass refetches it
    container.controller.trigger_in_background()

    logger.info("Deal stage updated", deal_id=deal_id, stage_id=request.stage_id)
    return UpdateStageResponse(success=True, deal=updated)


@router.get("/cache/stats")
async def cache_stats(container: ServiceContainer = Depends(get_container)):
    """Cache contents and reconciliation state."""
    stats = await container.caches.stats()
    stats["is_refreshing"] = container.controller.is_running
    stats["last_refresh_error"] = container.controller.last_error
    return stats


@router.post("/cache/clear")
async def clear_cache(container: ServiceContainer = Depends(get_container)):
    """Drop every cache. The next deal request bootstraps from the CRM."""
    await container.caches.clear_all()
    return {"success": True, "message": "All caches cleared"}
