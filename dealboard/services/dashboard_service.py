"""
Dashboard read path for the deal list.

A fresh snapshot is served as-is. A stale one is still served immediately
while a background reconciliation brings it up to date. Only when no
snapshot has ever been written does a request wait for upstream.
"""

from dealboard.cache.clock import Clock, utcnow
from dealboard.cache.snapshot import SnapshotCache
from dealboard.infrastructure.observability.logging import get_logger
from dealboard.models.domain.deal_domain import Deal
from dealboard.services.reconciler import DealReconciler, ReconciliationController

logger = get_logger(__name__)


class DashboardService:
    def __init__(
        self,
        snapshots: SnapshotCache,
        reconciler: DealReconciler,
        controller: ReconciliationController,
        max_age_s: float,
        clock: Clock = utcnow,
    ):
        self._snapshots = snapshots
        self._reconciler = reconciler
        self._controller = controller
        self._max_age_s = max_age_s
        self._clock = clock

    async def get_deals(self) -> list[Deal]:
        """
        Deals for the dashboard.

        Raises:
            CrmApiError: Only on the bootstrap path, when upstream fails
        """
        snapshot = await self._snapshots.get_snapshot()

        if snapshot is not None:
            age = snapshot.age_seconds(self._clock())
            if age < self._max_age_s:
                logger.debug("Returning cached deals", age_seconds=round(age, 1))
                return snapshot.data

            logger.info("Deal snapshot is stale, refreshing in background", age_seconds=round(age, 1))
            self._controller.trigger_in_background()
            return snapshot.data

        logger.info("No deal snapshot yet, fetching from CRM")
        result = await self._reconciler.reconcile()
        return result.snapshot.data
