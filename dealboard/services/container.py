"""
Wiring for the dashboard services.

One ServiceContainer is built at startup (see main.lifespan) and shared by
routes and the background worker.
"""

from dataclasses import dataclass

from dealboard.cache.backing import CacheBacking
from dealboard.cache.clock import Clock, utcnow
from dealboard.cache.store import CacheStore, build_backing
from dealboard.config import Settings
from dealboard.infrastructure.observability.logging import get_logger
from dealboard.services.crm_client import CrmClient
from dealboard.services.dashboard_service import DashboardService
from dealboard.services.deal_enrichment import DealEnricher, MeetingDateResolver
from dealboard.services.next_steps_service import NextStepService
from dealboard.services.reconciler import DealReconciler, ReconciliationController
from dealboard.services.stages_service import StagesService
from dealboard.services.suggestion_generator import SuggestionGenerator

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    config: Settings
    crm: CrmClient
    caches: CacheStore
    stages: StagesService
    reconciler: DealReconciler
    controller: ReconciliationController
    dashboard: DashboardService
    next_steps: NextStepService

    @property
    def backing(self) -> CacheBacking:
        return self.caches.backing

    @classmethod
    def build(
        cls,
        config: Settings,
        *,
        backing: CacheBacking | None = None,
        crm: CrmClient | None = None,
        generator: SuggestionGenerator | None = None,
        clock: Clock = utcnow,
    ) -> "ServiceContainer":
        backing = backing or build_backing(config)
        crm = crm or CrmClient(config.CRM_ACCESS_TOKEN, config.CRM_BASE_URL)
        caches = CacheStore(backing, clock)

        stages = StagesService(crm, caches.stages)
        meetings = MeetingDateResolver(
            crm, caches.meetings, config.MEETING_BATCH_SIZE, config.MEETING_BATCH_DELAY_SECONDS
        )
        enricher = DealEnricher(
            crm,
            caches.companies,
            caches.contacts,
            meetings,
            config.CACHE_ITEM_MAX_AGE_SECONDS,
            clock,
        )
        reconciler = DealReconciler(
            crm, caches.deals, enricher, stages, config.CRM_BATCH_SIZE, config.CRM_BATCH_DELAY_SECONDS
        )
        controller = ReconciliationController(reconciler)
        dashboard = DashboardService(
            caches.deals, reconciler, controller, config.DEALS_SNAPSHOT_MAX_AGE_SECONDS, clock
        )
        next_steps = NextStepService(crm, backing, generator or SuggestionGenerator(clock=clock), clock=clock)

        return cls(
            config=config,
            crm=crm,
            caches=caches,
            stages=stages,
            reconciler=reconciler,
            controller=controller,
            dashboard=dashboard,
            next_steps=next_steps,
        )

    async def start(self) -> None:
        await self.backing.initialize()
        logger.info("Service container started", backing=self.backing.name)

    async def stop(self) -> None:
        await self.controller.wait_idle()
        await self.crm.close()
        await self.backing.close()
        logger.info("Service container stopped")
