"""
Change-detection reconciliation of the deal snapshot.

Instead of re-fetching every deal on every refresh, a cheap probe lists
only `{id, last-modified marker}` for all live deals. Deals whose marker
moved (or that are new) get a full detail fetch; deals that disappeared
are dropped; everything else is carried over from the cached snapshot.
"""

import asyncio
import enum
from dataclasses import dataclass, field

from dealboard.cache.snapshot import SnapshotCache
from dealboard.db.helpers import DatabaseError
from dealboard.infrastructure.observability.logging import get_logger
from dealboard.models.domain.deal_domain import Deal, Snapshot
from dealboard.services.batching import run_batched
from dealboard.services.crm_client import CrmClient
from dealboard.services.deal_enrichment import MARKER_PROPERTY, DealEnricher
from dealboard.services.stages_service import StagesService

logger = get_logger(__name__)


@dataclass(slots=True)
class ReconcileResult:
    snapshot: Snapshot
    bootstrap: bool = False
    changed: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def unchanged(self) -> bool:
        return not self.changed and not self.deleted

    def to_dict(self) -> dict:
        return {
            "bootstrap": self.bootstrap,
            "changed": len(self.changed),
            "deleted": len(self.deleted),
            "failed": len(self.failed),
            "deal_count": len(self.snapshot.data),
        }


def diff_markers(
    cached: dict[str, str | None], fresh: dict[str, str | None]
) -> tuple[list[str], list[str]]:
    """
    Partition ids into (changed, deleted).

    changed: ids in fresh whose marker differs from cached, or that cached
    lacks. deleted: ids in cached that fresh lacks. Order follows fresh
    and cached respectively.
    """
    changed = [deal_id for deal_id, marker in fresh.items() if deal_id not in cached or cached[deal_id] != marker]
    deleted = [deal_id for deal_id in cached if deal_id not in fresh]
    return changed, deleted


class DealReconciler:
    """Brings the deal snapshot up to date with the CRM."""

    def __init__(
        self,
        crm: CrmClient,
        snapshots: SnapshotCache,
        enricher: DealEnricher,
        stages: StagesService,
        batch_size: int,
        batch_delay_s: float,
    ):
        self._crm = crm
        self._snapshots = snapshots
        self._enricher = enricher
        self._stages = stages
        self._batch_size = batch_size
        self._batch_delay_s = batch_delay_s

    async def reconcile(self) -> ReconcileResult:
        """
        Run one reconciliation pass.

        Raises:
            CrmApiError: If the change probe fails
            DatabaseError: If the cache backing fails
        """
        listing = await self._crm.list_objects("deals", [MARKER_PROPERTY])
        fresh = {item.id: item.properties.get(MARKER_PROPERTY) for item in listing}

        snapshot = await self._snapshots.get_snapshot()
        bootstrap = snapshot is None
        cached_deals = {} if bootstrap else {deal.id: deal for deal in snapshot.data}

        changed, deleted = diff_markers({} if bootstrap else snapshot.markers(), fresh)

        if not bootstrap and not changed and not deleted:
            logger.info("Deal snapshot up to date", deal_count=len(snapshot.data))
            return ReconcileResult(snapshot=snapshot)

        logger.info(
            "Reconciling deal snapshot",
            bootstrap=bootstrap,
            upstream_count=len(fresh),
            changed=len(changed),
            deleted=len(deleted),
        )

        fetched, failed = await self._fetch_changed(changed)

        merged: list[Deal] = []
        for deal_id in fresh:
            if deal_id in fetched:
                merged.append(fetched[deal_id])
            elif deal_id in cached_deals:
                # Unchanged, or a failed refetch keeping its stale value
                merged.append(cached_deals[deal_id])

        new_snapshot = await self._snapshots.replace_snapshot(merged)
        result = ReconcileResult(
            snapshot=new_snapshot,
            bootstrap=bootstrap,
            changed=changed,
            deleted=deleted,
            failed=failed,
        )
        logger.info("Deal snapshot reconciled", **result.to_dict())
        return result

    async def _fetch_changed(self, deal_ids: list[str]) -> tuple[dict[str, Deal], list[str]]:
        if not deal_ids:
            return {}, []

        taxonomy = await self._stages.get_taxonomy()

        async def fetch(deal_id: str) -> Deal:
            return await self._enricher.fetch_deal(deal_id, taxonomy)

        results = await run_batched(deal_ids, fetch, self._batch_size, self._batch_delay_s)

        fetched: dict[str, Deal] = {}
        failed: list[str] = []
        for deal_id, result in zip(deal_ids, results):
            if result.ok:
                fetched[deal_id] = result.value
                continue
            if isinstance(result.error, DatabaseError):
                raise result.error
            failed.append(deal_id)
            logger.error(
                "Error fetching deal detail, keeping cached value",
                deal_id=deal_id,
                error=str(result.error),
                error_type=type(result.error).__name__,
            )
        return fetched, failed


class ReconcileState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


class ReconciliationController:
    """
    Serialises reconciliation passes.

    At most one pass runs at a time. A trigger that arrives while a pass is
    in flight is dropped, not queued.
    """

    def __init__(self, reconciler: DealReconciler):
        self._reconciler = reconciler
        self._state = ReconcileState.IDLE
        self._tasks: set[asyncio.Task] = set()
        self.last_result: ReconcileResult | None = None
        self.last_error: str | None = None

    @property
    def state(self) -> ReconcileState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is ReconcileState.RUNNING

    def _compare_and_set(self, expected: ReconcileState, new: ReconcileState) -> bool:
        # No await between check and set, so this is atomic on the event loop
        if self._state is not expected:
            return False
        self._state = new
        return True

    async def trigger(self) -> ReconcileResult | None:
        """Run a pass if idle. Returns None when skipped or when the pass failed."""
        if not self._compare_and_set(ReconcileState.IDLE, ReconcileState.RUNNING):
            logger.info("Reconciliation already in progress, skipping")
            return None

        try:
            result = await self._reconciler.reconcile()
            self.last_result = result
            self.last_error = None
            return result
        except Exception as e:
            self.last_error = f"{type(e).__name__}: {e}"
            logger.exception("Background reconciliation failed")
            return None
        finally:
            self._compare_and_set(ReconcileState.RUNNING, ReconcileState.IDLE)

    def trigger_in_background(self) -> asyncio.Task | None:
        """Schedule trigger() without awaiting it. Returns None when a pass is already running."""
        if self.is_running:
            logger.info("Reconciliation already in progress, not scheduling another")
            return None

        task = asyncio.create_task(self.trigger())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for scheduled background passes. Used at shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
