"""
Tests for change-detection reconciliation of the deal snapshot.
"""

import asyncio

import pytest

from dealboard.db.helpers import DatabaseError
from dealboard.models.domain.deal_domain import Deal
from dealboard.services.crm_client import CrmApiError
from dealboard.services.reconciler import ReconcileState, ReconciliationController, diff_markers


def _deal(deal_id: str, marker: str, name: str | None = None) -> Deal:
    return Deal(
        id=deal_id,
        name=name or f"Deal {deal_id}",
        stage_id="appointmentscheduled",
        stage_label="Appointment Scheduled",
        last_modified=marker,
    )


def test_diff_markers_partitions_changed_and_deleted():
    cached = {"A": "1", "B": "1", "C": "1"}
    fresh = {"A": "1", "B": "2", "D": "1"}

    changed, deleted = diff_markers(cached, fresh)

    assert changed == ["B", "D"]
    assert deleted == ["C"]


def test_diff_markers_identical_is_empty():
    assert diff_markers({"A": "1"}, {"A": "1"}) == ([], [])


@pytest.mark.asyncio
async def test_changed_new_and_deleted_deals(container, fake_crm):
    await container.caches.deals.replace_snapshot(
        [_deal("A", "1", "Old A"), _deal("B", "1", "Old B"), _deal("C", "1", "Old C")]
    )
    fake_crm.add_deal("A", "1", name="Old A")
    fake_crm.add_deal("B", "2", name="New B")
    fake_crm.add_deal("D", "1", name="New D")

    result = await container.reconciler.reconcile()

    assert result.bootstrap is False
    assert sorted(result.changed) == ["B", "D"]
    assert result.deleted == ["C"]
    assert fake_crm.count("get_object", "deals") == 2
    fetched = [call[2] for call in fake_crm.calls if call[:2] == ("get_object", "deals")]
    assert "A" not in fetched

    by_id = {deal.id: deal for deal in result.snapshot.data}
    assert set(by_id) == {"A", "B", "D"}
    assert by_id["A"].name == "Old A"
    assert by_id["B"].name == "New B"
    assert by_id["B"].last_modified == "2"
    assert by_id["B"].stage_label == "Appointment Scheduled"

    stored = await container.caches.deals.get_snapshot()
    assert {deal.id for deal in stored.data} == {"A", "B", "D"}


@pytest.mark.asyncio
async def test_bootstrap_then_no_change_fetches_nothing(container, fake_crm, clock):
    for deal_id in ("1", "2", "3"):
        fake_crm.add_deal(deal_id, "100")

    first = await container.reconciler.reconcile()
    assert first.bootstrap is True
    assert fake_crm.count("get_object", "deals") == 3
    first_fetched = first.snapshot.last_fetched

    clock.advance(60)
    second = await container.reconciler.reconcile()

    assert second.unchanged
    assert fake_crm.count("get_object", "deals") == 3
    assert fake_crm.count("list_objects", "deals") == 2
    # Snapshot untouched, so its age keeps growing
    assert second.snapshot.last_fetched == first_fetched


@pytest.mark.asyncio
async def test_failed_fetch_keeps_stale_value(container, fake_crm):
    await container.caches.deals.replace_snapshot([_deal("A", "1", "Stale A"), _deal("B", "1")])
    fake_crm.add_deal("A", "2", name="Fresh A")
    fake_crm.add_deal("B", "1")
    fake_crm.failing.add(("deals", "A"))

    result = await container.reconciler.reconcile()

    assert result.failed == ["A"]
    by_id = {deal.id: deal for deal in result.snapshot.data}
    assert by_id["A"].name == "Stale A"
    assert by_id["A"].last_modified == "1"


@pytest.mark.asyncio
async def test_failed_fetch_retried_next_pass(container, fake_crm):
    await container.caches.deals.replace_snapshot([_deal("A", "1", "Stale A")])
    fake_crm.add_deal("A", "2", name="Fresh A")
    fake_crm.failing.add(("deals", "A"))
    await container.reconciler.reconcile()

    fake_crm.failing.clear()
    result = await container.reconciler.reconcile()

    assert result.changed == ["A"]
    assert result.snapshot.data[0].name == "Fresh A"


@pytest.mark.asyncio
async def test_merged_snapshot_follows_upstream_order(container, fake_crm):
    await container.caches.deals.replace_snapshot([_deal("B", "1"), _deal("A", "1")])
    fake_crm.add_deal("A", "1")
    fake_crm.add_deal("C", "1")
    fake_crm.add_deal("B", "1")

    result = await container.reconciler.reconcile()

    assert [deal.id for deal in result.snapshot.data] == ["A", "C", "B"]


@pytest.mark.asyncio
async def test_probe_failure_leaves_snapshot(container, fake_crm):
    await container.caches.deals.replace_snapshot([_deal("A", "1")])
    fake_crm.fail_listing = True

    with pytest.raises(CrmApiError):
        await container.reconciler.reconcile()

    stored = await container.caches.deals.get_snapshot()
    assert [deal.id for deal in stored.data] == ["A"]


@pytest.mark.asyncio
async def test_backing_failure_during_fetch_propagates(container, fake_crm, monkeypatch):
    fake_crm.add_deal("A", "1", company_id="c1")
    fake_crm.companies["c1"] = {"name": "Acme"}

    async def broken_put(*args, **kwargs):
        raise DatabaseError("connection lost", operation="put_entry")

    monkeypatch.setattr(container.backing, "put_entry", broken_put)

    with pytest.raises(DatabaseError):
        await container.reconciler.reconcile()

    assert await container.caches.deals.get_snapshot() is None


@pytest.mark.asyncio
async def test_enrichment_joins_sub_entities(container, fake_crm, clock):
    fake_crm.add_deal("A", "1", stage="qualifiedtobuy", company_id="c1", contact_id="p1")
    fake_crm.deal_history["A"] = [
        {"value": "appointmentscheduled", "timestamp": "2025-02-01T00:00:00Z"},
        {"value": "qualifiedtobuy", "timestamp": "2025-02-20T06:00:00Z"},
    ]
    fake_crm.companies["c1"] = {"name": "Acme"}
    fake_crm.contacts["p1"] = {"firstname": "Ada", "lastname": "Lovelace"}
    fake_crm.company_meetings["c1"] = ["m1", "m2"]
    fake_crm.meetings["m1"] = {"hs_meeting_start_time": "2025-02-10T09:00:00Z"}
    fake_crm.meetings["m2"] = {"hs_timestamp": "2025-02-25T09:00:00Z"}

    result = await container.reconciler.reconcile()
    deal = result.snapshot.data[0]

    assert deal.company_name == "Acme"
    assert deal.primary_contact_name == "Ada Lovelace"
    assert deal.stage_label == "Qualified To Buy"
    assert deal.days_in_stage == 9
    assert deal.last_meeting_date.isoformat() == "2025-02-25T09:00:00+00:00"


@pytest.mark.asyncio
async def test_controller_skips_while_running(container):
    controller = container.controller
    release = asyncio.Event()
    calls = 0

    async def slow_reconcile():
        nonlocal calls
        calls += 1
        await release.wait()
        return None

    container.reconciler.reconcile = slow_reconcile

    first = asyncio.create_task(controller.trigger())
    await asyncio.sleep(0)
    assert controller.state is ReconcileState.RUNNING

    assert await controller.trigger() is None
    assert controller.trigger_in_background() is None

    release.set()
    await first
    assert calls == 1
    assert controller.state is ReconcileState.IDLE


@pytest.mark.asyncio
async def test_controller_records_failure_and_returns_to_idle():
    class FailingReconciler:
        async def reconcile(self):
            raise CrmApiError("upstream down", status_code=503)

    controller = ReconciliationController(FailingReconciler())

    assert await controller.trigger() is None
    assert controller.state is ReconcileState.IDLE
    assert "upstream down" in controller.last_error


@pytest.mark.asyncio
async def test_trigger_in_background_runs_a_pass(container, fake_crm):
    fake_crm.add_deal("A", "1")

    task = container.controller.trigger_in_background()
    assert task is not None
    await container.controller.wait_idle()

    assert container.controller.last_result.bootstrap is True
    assert container.controller.is_running is False
