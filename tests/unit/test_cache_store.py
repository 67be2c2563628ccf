"""
Tests for the key-value caches, the single-slot caches and the cache facade.
"""

from datetime import UTC, datetime, timedelta

import pytest

from dealboard.cache.backing import NAMESPACE_COMPANY, CacheBackingError
from dealboard.cache.store import KeyValueCache, build_backing
from dealboard.cache.memory_backing import InMemoryCacheBacking
from dealboard.config import Settings
from dealboard.models.domain.deal_domain import (
    ENGAGEMENT_NOTE,
    Deal,
    EngagementRecord,
    PipelineStage,
    StageTaxonomy,
    SuggestionRecord,
)


@pytest.mark.asyncio
async def test_get_returns_value_within_max_age(backing, clock):
    cache = KeyValueCache(backing, NAMESPACE_COMPANY, clock)
    await cache.set("c1", {"name": "Acme"})

    clock.advance(59)

    assert await cache.get("c1", max_age_s=60) == {"name": "Acme"}


@pytest.mark.asyncio
async def test_get_misses_once_older_than_max_age(backing, clock):
    cache = KeyValueCache(backing, NAMESPACE_COMPANY, clock)
    await cache.set("c1", {"name": "Acme"})

    clock.advance(61)

    assert await cache.get("c1", max_age_s=60) is None
    # Still stored, just not served
    assert await cache.count() == 1


@pytest.mark.asyncio
async def test_set_overwrites_and_resets_age(backing, clock):
    cache = KeyValueCache(backing, NAMESPACE_COMPANY, clock)
    await cache.set("c1", {"name": "Acme"})
    clock.advance(120)
    await cache.set("c1", {"name": "Acme Corp"})

    assert await cache.get("c1", max_age_s=60) == {"name": "Acme Corp"}


@pytest.mark.asyncio
async def test_get_unknown_key_is_none(backing, clock):
    cache = KeyValueCache(backing, NAMESPACE_COMPANY, clock)
    assert await cache.get("missing", max_age_s=60) is None


@pytest.mark.asyncio
async def test_returned_values_are_copies(backing, clock):
    cache = KeyValueCache(backing, NAMESPACE_COMPANY, clock)
    await cache.set("c1", {"name": "Acme"})

    value = await cache.get("c1", max_age_s=60)
    value["name"] = "Mutated"

    assert await cache.get("c1", max_age_s=60) == {"name": "Acme"}


@pytest.mark.asyncio
async def test_unknown_namespace_rejected(backing):
    with pytest.raises(CacheBackingError):
        await backing.get_entry("widgets", "1")


@pytest.mark.asyncio
async def test_snapshot_replace_is_wholesale(caches, clock):
    first = [Deal(id="1", name="A", stage_id="s1", stage_label="S1", last_modified="m1")]
    second = [
        Deal(id="2", name="B", stage_id="s1", stage_label="S1", last_modified="m2"),
        Deal(id="3", name="C", stage_id="s2", stage_label="S2", last_modified="m3"),
    ]

    await caches.deals.replace_snapshot(first)
    clock.advance(10)
    await caches.deals.replace_snapshot(second)

    snapshot = await caches.deals.get_snapshot()
    assert [deal.id for deal in snapshot.data] == ["2", "3"]
    assert snapshot.last_fetched == clock.now
    assert snapshot.markers() == {"2": "m2", "3": "m3"}


@pytest.mark.asyncio
async def test_snapshot_age(caches, clock):
    assert await caches.deals.age_seconds() is None

    await caches.deals.replace_snapshot([])
    clock.advance(90)

    assert await caches.deals.age_seconds() == pytest.approx(90)


@pytest.mark.asyncio
async def test_snapshot_round_trips_meeting_date(caches, clock):
    meeting = clock.now - timedelta(days=3)
    deal = Deal(
        id="1",
        name="A",
        stage_id="s1",
        stage_label="S1",
        last_modified="m1",
        company_id="c1",
        last_meeting_date=meeting,
    )

    await caches.deals.replace_snapshot([deal])
    snapshot = await caches.deals.get_snapshot()

    assert snapshot.data[0].last_meeting_date == meeting
    assert snapshot.data[0].company_id == "c1"


@pytest.mark.asyncio
async def test_clear_all_keeps_suggestions(caches, backing, clock):
    await caches.deals.replace_snapshot([])
    await caches.stages.replace(
        StageTaxonomy(all_stages=[PipelineStage(id="s1", label="S1", display_order=0, pipeline_id="p")])
    )
    await caches.companies.set("c1", {"name": "Acme"})
    await backing.upsert_suggestion(
        SuggestionRecord(
            entity_id="d1",
            parent_entity_id="c1",
            text="Call them",
            last_engagement_at=None,
            generated_at=clock.now,
            updated_at=clock.now,
        )
    )

    await caches.clear_all()

    assert await caches.deals.get_snapshot() is None
    assert await caches.stages.exists() is False
    assert await caches.companies.count() == 0
    assert (await backing.get_suggestion("d1")).text == "Call them"


@pytest.mark.asyncio
async def test_engagement_upsert_replaces_by_id(backing):
    first = datetime(2025, 2, 1, 9, tzinfo=UTC)
    edited = datetime(2025, 2, 3, 9, tzinfo=UTC)
    await backing.upsert_engagement(
        EngagementRecord(id="e1", parent_entity_id="c1", kind=ENGAGEMENT_NOTE, timestamp=first, content="Draft")
    )
    await backing.upsert_engagement(
        EngagementRecord(id="e1", parent_entity_id="c1", kind=ENGAGEMENT_NOTE, timestamp=edited, content="Final")
    )

    records = await backing.list_engagements("c1")

    assert len(records) == 1
    assert records[0].content == "Final"
    assert await backing.latest_engagement_timestamp("c1") == edited


@pytest.mark.asyncio
async def test_suggestion_upsert_keeps_generated_at(backing, clock):
    generated = clock.now
    await backing.upsert_suggestion(
        SuggestionRecord(
            entity_id="d1",
            parent_entity_id="c1",
            text="Call them",
            last_engagement_at=None,
            generated_at=generated,
            updated_at=generated,
        )
    )
    clock.advance(3600)
    await backing.upsert_suggestion(
        SuggestionRecord(
            entity_id="d1",
            parent_entity_id="c1",
            text="Send the contract",
            last_engagement_at=generated,
            generated_at=clock.now,
            updated_at=clock.now,
        )
    )

    record = await backing.get_suggestion("d1")

    assert record.text == "Send the contract"
    assert record.generated_at == generated
    assert record.updated_at == generated + timedelta(hours=1)
    assert len(await backing.list_suggestions()) == 1


@pytest.mark.asyncio
async def test_stats_reports_counts(caches, clock):
    await caches.deals.replace_snapshot(
        [Deal(id="1", name="A", stage_id="s1", stage_label="S1", last_modified="m1")]
    )
    await caches.contacts.set("p1", {"firstname": "Ada"})
    clock.advance(30)

    stats = await caches.stats()

    assert stats["backing"] == "memory"
    assert stats["deals"]["count"] == 1
    assert stats["deals"]["age_seconds"] == 30.0
    assert stats["contacts"] == 1
    assert stats["companies"] == 0
    assert stats["pipeline_stages"] is False


def test_build_backing_defaults_to_memory():
    backing = build_backing(Settings(_env_file=None, DATABASE_URL=None))
    assert isinstance(backing, InMemoryCacheBacking)
