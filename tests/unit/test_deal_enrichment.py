"""
Tests for deal detail helpers and the meeting date resolver.
"""

from datetime import UTC, datetime

import pytest

from dealboard.models.domain.deal_domain import StageTaxonomy, parse_timestamp
from dealboard.services.deal_enrichment import (
    MeetingDateResolver,
    contact_display_name,
    days_in_stage,
    meeting_start,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def test_days_in_stage_uses_latest_entry_into_current_stage():
    history = [
        {"value": "qualified", "timestamp": "2025-01-01T00:00:00Z"},
        {"value": "proposal", "timestamp": "2025-01-15T00:00:00Z"},
        # Moved back into qualified later
        {"value": "qualified", "timestamp": "2025-02-26T11:00:00Z"},
    ]

    assert days_in_stage(history, "qualified", NOW) == 3


def test_days_in_stage_floors_partial_days():
    history = [{"value": "qualified", "timestamp": "2025-03-01T00:00:00Z"}]
    assert days_in_stage(history, "qualified", NOW) == 0


def test_days_in_stage_without_matching_entry():
    history = [{"value": "proposal", "timestamp": "2025-01-15T00:00:00Z"}]
    assert days_in_stage(history, "qualified", NOW) is None


def test_days_in_stage_without_history():
    assert days_in_stage([], "qualified", NOW) is None
    assert days_in_stage([{"value": "x", "timestamp": "2025-01-01T00:00:00Z"}], None, NOW) is None


def test_contact_display_name_falls_back_to_email():
    assert contact_display_name({"firstname": "Ada", "lastname": "Lovelace"}) == "Ada Lovelace"
    assert contact_display_name({"firstname": "Ada"}) == "Ada"
    assert contact_display_name({"email": "ada@example.com"}) == "ada@example.com"
    assert contact_display_name({}) is None


@pytest.mark.parametrize(
    "value,expected",
    [
        ("2025-02-01T10:00:00Z", datetime(2025, 2, 1, 10, tzinfo=UTC)),
        ("2025-02-01T10:00:00.000+00:00", datetime(2025, 2, 1, 10, tzinfo=UTC)),
        (1738404000000, datetime(2025, 2, 1, 10, tzinfo=UTC)),
        ("1738404000000", datetime(2025, 2, 1, 10, tzinfo=UTC)),
        ("", None),
        (None, None),
        ("garbage", None),
    ],
)
def test_parse_timestamp(value, expected):
    assert parse_timestamp(value) == expected


def test_stage_taxonomy_orders_and_labels():
    taxonomy = StageTaxonomy.from_pipelines(
        [
            {
                "id": "p1",
                "label": "Sales",
                "stages": [
                    {"id": "b", "label": "Second", "displayOrder": 2},
                    {"id": "a", "label": "First", "displayOrder": 1},
                ],
            }
        ]
    )

    assert [stage.id for stage in taxonomy.all_stages] == ["a", "b"]
    assert taxonomy.label_for("b") == "Second"
    assert taxonomy.label_for("unknown") == "unknown"
    assert taxonomy.label_for(None) == "N/A"


@pytest.mark.asyncio
async def test_meeting_dates_fetched_only_when_id_set_changes(fake_crm, caches):
    fake_crm.company_meetings["c1"] = ["m1"]
    fake_crm.meetings["m1"] = {"hs_meeting_start_time": "2025-02-10T09:00:00Z"}
    resolver = MeetingDateResolver(fake_crm, caches.meetings, batch_size=5, batch_delay_s=0)

    first = await resolver.last_meeting_date("c1")
    second = await resolver.last_meeting_date("c1")

    assert first == second == datetime(2025, 2, 10, 9, tzinfo=UTC)
    assert fake_crm.count("get_object", "meetings") == 1

    fake_crm.company_meetings["c1"] = ["m1", "m2"]
    fake_crm.meetings["m2"] = {"hs_timestamp": "2025-02-27T09:00:00Z"}

    third = await resolver.last_meeting_date("c1")

    assert third == datetime(2025, 2, 27, 9, tzinfo=UTC)
    assert fake_crm.count("get_object", "meetings") == 3


@pytest.mark.asyncio
async def test_meeting_association_failure_is_not_cached(fake_crm, caches):
    fake_crm.failing.add(("companies:meetings", "c1"))
    resolver = MeetingDateResolver(fake_crm, caches.meetings, batch_size=5, batch_delay_s=0)

    assert await resolver.last_meeting_date("c1") is None
    assert await caches.meetings.get_if_identity_unchanged("c1", []) is None


@pytest.mark.asyncio
async def test_company_without_meetings(fake_crm, caches):
    resolver = MeetingDateResolver(fake_crm, caches.meetings, batch_size=5, batch_delay_s=0)

    assert await resolver.last_meeting_date("c1") is None
    assert fake_crm.count("get_object", "meetings") == 0


@pytest.mark.asyncio
async def test_partial_meeting_fetch_is_not_cached(fake_crm, caches):
    fake_crm.company_meetings["c1"] = ["m1", "m2"]
    fake_crm.meetings["m1"] = {"hs_meeting_start_time": "2025-02-01T09:00:00Z"}
    fake_crm.meetings["m2"] = {"hs_meeting_start_time": "2025-02-20T09:00:00Z"}
    fake_crm.failing.add(("meetings", "m2"))
    resolver = MeetingDateResolver(fake_crm, caches.meetings, batch_size=5, batch_delay_s=0)

    # Best effort while m2 is unavailable
    assert await resolver.last_meeting_date("c1") == datetime(2025, 2, 1, 9, tzinfo=UTC)
    assert await caches.meetings.get_if_identity_unchanged("c1", ["m1", "m2"]) is None

    fake_crm.failing.clear()

    assert await resolver.last_meeting_date("c1") == datetime(2025, 2, 20, 9, tzinfo=UTC)
    assert fake_crm.count("get_object", "meetings") == 4

    # Complete now, so the identity is served from cache
    assert await resolver.last_meeting_date("c1") == datetime(2025, 2, 20, 9, tzinfo=UTC)
    assert fake_crm.count("get_object", "meetings") == 4


def test_meeting_start_falls_back_when_start_time_unparseable():
    props = {"hs_meeting_start_time": "not a date", "hs_timestamp": "2025-02-20T09:00:00Z"}

    assert meeting_start(props) == datetime(2025, 2, 20, 9, tzinfo=UTC)
    both = {"hs_meeting_start_time": "2025-02-10T09:00:00Z", "hs_timestamp": "2025-02-20T09:00:00Z"}
    assert meeting_start(both) == datetime(2025, 2, 10, 9, tzinfo=UTC)
    assert meeting_start({}) is None
