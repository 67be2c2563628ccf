from datetime import UTC, datetime, timedelta

import pytest

from dealboard.cache.memory_backing import InMemoryCacheBacking
from dealboard.cache.store import CacheStore
from dealboard.config import Settings
from dealboard.models.domain.deal_domain import CrmObject
from dealboard.services.container import ServiceContainer
from dealboard.services.crm_client import CrmApiError
from dealboard.services.deal_enrichment import MARKER_PROPERTY, STAGE_PROPERTY

START = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Settable clock; call it like utcnow()."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeCrmClient:
    """In-memory CRM with per-call counters and injectable failures."""

    def __init__(self):
        self.deals: dict[str, dict] = {}
        self.deal_history: dict[str, list[dict]] = {}
        self.deal_associations: dict[str, dict[str, list[str]]] = {}
        self.companies: dict[str, dict] = {}
        self.contacts: dict[str, dict] = {}
        self.meetings: dict[str, dict] = {}
        self.company_meetings: dict[str, list[str]] = {}
        self.pipelines: list[dict] = []
        self.engagements: dict[tuple[str, str], list[dict]] = {}
        self.failing: set[tuple[str, str]] = set()
        self.fail_listing = False
        self.calls: list[tuple] = []
        self.updates: list[tuple] = []
        self.closed = False

    def add_deal(
        self,
        deal_id: str,
        marker: str,
        *,
        name: str | None = None,
        stage: str = "appointmentscheduled",
        company_id: str | None = None,
        contact_id: str | None = None,
    ) -> None:
        self.deals[deal_id] = {
            "dealname": name or f"Deal {deal_id}",
            STAGE_PROPERTY: stage,
            MARKER_PROPERTY: marker,
        }
        associations = {}
        if company_id:
            associations["companies"] = [company_id]
        if contact_id:
            associations["contacts"] = [contact_id]
        self.deal_associations[deal_id] = associations

    def count(self, method: str, kind: str | None = None) -> int:
        return sum(1 for call in self.calls if call[0] == method and (kind is None or call[1] == kind))

    def _maybe_fail(self, kind: str, object_id: str) -> None:
        if (kind, object_id) in self.failing:
            raise CrmApiError(f"{kind} {object_id} unavailable", status_code=500)

    async def list_objects(self, kind, properties, associations=None):
        self.calls.append(("list_objects", kind))
        if self.fail_listing:
            raise CrmApiError("listing unavailable", status_code=503)
        return [
            CrmObject(id=deal_id, properties={MARKER_PROPERTY: props[MARKER_PROPERTY]})
            for deal_id, props in self.deals.items()
        ]

    async def get_object(self, kind, object_id, properties, associations=None, properties_with_history=None):
        self.calls.append(("get_object", kind, object_id))
        self._maybe_fail(kind, object_id)
        if kind == "deals":
            return CrmObject(
                id=object_id,
                properties=dict(self.deals[object_id]),
                associations=self.deal_associations.get(object_id, {}),
                properties_with_history={STAGE_PROPERTY: self.deal_history.get(object_id, [])},
            )
        store = {"companies": self.companies, "contacts": self.contacts, "meetings": self.meetings}[kind]
        return CrmObject(id=object_id, properties=dict(store[object_id]))

    async def list_associations(self, kind, object_id, to_kind):
        self.calls.append(("list_associations", kind, object_id))
        self._maybe_fail(f"{kind}:{to_kind}", object_id)
        return list(self.company_meetings.get(object_id, []))

    async def list_pipelines(self, kind="deals"):
        self.calls.append(("list_pipelines", kind))
        return self.pipelines

    async def list_engagements(self, object_type, object_id):
        self.calls.append(("list_engagements", object_type, object_id))
        self._maybe_fail(object_type, object_id)
        return list(self.engagements.get((object_type, object_id), []))

    async def update_object(self, kind, object_id, properties):
        self.calls.append(("update_object", kind, object_id))
        self._maybe_fail(kind, object_id)
        self.updates.append((kind, object_id, properties))
        return {"id": object_id, "properties": properties}

    async def close(self):
        self.closed = True


class FakeGenerator:
    """Records generator calls instead of calling a model."""

    def __init__(self, text: str = "Send the revised proposal by Friday"):
        self.text = text
        self.calls: list[dict] = []

    async def generate(self, engagements, deal_name, company_name):
        self.calls.append(
            {"engagements": list(engagements), "deal_name": deal_name, "company_name": company_name}
        )
        return self.text


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backing():
    return InMemoryCacheBacking()


@pytest.fixture
def caches(backing, clock):
    return CacheStore(backing, clock)


@pytest.fixture
def fake_crm():
    crm = FakeCrmClient()
    crm.pipelines = [
        {
            "id": "default",
            "label": "Sales Pipeline",
            "stages": [
                {"id": "closedwon", "label": "Closed Won", "displayOrder": 5},
                {"id": "appointmentscheduled", "label": "Appointment Scheduled", "displayOrder": 0},
                {"id": "qualifiedtobuy", "label": "Qualified To Buy", "displayOrder": 1},
            ],
        }
    ]
    return crm


@pytest.fixture
def fake_generator():
    return FakeGenerator()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        DATABASE_URL=None,
        CRM_ACCESS_TOKEN="pat-test",
        OPENAI_API_KEY="sk-test",
        CRM_BATCH_SIZE=2,
        CRM_BATCH_DELAY_SECONDS=0,
        MEETING_BATCH_DELAY_SECONDS=0,
        BULK_SUGGESTION_DELAY_SECONDS=0,
    )


@pytest.fixture
def container(test_settings, backing, fake_crm, fake_generator, clock):
    return ServiceContainer.build(
        test_settings,
        backing=backing,
        crm=fake_crm,
        generator=fake_generator,
        clock=clock,
    )
