"""
Deal dashboard domain models.

Lightweight dataclasses shared by the cache layer, the reconciler and the
next-step services. Each model that is persisted knows how to turn itself
into a JSON-ready dict and back.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

ENGAGEMENT_NOTE = "note"
ENGAGEMENT_OUTBOUND_EMAIL = "outbound-email"
ENGAGEMENT_INBOUND_EMAIL = "inbound-email"

DIRECTION_INBOUND = "inbound"
DIRECTION_OUTBOUND = "outbound"
DIRECTION_NONE = "none"


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse the timestamp shapes the CRM hands back.

    Accepts aware/naive datetimes, ISO-8601 strings (with or without a
    trailing Z) and epoch milliseconds as int or numeric string. Returns a
    UTC-aware datetime, or None when the value is empty or unparseable.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)

    if isinstance(value, int | float):
        return datetime.fromtimestamp(value / 1000, tz=UTC)

    text = str(value).strip()
    if text.isdigit():
        return datetime.fromtimestamp(int(text) / 1000, tz=UTC)

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(slots=True)
class CacheEntry:
    """A cached value and the moment it was written."""

    value: Any
    cached_at: datetime

    def age_seconds(self, now: datetime) -> float:
        return (now - self.cached_at).total_seconds()


@dataclass(slots=True)
class CrmObject:
    """A CRM record as returned by the bulk lister or the detail fetcher."""

    id: str
    properties: dict[str, Any] = field(default_factory=dict)
    associations: dict[str, list[str]] = field(default_factory=dict)
    properties_with_history: dict[str, list[dict]] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict) -> "CrmObject":
        associations = {}
        for kind, payload in (data.get("associations") or {}).items():
            associations[kind] = [str(item["id"]) for item in payload.get("results", [])]

        return cls(
            id=str(data["id"]),
            properties=data.get("properties") or {},
            associations=associations,
            properties_with_history=data.get("propertiesWithHistory") or {},
        )

    def first_association(self, kind: str) -> str | None:
        ids = self.associations.get(kind) or []
        return ids[0] if ids else None


@dataclass(slots=True)
class Deal:
    """A pipeline entity as shown on the dashboard."""

    id: str
    name: str
    stage_id: str | None
    stage_label: str
    last_modified: str | None
    company_id: str | None = None
    company_name: str | None = None
    primary_contact_id: str | None = None
    primary_contact_name: str | None = None
    days_in_stage: int | None = None
    last_meeting_date: datetime | None = None
    amount: str | None = None
    close_date: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "stage_id": self.stage_id,
            "stage_label": self.stage_label,
            "last_modified": self.last_modified,
            "company_id": self.company_id,
            "company_name": self.company_name,
            "primary_contact_id": self.primary_contact_id,
            "primary_contact_name": self.primary_contact_name,
            "days_in_stage": self.days_in_stage,
            "last_meeting_date": _isoformat(self.last_meeting_date),
            "amount": self.amount,
            "close_date": self.close_date,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Deal":
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "Untitled Deal",
            stage_id=data.get("stage_id"),
            stage_label=data.get("stage_label") or "N/A",
            last_modified=data.get("last_modified"),
            company_id=data.get("company_id"),
            company_name=data.get("company_name"),
            primary_contact_id=data.get("primary_contact_id"),
            primary_contact_name=data.get("primary_contact_name"),
            days_in_stage=data.get("days_in_stage"),
            last_meeting_date=parse_timestamp(data.get("last_meeting_date")),
            amount=data.get("amount"),
            close_date=data.get("close_date"),
        )


@dataclass(slots=True)
class Snapshot:
    """The single current materialisation of the deal collection."""

    data: list[Deal]
    last_fetched: datetime

    def age_seconds(self, now: datetime) -> float:
        return (now - self.last_fetched).total_seconds()

    def markers(self) -> dict[str, str | None]:
        return {deal.id: deal.last_modified for deal in self.data}


@dataclass(frozen=True, slots=True)
class MeetingIdentity:
    """Last meeting date for a company, fingerprinted by its meeting ids."""

    last_meeting_date: datetime | None
    meeting_ids: tuple[str, ...]


@dataclass(slots=True)
class PipelineStage:
    id: str
    label: str
    display_order: int
    pipeline_id: str
    pipeline_label: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "display_order": self.display_order,
            "pipeline_id": self.pipeline_id,
            "pipeline_label": self.pipeline_label,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineStage":
        return cls(
            id=str(data["id"]),
            label=data.get("label", ""),
            display_order=int(data.get("display_order") or 0),
            pipeline_id=str(data.get("pipeline_id", "")),
            pipeline_label=data.get("pipeline_label"),
        )


@dataclass(slots=True)
class StageTaxonomy:
    """All pipeline stages, ordered for display and indexed by id."""

    all_stages: list[PipelineStage]

    @property
    def stages_map(self) -> dict[str, PipelineStage]:
        return {stage.id: stage for stage in self.all_stages}

    def label_for(self, stage_id: str | None) -> str:
        stage = self.stages_map.get(stage_id) if stage_id else None
        if stage:
            return stage.label
        return stage_id or "N/A"

    @classmethod
    def from_pipelines(cls, pipelines: list[dict]) -> "StageTaxonomy":
        stages = [
            PipelineStage(
                id=str(stage["id"]),
                label=stage.get("label", ""),
                display_order=int(stage.get("displayOrder") or 0),
                pipeline_id=str(pipeline["id"]),
                pipeline_label=pipeline.get("label"),
            )
            for pipeline in pipelines
            for stage in pipeline.get("stages", [])
        ]
        stages.sort(key=lambda stage: stage.display_order)
        return cls(all_stages=stages)

    def to_dict(self) -> dict[str, Any]:
        return {"all_stages": [stage.to_dict() for stage in self.all_stages]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StageTaxonomy":
        return cls(all_stages=[PipelineStage.from_dict(s) for s in data.get("all_stages", [])])


@dataclass(slots=True)
class EngagementRecord:
    """One note or email attached to a company or contact."""

    id: str
    parent_entity_id: str
    kind: str
    timestamp: datetime
    direction: str = DIRECTION_NONE
    content: str | None = None
    subject: str | None = None
    participants: dict[str, Any] = field(default_factory=dict)

    @property
    def is_email(self) -> bool:
        return self.kind in (ENGAGEMENT_OUTBOUND_EMAIL, ENGAGEMENT_INBOUND_EMAIL)


@dataclass(slots=True)
class SuggestionRecord:
    """The stored AI next step for a deal."""

    entity_id: str
    parent_entity_id: str
    text: str
    last_engagement_at: datetime | None
    generated_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "deal_id": self.entity_id,
            "company_id": self.parent_entity_id,
            "next_step": self.text,
            "last_engagement_at": _isoformat(self.last_engagement_at),
            "generated_at": _isoformat(self.generated_at),
            "updated_at": _isoformat(self.updated_at),
        }
