"""
Deal dashboard API request/response models.
Used by routes for input validation and output formatting.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from dealboard.models.domain.deal_domain import Deal, PipelineStage, SuggestionRecord


class DealModel(BaseModel):
    """A deal as shown on the dashboard (also accepted back by next-step endpoints)."""

    id: str = Field(..., description="Deal ID")
    name: str = Field(default="Untitled Deal", description="Deal name")
    stage_id: str | None = Field(None, description="Current pipeline stage ID")
    stage_label: str = Field(default="N/A", description="Current pipeline stage label")
    last_modified: str | None = Field(None, description="Upstream last-modified marker")
    company_id: str | None = Field(None, description="Primary company ID")
    company_name: str | None = Field(None, description="Primary company name")
    primary_contact_id: str | None = Field(None, description="Primary contact ID")
    primary_contact_name: str | None = Field(None, description="Primary contact display name")
    days_in_stage: int | None = Field(None, description="Whole days in the current stage")
    last_meeting_date: datetime | None = Field(None, description="Most recent company meeting")
    amount: str | None = Field(None, description="Deal amount")
    close_date: str | None = Field(None, description="Expected close date")

    @classmethod
    def from_domain(cls, deal: Deal) -> "DealModel":
        return cls(**deal.to_dict())

    def to_domain(self) -> Deal:
        return Deal.from_dict(self.model_dump())


class StageModel(BaseModel):
    id: str
    label: str
    display_order: int
    pipeline_id: str
    pipeline_label: str | None = None

    @classmethod
    def from_domain(cls, stage: PipelineStage) -> "StageModel":
        return cls(**stage.to_dict())


class UpdateStageRequest(BaseModel):
    stage_id: str = Field(..., min_length=1, description="Target pipeline stage ID")


class UpdateStageResponse(BaseModel):
    success: bool
    deal: dict[str, Any]


class NextStepModel(BaseModel):
    next_step: str
    last_engagement_at: datetime | None = None
    generated_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, record: SuggestionRecord) -> "NextStepModel":
        return cls(
            next_step=record.text,
            last_engagement_at=record.last_engagement_at,
            generated_at=record.generated_at,
            updated_at=record.updated_at,
        )


class GenerateNextStepRequest(BaseModel):
    deal: DealModel
    contact_id: str | None = None


class GenerateNextStepResponse(BaseModel):
    success: bool
    next_step: str


class GenerateAllRequest(BaseModel):
    deals: list[DealModel]


class GenerateAllResult(BaseModel):
    deal_id: str
    success: bool
    next_step: str | None = None
    error: str | None = None


class GenerateAllResponse(BaseModel):
    success: bool
    results: list[GenerateAllResult]
