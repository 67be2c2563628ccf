"""
Next-step orchestration.

For one deal: sync its recent notes and emails into the engagement log,
ask the suggestion gate whether anything new happened, and only then pay
for a generator call.
"""

import asyncio
import re
from typing import Any

from dealboard.cache.backing import CacheBacking
from dealboard.cache.clock import Clock, utcnow
from dealboard.infrastructure.observability.logging import get_logger
from dealboard.models.domain.deal_domain import (
    DIRECTION_INBOUND,
    DIRECTION_NONE,
    DIRECTION_OUTBOUND,
    ENGAGEMENT_INBOUND_EMAIL,
    ENGAGEMENT_NOTE,
    ENGAGEMENT_OUTBOUND_EMAIL,
    Deal,
    EngagementRecord,
    SuggestionRecord,
    parse_timestamp,
)
from dealboard.services.crm_client import CrmApiError, CrmClient
from dealboard.services.suggestion_gate import SuggestionGate
from dealboard.services.suggestion_generator import SuggestionGenerator

logger = get_logger(__name__)

NO_ASSOCIATION_TEXT = "No company or contact associated"

MAX_EMAILS = 3
MAX_NOTES = 3

_KIND_BY_TYPE = {
    "NOTE": (ENGAGEMENT_NOTE, DIRECTION_NONE),
    "EMAIL": (ENGAGEMENT_OUTBOUND_EMAIL, DIRECTION_OUTBOUND),
    "INCOMING_EMAIL": (ENGAGEMENT_INBOUND_EMAIL, DIRECTION_INBOUND),
}

_TAG_RE = re.compile(r"<[^>]*>")
_SPACE_RE = re.compile(r"\s+")


def strip_html(html: str) -> str:
    return _SPACE_RE.sub(" ", _TAG_RE.sub(" ", html)).strip()


def parse_engagement(item: dict[str, Any], parent_entity_id: str) -> EngagementRecord | None:
    """Map a raw CRM engagement to a record; None for types the dashboard ignores."""
    engagement = item.get("engagement") or {}
    metadata = item.get("metadata") or {}
    engagement_type = engagement.get("type")
    if engagement_type not in _KIND_BY_TYPE:
        return None

    timestamp = parse_timestamp(engagement.get("timestamp") or engagement.get("createdAt"))
    if timestamp is None:
        return None

    kind, direction = _KIND_BY_TYPE[engagement_type]
    if engagement_type == "NOTE":
        content = metadata.get("body") or metadata.get("text")
    elif engagement_type == "EMAIL":
        raw = metadata.get("html") or metadata.get("text")
        content = strip_html(raw) if raw else None
    else:
        # Incoming emails only carry their subject
        content = f"[Received email with subject: {metadata.get('subject') or 'No subject'}]"

    participants = {
        key: metadata[key] for key in ("from", "to", "cc") if metadata.get(key) is not None
    }
    return EngagementRecord(
        id=str(engagement["id"]),
        parent_entity_id=parent_entity_id,
        kind=kind,
        timestamp=timestamp,
        direction=direction,
        content=content,
        subject=metadata.get("subject"),
        participants=participants,
    )


def select_recent(engagements: list[EngagementRecord]) -> list[EngagementRecord]:
    """Newest MAX_NOTES notes followed by newest MAX_EMAILS emails."""
    ordered = sorted(engagements, key=lambda e: e.timestamp, reverse=True)
    notes = [e for e in ordered if e.kind == ENGAGEMENT_NOTE][:MAX_NOTES]
    emails = [e for e in ordered if e.is_email][:MAX_EMAILS]
    return notes + emails


class NextStepService:
    def __init__(
        self,
        crm: CrmClient,
        backing: CacheBacking,
        generator: SuggestionGenerator,
        gate: SuggestionGate | None = None,
        clock: Clock = utcnow,
    ):
        self._crm = crm
        self._backing = backing
        self._generator = generator
        self._gate = gate or SuggestionGate(backing)
        self._clock = clock

    async def fetch_engagements(self, object_type: str, object_id: str, parent_entity_id: str) -> list[EngagementRecord]:
        try:
            raw = await self._crm.list_engagements(object_type, object_id)
        except CrmApiError as e:
            logger.error(
                "Error fetching engagements",
                object_type=object_type,
                object_id=object_id,
                error=str(e),
            )
            return []

        parsed = [parse_engagement(item, parent_entity_id) for item in raw]
        return select_recent([record for record in parsed if record is not None])

    async def sync_engagements(self, company_id: str | None, contact_id: str | None) -> list[EngagementRecord]:
        """Fetch recent activity (company first, contact as fallback) and upsert it into the log."""
        storage_id = company_id or contact_id
        engagements: list[EngagementRecord] = []
        if company_id:
            engagements = await self.fetch_engagements("COMPANY", company_id, storage_id)

        if not engagements and contact_id:
            logger.debug("Falling back to contact engagements", company_id=company_id, contact_id=contact_id)
            engagements = await self.fetch_engagements("CONTACT", contact_id, storage_id)

        for engagement in engagements:
            await self._backing.upsert_engagement(engagement)
        return engagements

    async def generate_for_deal(
        self, deal: Deal, contact_id: str | None = None, force_refresh: bool = False
    ) -> str:
        contact_id = contact_id or deal.primary_contact_id
        if not deal.company_id and not contact_id:
            logger.info("No company or contact for deal", deal_id=deal.id)
            return NO_ASSOCIATION_TEXT

        storage_id = deal.company_id or contact_id
        engagements = await self.sync_engagements(deal.company_id, contact_id)

        if not await self._gate.should_regenerate(deal.id, storage_id, force_refresh):
            existing = await self._backing.get_suggestion(deal.id)
            logger.debug("Serving cached next step", deal_id=deal.id)
            return existing.text

        text = await self._generator.generate(
            engagements, deal.name, deal.company_name or "Unknown Company"
        )
        now = self._clock()
        last_engagement_at = max((e.timestamp for e in engagements), default=None)
        await self._backing.upsert_suggestion(
            SuggestionRecord(
                entity_id=deal.id,
                parent_entity_id=storage_id,
                text=text,
                last_engagement_at=last_engagement_at,
                generated_at=now,
                updated_at=now,
            )
        )
        logger.info("Next step generated", deal_id=deal.id, forced=force_refresh)
        return text

    async def generate_for_deals(self, deals: list[Deal], delay_s: float) -> list[dict[str, Any]]:
        """Sequential, gated generation for many deals. One deal failing does not stop the rest."""
        results = []
        for index, deal in enumerate(deals):
            try:
                text = await self.generate_for_deal(deal, deal.primary_contact_id, force_refresh=False)
                results.append({"deal_id": deal.id, "success": True, "next_step": text})
            except Exception as e:
                logger.error("Error generating next step", deal_id=deal.id, error=str(e))
                results.append({"deal_id": deal.id, "success": False, "error": str(e)})

            if index < len(deals) - 1 and delay_s > 0:
                await asyncio.sleep(delay_s)

        succeeded = sum(1 for result in results if result["success"])
        logger.info("Bulk next step generation completed", succeeded=succeeded, total=len(deals))
        return results

    async def all_suggestions(self) -> dict[str, SuggestionRecord]:
        return {record.entity_id: record for record in await self._backing.list_suggestions()}
