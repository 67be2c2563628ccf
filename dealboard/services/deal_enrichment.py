"""
Deal detail fetching and sub-entity joins.

Turns one CRM deal into a dashboard Deal: company name and primary contact
name from their TTL caches, last meeting date from the meeting-identity
cache, stage label from the stage taxonomy and time-in-stage from the
deal's stage history. A failing sub-entity lookup only blanks its own
field; a failing deal fetch raises to the caller.
"""

import math
from datetime import datetime

from dealboard.cache.clock import Clock, utcnow
from dealboard.cache.meeting_identity import MeetingIdentityCache
from dealboard.cache.store import KeyValueCache
from dealboard.infrastructure.observability.logging import get_logger
from dealboard.models.domain.deal_domain import CrmObject, Deal, StageTaxonomy, parse_timestamp
from dealboard.services.batching import run_batched
from dealboard.services.crm_client import CrmApiError, CrmClient

logger = get_logger(__name__)

MARKER_PROPERTY = "hs_lastmodifieddate"
STAGE_PROPERTY = "dealstage"
DEAL_PROPERTIES = ["dealname", STAGE_PROPERTY, "pipeline", "amount", "closedate", MARKER_PROPERTY]
DEAL_ASSOCIATIONS = ["companies", "contacts"]
COMPANY_PROPERTIES = ["name"]
CONTACT_PROPERTIES = ["firstname", "lastname", "email"]
MEETING_PROPERTIES = ["hs_timestamp", "hs_meeting_title", "hs_meeting_start_time"]

SECONDS_PER_DAY = 24 * 60 * 60


def days_in_stage(history: list[dict], current_stage: str | None, now: datetime) -> int | None:
    """
    Whole days since the deal last moved into its current stage.

    Only history entries whose value equals current_stage count; the most
    recent of them is the entry into the stage. No matching entry (or no
    parseable timestamp) gives None.
    """
    if not history or not current_stage:
        return None

    entered = [
        parse_timestamp(entry.get("timestamp"))
        for entry in history
        if entry.get("value") == current_stage
    ]
    entered = [ts for ts in entered if ts is not None]
    if not entered:
        return None

    elapsed = (now - max(entered)).total_seconds()
    return math.floor(elapsed / SECONDS_PER_DAY)


def contact_display_name(properties: dict) -> str | None:
    first = properties.get("firstname") or ""
    last = properties.get("lastname") or ""
    full_name = f"{first} {last}".strip()
    if full_name:
        return full_name
    return properties.get("email") or None


def meeting_start(properties: dict) -> datetime | None:
    """Meeting start time, falling back to the activity timestamp when it is missing or unparseable."""
    for name in ("hs_meeting_start_time", "hs_timestamp"):
        started = parse_timestamp(properties.get(name))
        if started is not None:
            return started
    return None


class MeetingDateResolver:
    """Last meeting date per company, re-derived only when the meeting id set changes."""

    def __init__(
        self,
        crm: CrmClient,
        cache: MeetingIdentityCache,
        batch_size: int,
        batch_delay_s: float,
    ):
        self._crm = crm
        self._cache = cache
        self._batch_size = batch_size
        self._batch_delay_s = batch_delay_s

    async def last_meeting_date(self, company_id: str) -> datetime | None:
        try:
            meeting_ids = await self._crm.list_associations("companies", company_id, "meetings")
        except CrmApiError as e:
            logger.error("Error listing meetings for company", company_id=company_id, error=str(e))
            return None

        cached = await self._cache.get_if_identity_unchanged(company_id, meeting_ids)
        if cached is not None:
            return cached.last_meeting_date

        last_meeting, complete = await self._derive_last_meeting_date(company_id, meeting_ids)
        if not complete:
            # Leave the identity unstored so the next pass fetches again
            logger.warning(
                "Meeting identity not cached after fetch failures",
                company_id=company_id,
                meeting_count=len(meeting_ids),
            )
            return last_meeting

        await self._cache.store(company_id, last_meeting, meeting_ids)
        logger.debug(
            "Meeting identity refreshed",
            company_id=company_id,
            meeting_count=len(meeting_ids),
            last_meeting_date=last_meeting.isoformat() if last_meeting else None,
        )
        return last_meeting

    async def _derive_last_meeting_date(
        self, company_id: str, meeting_ids: list[str]
    ) -> tuple[datetime | None, bool]:
        """Latest meeting start across the set, and whether every meeting was fetched."""
        if not meeting_ids:
            return None, True

        async def fetch_meeting(meeting_id: str) -> CrmObject:
            return await self._crm.get_object("meetings", meeting_id, MEETING_PROPERTIES)

        results = await run_batched(
            sorted(set(meeting_ids)), fetch_meeting, self._batch_size, self._batch_delay_s
        )

        complete = True
        meeting_dates = []
        for result in results:
            if not result.ok:
                complete = False
                logger.error("Error fetching meeting", company_id=company_id, error=str(result.error))
                continue
            started = meeting_start(result.value.properties)
            if started is not None:
                meeting_dates.append(started)

        return (max(meeting_dates) if meeting_dates else None), complete


class DealEnricher:
    """Fetches full detail for one deal and joins its sub-entities."""

    def __init__(
        self,
        crm: CrmClient,
        companies: KeyValueCache,
        contacts: KeyValueCache,
        meetings: MeetingDateResolver,
        item_max_age_s: float,
        clock: Clock = utcnow,
    ):
        self._crm = crm
        self._companies = companies
        self._contacts = contacts
        self._meetings = meetings
        self._item_max_age_s = item_max_age_s
        self._clock = clock

    async def fetch_deal(self, deal_id: str, taxonomy: StageTaxonomy) -> Deal:
        raw = await self._crm.get_object(
            "deals",
            deal_id,
            DEAL_PROPERTIES,
            associations=DEAL_ASSOCIATIONS,
            properties_with_history=[STAGE_PROPERTY],
        )
        return await self.build_deal(raw, taxonomy)

    async def build_deal(self, raw: CrmObject, taxonomy: StageTaxonomy) -> Deal:
        props = raw.properties
        stage_id = props.get(STAGE_PROPERTY)
        company_id = raw.first_association("companies")
        contact_id = raw.first_association("contacts")

        company_name = None
        last_meeting_date = None
        if company_id:
            company_name = await self._company_name(company_id)
            last_meeting_date = await self._meetings.last_meeting_date(company_id)

        contact_name = await self._contact_name(contact_id) if contact_id else None

        return Deal(
            id=raw.id,
            name=props.get("dealname") or "Untitled Deal",
            stage_id=stage_id,
            stage_label=taxonomy.label_for(stage_id),
            last_modified=props.get(MARKER_PROPERTY),
            company_id=company_id,
            company_name=company_name,
            primary_contact_id=contact_id,
            primary_contact_name=contact_name,
            days_in_stage=days_in_stage(
                raw.properties_with_history.get(STAGE_PROPERTY, []), stage_id, self._clock()
            ),
            last_meeting_date=last_meeting_date,
            amount=props.get("amount"),
            close_date=props.get("closedate"),
        )

    async def _company_name(self, company_id: str) -> str | None:
        company = await self._companies.get(company_id, self._item_max_age_s)
        if company is None:
            try:
                fetched = await self._crm.get_object("companies", company_id, COMPANY_PROPERTIES)
            except CrmApiError as e:
                logger.error("Error fetching company", company_id=company_id, error=str(e))
                return None
            company = fetched.properties
            await self._companies.set(company_id, company)
        return company.get("name") or None

    async def _contact_name(self, contact_id: str) -> str | None:
        contact = await self._contacts.get(contact_id, self._item_max_age_s)
        if contact is None:
            try:
                fetched = await self._crm.get_object("contacts", contact_id, CONTACT_PROPERTIES)
            except CrmApiError as e:
                logger.error("Error fetching contact", contact_id=contact_id, error=str(e))
                return None
            contact = fetched.properties
            await self._contacts.set(contact_id, contact)
        return contact_display_name(contact)
