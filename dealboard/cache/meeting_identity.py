"""
Meeting-identity cache.

Stores a company's last meeting date together with the sorted set of its
meeting ids. There is no TTL: a cached date stays valid for as long as the
company's meeting id set is unchanged, however old it is.
"""

import json
from collections.abc import Iterable
from datetime import datetime

from dealboard.cache.backing import NAMESPACE_MEETING, CacheBacking
from dealboard.cache.clock import Clock, utcnow
from dealboard.infrastructure.observability.logging import get_logger
from dealboard.models.domain.deal_domain import MeetingIdentity, parse_timestamp

logger = get_logger(__name__)


def normalize_ids(meeting_ids: Iterable[str]) -> tuple[str, ...]:
    return tuple(sorted({str(meeting_id) for meeting_id in meeting_ids}))


def serialize_ids(meeting_ids: Iterable[str]) -> str:
    return json.dumps(list(normalize_ids(meeting_ids)), separators=(",", ":"))


def deserialize_ids(raw: str | None) -> tuple[str, ...] | None:
    """Parse a stored id set. Returns None for anything that is not a JSON list of ids."""
    if raw is None:
        return None
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(parsed, list) or not all(isinstance(item, str | int) for item in parsed):
        return None
    return normalize_ids(parsed)


class MeetingIdentityCache:
    def __init__(self, backing: CacheBacking, clock: Clock = utcnow):
        self._backing = backing
        self._clock = clock

    async def get_if_identity_unchanged(
        self, company_id: str, current_ids: Iterable[str]
    ) -> MeetingIdentity | None:
        """
        Return the cached identity when its id set equals current_ids.

        A hit may carry last_meeting_date=None (company has meetings with no
        usable timestamps, or no meetings at all). None means miss: nothing
        cached, a different id set, or stored ids that cannot be parsed.
        """
        entry = await self._backing.get_entry(NAMESPACE_MEETING, company_id)
        if entry is None:
            return None

        stored_ids = deserialize_ids(entry.value.get("meeting_ids"))
        if stored_ids is None:
            logger.warning("Unreadable cached meeting ids, treating as miss", company_id=company_id)
            return None

        if stored_ids != normalize_ids(current_ids):
            return None

        return MeetingIdentity(
            last_meeting_date=parse_timestamp(entry.value.get("last_meeting_date")),
            meeting_ids=stored_ids,
        )

    async def store(
        self, company_id: str, last_meeting_date: datetime | None, meeting_ids: Iterable[str]
    ) -> MeetingIdentity:
        ids = normalize_ids(meeting_ids)
        value = {
            "last_meeting_date": last_meeting_date.isoformat() if last_meeting_date else None,
            "meeting_ids": serialize_ids(ids),
        }
        await self._backing.put_entry(NAMESPACE_MEETING, company_id, value, self._clock())
        return MeetingIdentity(last_meeting_date=last_meeting_date, meeting_ids=ids)
