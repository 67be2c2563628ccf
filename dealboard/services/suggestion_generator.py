"""
OpenAI-backed next-step suggestion generator.
Turns a deal's recent notes and emails into one short, actionable next step.
"""

from datetime import datetime

import openai
from openai import AsyncOpenAI

from dealboard.cache.clock import Clock, utcnow
from dealboard.config import settings
from dealboard.infrastructure.observability.logging import get_logger
from dealboard.models.domain.deal_domain import DIRECTION_OUTBOUND, EngagementRecord

logger = get_logger(__name__)

NO_ACTIVITY_TEXT = "No recent activity. Reach out to re-engage"
ERROR_TEXT = "Error generating next step"

CONTENT_PREVIEW_CHARS = 500
GHOSTED_AFTER_DAYS = 7


class SuggestionGeneratorError(Exception):
    """Raised when the generator cannot be configured."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.recoverable = recoverable


def _days_ago(timestamp: datetime, now: datetime) -> int:
    return int((now - timestamp).total_seconds() // 86400)


def format_activity(engagements: list[EngagementRecord], now: datetime) -> str:
    """Numbered, human-readable activity list for the prompt."""
    lines = []
    for index, engagement in enumerate(engagements, 1):
        direction = f" - {engagement.direction}" if engagement.direction in ("inbound", "outbound") else ""
        line = (
            f"{index}. [{engagement.kind}{direction}] {_days_ago(engagement.timestamp, now)} days ago "
            f"({engagement.timestamp.date().isoformat()})"
        )
        if engagement.subject:
            line += f"\n   Subject: {engagement.subject}"
        if engagement.content:
            content = engagement.content
            if len(content) > CONTENT_PREVIEW_CHARS:
                content = content[:CONTENT_PREVIEW_CHARS] + "..."
            line += f"\n   Content: {content}"
        lines.append(line)
    return "\n\n".join(lines)


def build_prompt(
    engagements: list[EngagementRecord], deal_name: str, company_name: str, now: datetime
) -> str:
    newest = max(engagements, key=lambda e: e.timestamp)
    silence_days = _days_ago(newest.timestamp, now)
    ghosted = ""
    if newest.direction == DIRECTION_OUTBOUND and silence_days >= GHOSTED_AFTER_DAYS:
        ghosted = f"\nGHOSTED: last message sent {silence_days}d ago, no response.\n"

    return f"""Deal: {company_name} - "{deal_name}"

Notes contain meeting recaps with action items and commitments. Read them and
extract the single highest-priority action that moves this deal forward.

Activity:
{format_activity(engagements, now)}
{ghosted}
Rules:
- Surface the actual action item, never "review the note"
- Be specific: who, what, when, how much
- 80 characters max, terse and actionable"""


class SuggestionGenerator:
    """Calls the chat completions API once per suggestion."""

    def __init__(self, client: AsyncOpenAI | None = None, model: str | None = None, clock: Clock = utcnow):
        self._client = client
        self._model = model or settings.OPENAI_MODEL
        self._clock = clock

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not settings.OPENAI_API_KEY:
                raise SuggestionGeneratorError("OPENAI_API_KEY not configured", recoverable=False)
            self._client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY,
                timeout=settings.SUGGESTION_TIMEOUT_SECONDS,
            )
        return self._client

    async def generate(
        self, engagements: list[EngagementRecord], deal_name: str, company_name: str
    ) -> str:
        """
        Generate a next step. Never raises: API and configuration failures
        yield ERROR_TEXT so the rest of the deal can still be served.
        """
        if not engagements:
            return NO_ACTIVITY_TEXT

        prompt = build_prompt(engagements, deal_name, company_name, self._clock())

        try:
            response = await self._get_client().chat.completions.create(
                model=self._model,
                max_tokens=settings.SUGGESTION_MAX_TOKENS,
                temperature=0.3,
                messages=[
                    {"role": "system", "content": "You are a concise B2B sales assistant."},
                    {"role": "user", "content": prompt},
                ],
            )
            text = (response.choices[0].message.content or "").strip()
            return text or ERROR_TEXT

        except SuggestionGeneratorError as e:
            logger.error("Suggestion generator not configured", error=str(e))
            return ERROR_TEXT
        except openai.OpenAIError as e:
            logger.error(
                "OpenAI API error generating next step",
                deal_name=deal_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ERROR_TEXT
