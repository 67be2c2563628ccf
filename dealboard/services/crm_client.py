"""
CRM API client (HubSpot-compatible).
Handles HTTP client setup, auth, paging, retries and error mapping for the
endpoints the dashboard needs: bulk listing, single-object detail,
associations, pipelines, legacy engagements and stage updates.
"""

import asyncio
from typing import Any

import httpx

from dealboard.config import settings
from dealboard.infrastructure.observability.logging import get_logger
from dealboard.models.domain.deal_domain import CrmObject

logger = get_logger(__name__)

# Request retry configuration
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

PAGE_LIMIT = 100


class CrmApiError(Exception):
    """Custom exception for CRM API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.response_data = response_data or {}


class CrmClient:
    """
    Async client for the CRM REST API.

    Private app tokens (prefix `pat-`) are sent as a Bearer header; legacy
    developer keys are appended to every request as `hapikey`.
    """

    def __init__(
        self,
        access_token: str | None = None,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        backoff_factor: float = BACKOFF_FACTOR,
    ):
        self._access_token = access_token if access_token is not None else settings.CRM_ACCESS_TOKEN
        self._backoff_factor = backoff_factor
        self._client = self._create_client(
            base_url or settings.CRM_BASE_URL,
            timeout or settings.CRM_REQUEST_TIMEOUT_SECONDS,
            transport,
        )

    def _create_client(
        self, base_url: str, timeout: float, transport: httpx.AsyncBaseTransport | None
    ) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        params = {}
        token = self._access_token or ""
        if token.startswith("pat-"):
            headers["Authorization"] = f"Bearer {token}"
        elif token:
            params["hapikey"] = token

        return httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            params=params,
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
            transport=transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request with retry and backoff."""
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    backoff = self._backoff_factor * (2 ** (attempt - 1))
                    logger.debug(
                        "CRM API retrying request",
                        attempt=attempt,
                        status_code=response.status_code,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                return response
            except httpx.RequestError as e:
                if attempt >= MAX_RETRIES:
                    raise CrmApiError(f"CRM request failed: {e}") from e
                backoff = self._backoff_factor * (2 ** (attempt - 1))
                logger.debug(
                    "CRM API request error, retrying",
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
        raise RuntimeError("CRM API retry loop exhausted")

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict:
        """
        Validate a CRM API response.

        Returns:
            dict: Parsed response body

        Raises:
            CrmApiError: If the response is an error or cannot be parsed
        """
        if response.is_success:
            try:
                return response.json() if response.content else {}
            except ValueError as e:
                logger.error(f"Failed to parse CRM {operation} response", error=str(e))
                raise CrmApiError(f"Invalid response format: {e}") from e

        try:
            error_data = response.json() if response.content else {}
        except ValueError:
            error_data = {}

        message = error_data.get("message") or f"CRM API error (HTTP {response.status_code})"
        logger.error(
            f"CRM API {operation} failed",
            status_code=response.status_code,
            error_category=error_data.get("category"),
            error_message=message,
        )
        raise CrmApiError(
            message,
            status_code=response.status_code,
            error_code=error_data.get("category"),
            response_data=error_data,
        )

    async def _get(self, url: str, operation: str, params: dict | None = None) -> dict:
        response = await self._request_with_retry("GET", url, params=params or {})
        return self._handle_api_response(response, operation)

    async def list_objects(
        self,
        kind: str,
        properties: list[str],
        associations: list[str] | None = None,
    ) -> list[CrmObject]:
        """
        Bulk list every object of a kind, following paging cursors.

        Args:
            kind: Object type, e.g. "deals"
            properties: Properties to include on each object
            associations: Associated object types to include ids for
        """
        params: dict[str, Any] = {"limit": PAGE_LIMIT, "properties": ",".join(properties)}
        if associations:
            params["associations"] = ",".join(associations)

        objects: list[CrmObject] = []
        while True:
            data = await self._get(f"/crm/v3/objects/{kind}", f"list_{kind}", params)
            objects.extend(CrmObject.from_api(item) for item in data.get("results", []))

            after = (data.get("paging") or {}).get("next", {}).get("after")
            if not after:
                break
            params = {**params, "after": after}

        logger.debug("CRM objects listed", kind=kind, count=len(objects))
        return objects

    async def get_object(
        self,
        kind: str,
        object_id: str,
        properties: list[str],
        associations: list[str] | None = None,
        properties_with_history: list[str] | None = None,
    ) -> CrmObject:
        """Fetch one object with field selection."""
        params: dict[str, Any] = {"properties": ",".join(properties)}
        if associations:
            params["associations"] = ",".join(associations)
        if properties_with_history:
            params["propertiesWithHistory"] = ",".join(properties_with_history)

        data = await self._get(f"/crm/v3/objects/{kind}/{object_id}", f"get_{kind}", params)
        return CrmObject.from_api(data)

    async def list_associations(self, kind: str, object_id: str, to_kind: str) -> list[str]:
        """Ids of every to_kind object associated with an object."""
        ids: list[str] = []
        params: dict[str, Any] = {"limit": PAGE_LIMIT}
        while True:
            data = await self._get(
                f"/crm/v3/objects/{kind}/{object_id}/associations/{to_kind}",
                "list_associations",
                params,
            )
            ids.extend(str(item.get("id") or item.get("toObjectId")) for item in data.get("results", []))

            after = (data.get("paging") or {}).get("next", {}).get("after")
            if not after:
                break
            params = {**params, "after": after}
        return ids

    async def list_pipelines(self, kind: str = "deals") -> list[dict]:
        data = await self._get(f"/crm/v3/pipelines/{kind}", "list_pipelines")
        return data.get("results", [])

    async def list_engagements(self, object_type: str, object_id: str) -> list[dict]:
        """Raw engagements associated with a COMPANY or CONTACT (first page)."""
        data = await self._get(
            f"/engagements/v1/engagements/associated/{object_type.upper()}/{object_id}/paged",
            "list_engagements",
            {"limit": PAGE_LIMIT},
        )
        return data.get("results", [])

    async def update_object(self, kind: str, object_id: str, properties: dict[str, Any]) -> dict:
        response = await self._request_with_retry(
            "PATCH", f"/crm/v3/objects/{kind}/{object_id}", json={"properties": properties}
        )
        result = self._handle_api_response(response, f"update_{kind}")
        logger.info("CRM object updated", kind=kind, object_id=object_id)
        return result
