"""DataService backed by a PostgREST-style HTTP API."""

from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from pydantic_core import to_jsonable_python

from crmcore.db.data_service import DataService, Filters, Row, require_filters
from crmcore.exceptions import ConflictError, UpstreamError
from crmcore.utils.logger import logger

UNIQUE_VIOLATION = "23505"

AccessTokenGetter = Callable[[], Awaitable[str | None]]


def _encode_filter(value: Any) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{to_jsonable_python(value)}"


class RestDataService(DataService):
    """Async client for the PostgREST data API.

    Each request is authorized with the current session's access token when one
    is available, falling back to the anonymous API key.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        access_token_getter: AccessTokenGetter | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Project URL; requests go to ``{base_url}/rest/v1``
            api_key: API key sent as the ``apikey`` header
            access_token_getter: Coroutine returning the session access token
            timeout: Request timeout in seconds
            transport: Optional transport override (used in tests)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token_getter = access_token_getter
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure HTTP client is initialized."""
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["apikey"] = self.api_key
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}/rest/v1",
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _auth_headers(self) -> dict[str, str]:
        token = None
        if self.access_token_getter is not None:
            token = await self.access_token_getter()
        token = token or self.api_key
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _request(
        self,
        method: str,
        collection: str,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        """Make a request and decode the JSON body.

        Raises:
            ConflictError: On HTTP 409 or a unique violation
            UpstreamError: For any other error status or transport failure
        """
        client = self._ensure_client()
        headers = await self._auth_headers()
        if prefer:
            headers["Prefer"] = prefer

        try:
            response = await client.request(
                method,
                f"/{collection}",
                params=params,
                json=to_jsonable_python(json) if json is not None else None,
                headers=headers,
            )
        except httpx.RequestError as e:
            logger.error(
                "Data API request failed", collection=collection, method=method, error=str(e)
            )
            raise UpstreamError(f"Request error: {e}", original_error=e) from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            message = body.get("message") or response.text or "Data API error"
            if response.status_code == 409 or body.get("code") == UNIQUE_VIOLATION:
                raise ConflictError(message, status_code=response.status_code)
            logger.error(
                "Data API returned an error",
                collection=collection,
                method=method,
                status_code=response.status_code,
                error=message,
            )
            raise UpstreamError(message, status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Invalid response format from {collection}", original_error=e
            ) from e

    def _params(self, filters: Filters | None) -> dict[str, str]:
        return {column: _encode_filter(value) for column, value in (filters or {}).items()}

    async def select(
        self,
        collection: str,
        filters: Filters | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[Row]:
        params = {"select": "*", **self._params(filters)}
        if order_by is not None:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        return await self._request("GET", collection, params=params) or []

    async def select_one(self, collection: str, filters: Filters) -> Row | None:
        params = {"select": "*", "limit": "1", **self._params(filters)}
        rows = await self._request("GET", collection, params=params) or []
        return rows[0] if rows else None

    async def insert(self, collection: str, values: Row) -> Row:
        rows = await self._request(
            "POST", collection, json=values, prefer="return=representation"
        )
        if not rows:
            raise UpstreamError(f"Insert into {collection} returned no row")
        return rows[0]

    async def update(self, collection: str, filters: Filters, values: Row) -> list[Row]:
        require_filters(collection, filters)
        if not values:
            return await self.select(collection, filters)
        return (
            await self._request(
                "PATCH",
                collection,
                params=self._params(filters),
                json=values,
                prefer="return=representation",
            )
            or []
        )

    async def delete(self, collection: str, filters: Filters) -> int:
        require_filters(collection, filters)
        rows = await self._request(
            "DELETE",
            collection,
            params=self._params(filters),
            prefer="return=representation",
        )
        return len(rows or [])
