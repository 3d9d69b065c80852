"""Unit tests for RestDataService using httpx.MockTransport."""

import json
from datetime import date

import httpx
import pytest

from crmcore.db.rest_data_service import RestDataService
from crmcore.exceptions import ConflictError, UpstreamError

BASE_URL = "https://project.example.com"


def make_service(handler, token="user-token"):
    async def access_token():
        return token

    return RestDataService(
        base_url=BASE_URL,
        api_key="anon-key",
        access_token_getter=access_token,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_select_encodes_filters_and_order():
    """Test that filters and ordering become PostgREST query parameters."""
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["request"] = request
        return httpx.Response(200, json=[{"id": "c1"}])

    service = make_service(handler)
    rows = await service.select(
        "contacts",
        {"organization_id": "org-1", "email": None, "archived": False},
        order_by="created_at",
        descending=True,
    )

    request = captured["request"]
    assert rows == [{"id": "c1"}]
    assert request.method == "GET"
    assert request.url.path == "/rest/v1/contacts"
    assert request.url.params["organization_id"] == "eq.org-1"
    assert request.url.params["email"] == "is.null"
    assert request.url.params["archived"] == "eq.false"
    assert request.url.params["order"] == "created_at.desc"
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["Authorization"] == "Bearer user-token"
    await service.close()


@pytest.mark.asyncio
async def test_select_falls_back_to_api_key_when_anonymous():
    """Test the Authorization header without a session token."""
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json=[])

    service = make_service(handler, token=None)
    await service.select("profiles", {"id": "u1"})

    assert captured["auth"] == "Bearer anon-key"


@pytest.mark.asyncio
async def test_insert_posts_json_and_returns_representation():
    """Test that insert serializes values and returns the stored row."""
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["request"] = request
        body = json.loads(request.content)
        return httpx.Response(201, json=[{**body, "id": "d1", "stage": "prospecting"}])

    service = make_service(handler)
    row = await service.insert(
        "deals", {"title": "Deal", "expected_close_date": date(2025, 3, 1)}
    )

    request = captured["request"]
    assert request.method == "POST"
    assert request.headers["Prefer"] == "return=representation"
    assert json.loads(request.content)["expected_close_date"] == "2025-03-01"
    assert row["id"] == "d1"
    assert row["stage"] == "prospecting"


@pytest.mark.asyncio
async def test_update_patches_filtered_rows():
    """Test that update sends a PATCH with filters."""
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["request"] = request
        return httpx.Response(200, json=[{"id": "d1", "stage": "proposal"}])

    service = make_service(handler)
    rows = await service.update(
        "deals", {"id": "d1", "organization_id": "org-1"}, {"stage": "proposal"}
    )

    request = captured["request"]
    assert request.method == "PATCH"
    assert request.url.params["id"] == "eq.d1"
    assert request.url.params["organization_id"] == "eq.org-1"
    assert rows == [{"id": "d1", "stage": "proposal"}]


@pytest.mark.asyncio
async def test_delete_counts_returned_rows():
    """Test that delete reports the number of removed rows."""

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "DELETE"
        return httpx.Response(200, json=[{"id": "t1"}])

    service = make_service(handler)

    assert await service.delete("tasks", {"id": "t1"}) == 1


@pytest.mark.asyncio
async def test_unique_violation_raises_conflict():
    """Test that a unique violation maps to ConflictError."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            409, json={"code": "23505", "message": "duplicate key value"}
        )

    service = make_service(handler)

    with pytest.raises(ConflictError) as exc_info:
        await service.insert("profiles", {"id": "u1"})
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_server_error_raises_upstream():
    """Test that a 5xx response maps to UpstreamError."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"message": "service unavailable"})

    service = make_service(handler)

    with pytest.raises(UpstreamError) as exc_info:
        await service.select("contacts")
    assert exc_info.value.status_code == 503
    assert not isinstance(exc_info.value, ConflictError)


@pytest.mark.asyncio
async def test_transport_error_raises_upstream():
    """Test that network failures map to UpstreamError."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    service = make_service(handler)

    with pytest.raises(UpstreamError):
        await service.select("contacts")
