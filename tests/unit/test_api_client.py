"""
tests/unit/test_api_client.py

Unit tests for doapi/api_client.py.
All DigitalOcean API calls are intercepted by respx; no real network traffic.
"""

from __future__ import annotations

import json

import httpx
import pytest

from doapi.api_client import DigitalOceanClient
from doapi.types import ListOptions
from exceptions import ApiError, TransportError

_TOKEN = "test-token"
_BASE = "https://api.digitalocean.com"


def _client(http_client, **kwargs):
    kwargs.setdefault("retry_wait_min", 0.0)
    kwargs.setdefault("retry_wait_max", 0.0)
    return DigitalOceanClient(http_client, _TOKEN, **kwargs)


def _error(status, error_id="not_found", message="The resource you were accessing could not be found.", **kwargs):
    return httpx.Response(
        status,
        json={"id": error_id, "message": message, "request_id": "req-1"},
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_sends_bearer_token_and_user_agent(mock_http, http_client):
    route = mock_http.get(f"{_BASE}/v2/account").mock(
        return_value=httpx.Response(200, json={"account": {"status": "active"}})
    )
    api = _client(http_client, user_agent="digitalocean-provider/2.0.0")

    body, resp = await api.get("/v2/account")

    assert body["account"]["status"] == "active"
    assert resp.status_code == 200
    request = route.calls.last.request
    assert request.headers["Authorization"] == f"Bearer {_TOKEN}"
    assert request.headers["User-Agent"] == "digitalocean-provider/2.0.0"


@pytest.mark.asyncio
async def test_empty_body_decodes_to_empty_dict(mock_http, http_client):
    mock_http.delete(f"{_BASE}/v2/droplets/1").mock(return_value=httpx.Response(204))
    api = _client(http_client)

    body, resp = await api.delete("/v2/droplets/1")

    assert body == {}
    assert resp.status_code == 204


@pytest.mark.asyncio
async def test_post_sends_json_body(mock_http, http_client):
    route = mock_http.post(f"{_BASE}/v2/tags").mock(
        return_value=httpx.Response(201, json={"tag": {"name": "web"}})
    )
    api = _client(http_client)

    await api.post("/v2/tags", {"name": "web"})

    assert json.loads(route.calls.last.request.content) == {"name": "web"}


# ---------------------------------------------------------------------------
# Errors and retries
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_404_raises_api_error_with_envelope_fields(mock_http, http_client):
    mock_http.get(f"{_BASE}/v2/droplets/9").mock(return_value=_error(404))
    api = _client(http_client)

    with pytest.raises(ApiError) as exc_info:
        await api.get("/v2/droplets/9")

    err = exc_info.value
    assert err.status_code == 404
    assert err.error_id == "not_found"
    assert err.request_id == "req-1"
    assert "could not be found" in err.message


@pytest.mark.asyncio
async def test_validation_error_is_not_retried(mock_http, http_client):
    route = mock_http.post(f"{_BASE}/v2/domains").mock(
        return_value=_error(422, "unprocessable_entity", "name is invalid")
    )
    api = _client(http_client, retry_max=3)

    with pytest.raises(ApiError):
        await api.post("/v2/domains", {"name": "bad"})

    assert route.call_count == 1


@pytest.mark.asyncio
async def test_429_is_retried_after_retry_after(mock_http, http_client):
    route = mock_http.get(f"{_BASE}/v2/regions").mock(
        side_effect=[
            _error(429, "too_many_requests", "API rate limit exceeded.", headers={"Retry-After": "0"}),
            httpx.Response(200, json={"regions": []}),
        ]
    )
    api = _client(http_client, retry_max=2)

    body, _ = await api.get("/v2/regions")

    assert body == {"regions": []}
    assert route.call_count == 2


@pytest.mark.asyncio
async def test_server_errors_exhaust_retries(mock_http, http_client):
    route = mock_http.get(f"{_BASE}/v2/sizes").mock(
        return_value=_error(503, "service_unavailable", "try again")
    )
    api = _client(http_client, retry_max=2)

    with pytest.raises(ApiError) as exc_info:
        await api.get("/v2/sizes")

    assert exc_info.value.status_code == 503
    assert route.call_count == 3


@pytest.mark.asyncio
async def test_transport_error_is_retried_then_raised(mock_http, http_client):
    route = mock_http.get(f"{_BASE}/v2/account").mock(side_effect=httpx.ConnectError)
    api = _client(http_client, retry_max=1)

    with pytest.raises(TransportError):
        await api.get("/v2/account")

    assert route.call_count == 2


@pytest.mark.asyncio
async def test_transport_error_recovers_on_retry(mock_http, http_client):
    mock_http.get(f"{_BASE}/v2/account").mock(
        side_effect=[httpx.ConnectError("reset"), httpx.Response(200, json={"account": {}})]
    )
    api = _client(http_client, retry_max=1)

    body, _ = await api.get("/v2/account")

    assert body == {"account": {}}


# ---------------------------------------------------------------------------
# Listing and actions
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_page_sends_paging_params_and_parses_links(mock_http, http_client):
    route = mock_http.get(f"{_BASE}/v2/droplets").mock(
        return_value=httpx.Response(
            200,
            json={
                "droplets": [{"id": 1}, {"id": 2}],
                "links": {"pages": {"prev": f"{_BASE}/v2/droplets?page=1", "next": f"{_BASE}/v2/droplets?page=3"}},
                "meta": {"total": 5},
            },
        )
    )
    api = _client(http_client)

    records, resp = await api.list_page("/v2/droplets", "droplets", ListOptions(page=2, per_page=2), params={"tag_name": "web"})

    assert [r["id"] for r in records] == [1, 2]
    params = route.calls.last.request.url.params
    assert params["page"] == "2"
    assert params["per_page"] == "2"
    assert params["tag_name"] == "web"
    assert resp.links.current_page() == 2
    assert not resp.links.is_last_page()
    assert resp.meta == {"total": 5}


@pytest.mark.asyncio
async def test_get_action_returns_action(mock_http, http_client):
    mock_http.get(f"{_BASE}/v2/actions/77").mock(
        return_value=httpx.Response(
            200, json={"action": {"id": 77, "status": "completed", "type": "assign_ip", "resource_id": 5}}
        )
    )
    api = _client(http_client)

    action = await api.get_action(77)

    assert action.id == 77
    assert action.status == "completed"
    assert action.type == "assign_ip"
    assert action.resource_id == 5
