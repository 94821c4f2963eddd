"""
tests/unit/test_pagination.py

Unit tests for services/pagination.py and the PageLinks helpers it relies on.
"""

from __future__ import annotations

import httpx
import pytest

from doapi.types import ApiResponse, PageLinks
from exceptions import ApiError
from services.pagination import DEFAULT_PER_PAGE, list_all, list_path

_API = "https://api.digitalocean.com"


def _links(page, last):
    """Links block for ``page`` of ``last`` pages, the way the API builds it."""
    pages = {}
    if page > 1:
        pages["prev"] = f"{_API}/v2/things?page={page - 1}"
    if page < last:
        pages["next"] = f"{_API}/v2/things?page={page + 1}"
    return {"pages": pages}


def _pager(pages):
    requested = []

    async def lister(opts):
        requested.append((opts.page, opts.per_page))
        records, links = pages[opts.page - 1]
        return records, ApiResponse(200, links=PageLinks.from_dict(links))

    lister.requested = requested
    return lister


# ---------------------------------------------------------------------------
# PageLinks
# ---------------------------------------------------------------------------


def test_page_links_absent_when_no_pages_block():
    assert PageLinks.from_dict(None) is None
    assert PageLinks.from_dict({}) is None


def test_current_page_derived_from_prev_link():
    assert PageLinks.from_dict(_links(1, 3)).current_page() == 1
    assert PageLinks.from_dict(_links(3, 5)).current_page() == 3


def test_missing_next_marks_last_page():
    assert PageLinks.from_dict(_links(3, 3)).is_last_page()
    assert not PageLinks.from_dict(_links(2, 3)).is_last_page()


# ---------------------------------------------------------------------------
# list_all
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_all_walks_every_page_in_order():
    lister = _pager([
        ([1, 2], _links(1, 3)),
        ([3, 4], _links(2, 3)),
        ([5], _links(3, 3)),
    ])

    records = await list_all(lister)

    assert records == [1, 2, 3, 4, 5]
    assert lister.requested == [(1, DEFAULT_PER_PAGE), (2, DEFAULT_PER_PAGE), (3, DEFAULT_PER_PAGE)]


@pytest.mark.asyncio
async def test_list_all_stops_when_response_has_no_links():
    lister = _pager([([1, 2, 3], None)])

    assert await list_all(lister, per_page=50) == [1, 2, 3]
    assert lister.requested == [(1, 50)]


@pytest.mark.asyncio
async def test_list_all_propagates_first_error():
    calls = []

    async def lister(opts):
        calls.append(opts.page)
        if opts.page == 2:
            raise ApiError(500, "boom")
        return ["a"], ApiResponse(200, links=PageLinks.from_dict(_links(1, 2)))

    with pytest.raises(ApiError):
        await list_all(lister)

    assert calls == [1, 2]


# ---------------------------------------------------------------------------
# list_path
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_path_follows_links_over_http(mock_http, combined_client):
    route = mock_http.get(f"{_API}/v2/ssh_keys").mock(
        side_effect=[
            httpx.Response(200, json={"ssh_keys": [{"id": 1}], "links": _links(1, 2)}),
            httpx.Response(200, json={"ssh_keys": [{"id": 2}], "links": _links(2, 2)}),
        ]
    )

    records = await list_path(combined_client.api_client(), "/v2/ssh_keys", "ssh_keys", params={"x": "y"})

    assert [r["id"] for r in records] == [1, 2]
    pages = [call.request.url.params["page"] for call in route.calls]
    assert pages == ["1", "2"]
    assert route.calls.last.request.url.params["x"] == "y"
