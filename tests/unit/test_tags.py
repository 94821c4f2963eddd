"""
tests/unit/test_tags.py

Unit tests for services/tags.py.
All DigitalOcean API calls are intercepted by respx; no real network traffic.
"""

from __future__ import annotations

import json

import httpx
import pytest

from services.tags import set_tags, validate_tag

_API = "https://api.digitalocean.com"
_RESOURCES = {"resources": [{"resource_id": "42", "resource_type": "droplet"}]}


def _body(route):
    return json.loads(route.calls.last.request.content)


@pytest.mark.parametrize("name", ["web", "env:prod", "team_a-1"])
def test_valid_tag_names(name):
    assert validate_tag(name, "tags.0") == []


@pytest.mark.parametrize("name", ["", "has space", "x" * 256, "émoji"])
def test_invalid_tag_names(name):
    errors = validate_tag(name, "tags.0")

    assert len(errors) == 1
    assert errors[0].startswith("tags.0: ")


@pytest.mark.asyncio
async def test_set_tags_untags_removed_and_tags_added(mock_http, combined_client):
    untag = mock_http.delete(f"{_API}/v2/tags/old/resources").mock(return_value=httpx.Response(204))
    create = mock_http.post(f"{_API}/v2/tags").mock(return_value=httpx.Response(201, json={"tag": {"name": "new"}}))
    tag = mock_http.post(f"{_API}/v2/tags/new/resources").mock(return_value=httpx.Response(204))

    await set_tags(combined_client.api_client(), 42, "droplet", ["old", "Keep"], ["keep", "new"])

    assert _body(untag) == _RESOURCES
    assert _body(create) == {"name": "new"}
    assert _body(tag) == _RESOURCES
    assert untag.call_count == 1
    assert tag.call_count == 1


@pytest.mark.asyncio
async def test_existing_tag_is_not_an_error(mock_http, combined_client):
    mock_http.post(f"{_API}/v2/tags").mock(
        return_value=httpx.Response(422, json={"id": "unprocessable_entity", "message": "tag already exists"})
    )
    tag = mock_http.post(f"{_API}/v2/tags/web/resources").mock(return_value=httpx.Response(204))

    await set_tags(combined_client.api_client(), 42, "droplet", [], ["web"])

    assert tag.called
