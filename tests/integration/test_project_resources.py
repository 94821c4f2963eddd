"""
tests/integration/test_project_resources.py

Integration tests for projects and project membership. Members removed
from a project are handed back to the default project; members assigned by
other tooling are left alone.
All DigitalOcean API calls are intercepted by respx.
"""

from __future__ import annotations

import json

import httpx
import pytest

from exceptions import ProviderError, ResourceOperationError
from resources import engine
from resources.project import ProjectResource, ProjectResourcesResource

_API = "https://api.digitalocean.com"
_PROJECT = "4e1bfbc3-dc3e-41f2-a18f-1b4d7ba71679"
_DEFAULT = "b6e4b1b5-8f2a-4d7e-9f0d-1c7a4a9e2c11"

_A = "do:droplet:1"
_B = "do:droplet:2"
_C = "do:volume:506f78a4-e098-11e5-ad9f-000f53306ae1"
_D = "do:domain:example.com"


def _listing(*urns):
    return httpx.Response(200, json={"resources": [{"urn": u} for u in urns], "links": {}})


def _project(**kwargs):
    project = {
        "id": _PROJECT,
        "owner_uuid": "99525febec065ca37b2ffe4f852fd2b2581895e7",
        "owner_id": 258992,
        "name": "my-web-api",
        "description": "My website API",
        "purpose": "Service or API",
        "environment": "Production",
        "is_default": False,
        "created_at": "2018-09-27T20:10:35Z",
        "updated_at": "2018-09-27T20:10:35Z",
    }
    project.update(kwargs)
    return project


def _mock_default(mock_http):
    mock_http.get(f"{_API}/v2/projects/default").mock(
        return_value=httpx.Response(200, json={"project": _project(id=_DEFAULT, name="Default", is_default=True)})
    )
    return mock_http.post(f"{_API}/v2/projects/{_DEFAULT}/resources").mock(
        return_value=httpx.Response(200, json={"resources": []})
    )


def _posted(route):
    return json.loads(route.calls.last.request.content)["resources"]


# ---------------------------------------------------------------------------
# project_resources
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_membership_update_touches_only_managed_urns(mock_http, combined_client):
    mock_http.get(f"{_API}/v2/projects/{_PROJECT}/resources").mock(
        side_effect=[_listing(_A, _B, _D), _listing(_B, _C, _D)]
    )
    to_default = _mock_default(mock_http)
    to_project = mock_http.post(f"{_API}/v2/projects/{_PROJECT}/resources").mock(
        return_value=httpx.Response(200, json={"resources": []})
    )
    prior = {"project": _PROJECT, "resources": [_A, _B]}

    result = await engine.update(
        ProjectResourcesResource(), _PROJECT, prior, {"project": _PROJECT, "resources": [_B, _C]}, combined_client
    )

    assert _posted(to_default) == [_A]
    assert _posted(to_project) == [_C]
    assert sorted(result.state["resources"]) == sorted([_B, _C])


@pytest.mark.asyncio
async def test_membership_create_never_removes_foreign_members(mock_http, combined_client):
    mock_http.get(f"{_API}/v2/projects/{_PROJECT}/resources").mock(
        side_effect=[_listing(_D), _listing(_A, _D)]
    )
    to_project = mock_http.post(f"{_API}/v2/projects/{_PROJECT}/resources").mock(
        return_value=httpx.Response(200, json={"resources": []})
    )

    result = await engine.create(
        ProjectResourcesResource(), {"project": _PROJECT, "resources": [_A]}, combined_client
    )

    assert _posted(to_project) == [_A]
    assert result.handle == _PROJECT
    assert result.state["resources"] == [_A]


@pytest.mark.asyncio
async def test_membership_create_on_missing_project_fails(mock_http, combined_client):
    mock_http.get(f"{_API}/v2/projects/{_PROJECT}/resources").mock(
        return_value=httpx.Response(404, json={"id": "not_found", "message": "project not found"})
    )

    with pytest.raises(ResourceOperationError) as exc_info:
        await engine.create(ProjectResourcesResource(), {"project": _PROJECT, "resources": [_A]}, combined_client)

    assert isinstance(exc_info.value.cause, ProviderError)
    assert "does not exist" in str(exc_info.value)


@pytest.mark.asyncio
async def test_legacy_floating_ip_urn_matches_reserved_ip(mock_http, combined_client):
    mock_http.get(f"{_API}/v2/projects/{_PROJECT}/resources").mock(
        return_value=_listing("do:floatingip:192.0.2.1")
    )
    prior = {"project": _PROJECT, "resources": ["do:reservedip:192.0.2.1"]}

    result = await engine.read(ProjectResourcesResource(), _PROJECT, prior, combined_client)
    plan = engine.plan(
        ProjectResourcesResource(), result.state, {"project": _PROJECT, "resources": ["do:reservedip:192.0.2.1"]}
    )

    assert result.state["resources"] == ["do:floatingip:192.0.2.1"]
    assert plan.empty


# ---------------------------------------------------------------------------
# project
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_project_create_assigns_members(mock_http, combined_client):
    create = mock_http.post(f"{_API}/v2/projects").mock(
        return_value=httpx.Response(201, json={"project": _project()})
    )
    assign = mock_http.post(f"{_API}/v2/projects/{_PROJECT}/resources").mock(
        return_value=httpx.Response(200, json={"resources": []})
    )
    mock_http.get(f"{_API}/v2/projects/{_PROJECT}").mock(
        return_value=httpx.Response(200, json={"project": _project()})
    )
    mock_http.get(f"{_API}/v2/projects/{_PROJECT}/resources").mock(return_value=_listing(_A))
    config = {
        "name": "my-web-api",
        "description": "My website API",
        "purpose": "Service or API",
        "environment": "production",
        "resources": [_A],
    }

    result = await engine.create(ProjectResource(), config, combined_client)

    assert json.loads(create.calls.last.request.content) == {
        "name": "my-web-api",
        "purpose": "Service or API",
        "description": "My website API",
        "environment": "production",
    }
    assert _posted(assign) == [_A]
    assert result.state["owner_id"] == 258992
    assert result.state["resources"] == [_A]
    assert engine.plan(ProjectResource(), result.state, config).empty


@pytest.mark.asyncio
async def test_project_delete_waits_until_members_are_moved(mock_http, combined_client):
    to_default = _mock_default(mock_http)
    delete = mock_http.delete(f"{_API}/v2/projects/{_PROJECT}").mock(
        side_effect=[
            httpx.Response(412, json={"id": "precondition_failed", "message": "cannot delete a project with resources"}),
            httpx.Response(204),
        ]
    )
    prior = {"name": "my-web-api", "resources": [_A, _B]}

    result = await engine.delete(ProjectResource(), _PROJECT, prior, combined_client)

    assert result.gone
    assert _posted(to_default) == [_A, _B]
    assert delete.call_count == 2


@pytest.mark.asyncio
async def test_project_delete_surfaces_other_precondition_failures(mock_http, combined_client):
    mock_http.delete(f"{_API}/v2/projects/{_PROJECT}").mock(
        return_value=httpx.Response(412, json={"id": "precondition_failed", "message": "default project"})
    )

    with pytest.raises(ResourceOperationError, match="Error deleting digitalocean_project"):
        await engine.delete(ProjectResource(), _PROJECT, {"name": "my-web-api"}, combined_client)
