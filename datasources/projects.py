"""
datasources/projects.py

Responsibility: The projects list and the single project lookup (by ID, by
name, or the account's default project when neither is given).
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from config import CombinedClient
from datasources.base import DataSource, find_one
from exceptions import ValidationError
from resources.project import project_fields
from schema.attributes import Attribute, AttrType
from services.datalist import DataListSource, ResourceConfig
from services.pagination import list_path
from services.project_membership import get_default_project, list_project_urns

PROJECT_SCHEMA = {
    "id": Attribute(AttrType.STRING, computed=True),
    "name": Attribute(AttrType.STRING, computed=True),
    "description": Attribute(AttrType.STRING, computed=True),
    "purpose": Attribute(AttrType.STRING, computed=True),
    "environment": Attribute(AttrType.STRING, computed=True),
    "is_default": Attribute(AttrType.BOOL, computed=True),
    "owner_uuid": Attribute(AttrType.STRING, computed=True),
    "owner_id": Attribute(AttrType.INT, computed=True),
    "created_at": Attribute(AttrType.STRING, computed=True),
    "updated_at": Attribute(AttrType.STRING, computed=True),
    "resources": Attribute(AttrType.SET, computed=True, elem=AttrType.STRING),
}


async def project_record(project: Mapping[str, Any], meta: CombinedClient) -> dict[str, Any]:
    urns = await list_project_urns(meta.api_client(), project["id"])
    return {"id": project["id"], **project_fields(dict(project)), "resources": urns}


async def _get_projects(meta: CombinedClient, extra: dict[str, Any]) -> list[dict[str, Any]]:
    return await list_path(meta.api_client(), "/v2/projects", "projects")


def projects_source() -> DataListSource:
    return DataListSource(
        ResourceConfig(
            record_schema=PROJECT_SCHEMA,
            result_attribute_name="projects",
            get_records=_get_projects,
            flatten_record=lambda project, meta, extra: project_record(project, meta),
        )
    )


class ProjectDataSource(DataSource):
    kind = "digitalocean_project"

    schema = {
        **PROJECT_SCHEMA,
        "id": Attribute(AttrType.STRING, optional=True, computed=True),
        "name": Attribute(AttrType.STRING, optional=True, computed=True),
    }

    def validate(self, query: Mapping[str, Any]) -> None:
        super().validate(query)
        if query.get("id") and query.get("name"):
            raise ValidationError([f"{self.kind}: only one of id or name may be set"])

    async def lookup(self, query: Mapping[str, Any], meta: CombinedClient) -> dict[str, Any]:
        api = meta.api_client()
        if query.get("id"):
            body, _ = await api.get(f"/v2/projects/{query['id']}")
            project = body["project"]
        elif query.get("name"):
            projects = await list_path(api, "/v2/projects", "projects")
            project = find_one(projects, lambda p: p["name"] == query["name"], f"project named {query['name']!r}")
        else:
            project = await get_default_project(api)
        return await project_record(project, meta)
