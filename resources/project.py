"""
resources/project.py

Responsibility: Projects and their resource membership. The project kind
owns its settings and, optionally, its members; project_resources manages
only the membership of a project created elsewhere.
Does NOT: create the resources it assigns; members are referenced by URN.
"""

from __future__ import annotations

import logging
from typing import Any

from config import CombinedClient
from exceptions import ProviderError
from resources.base import Resource, clear_if_not_found, gone, retry_operation
from schema.attributes import Attribute, AttrType
from schema.normalizers import CaseInsensitive, UrnSetComparator, urns_equal
from schema.resource_data import ResourceData
from schema.validation import all_of, no_zero_values, string_in
from services.error_classifier import is_api_error
from services.project_membership import (
    assign_resources,
    get_default_project,
    list_project_urns,
    update_membership,
)

logger = logging.getLogger(__name__)

ENVIRONMENTS = ("development", "staging", "production")
DEFAULT_PURPOSE = "Web Application"
_PURPOSE_PREFIX = "Other: "
_NOT_EMPTY = "cannot delete a project with resources"


def _max_length(limit: int):
    def check(value: Any, key: str) -> list[str]:
        if len(str(value)) > limit:
            return [f"{key}: expected length at most {limit}, got {len(str(value))}"]
        return []

    return check


def _urns_attribute() -> Attribute:
    return Attribute(AttrType.SET, optional=True, computed=True, elem=AttrType.STRING, comparator=UrnSetComparator())


class ProjectResource(Resource):
    kind = "digitalocean_project"
    timeouts = {"delete": 3 * 60.0}

    schema = {
        "name": Attribute(AttrType.STRING, required=True, validate=all_of(no_zero_values, _max_length(175))),
        "description": Attribute(AttrType.STRING, optional=True, validate=_max_length(255)),
        "purpose": Attribute(AttrType.STRING, optional=True, default=DEFAULT_PURPOSE, validate=_max_length(255)),
        "environment": Attribute(
            AttrType.STRING,
            optional=True,
            validate=string_in(ENVIRONMENTS, ignore_case=True),
            comparator=CaseInsensitive(),
        ),
        "is_default": Attribute(AttrType.BOOL, optional=True, default=False),
        "resources": _urns_attribute(),
        "owner_uuid": Attribute(AttrType.STRING, computed=True),
        "owner_id": Attribute(AttrType.INT, computed=True),
        "created_at": Attribute(AttrType.STRING, computed=True),
        "updated_at": Attribute(AttrType.STRING, computed=True),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        api = meta.api_client()
        request: dict[str, Any] = {"name": d.get("name"), "purpose": d.get("purpose")}
        for field in ("description", "environment"):
            value, ok = d.get_ok(field)
            if ok:
                request[field] = value
        body, _ = await api.post("/v2/projects", request)
        project = body["project"]
        d.set_id(project["id"])
        logger.info("Project %s (%s) created", project["name"], d.id)

        urns, ok = d.get_ok("resources")
        if ok:
            await assign_resources(api, d.id, sorted(urns))
        if d.get("is_default"):
            await api.put(f"/v2/projects/{d.id}", self._request(d))
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        api = meta.api_client()
        try:
            body, _ = await api.get(f"/v2/projects/{d.id}")
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        for name, value in project_fields(body["project"]).items():
            d.set(name, value)
        d.set("resources", await list_project_urns(api, d.id))

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        api = meta.api_client()
        await api.put(f"/v2/projects/{d.id}", self._request(d))
        if d.has_change("resources"):
            old, new = d.get_change("resources")
            result = await update_membership(api, d.id, new, managed=old)
            if not result.found:
                gone(d, self.kind)
                return
        logger.info("Project %s updated", d.id)
        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        api = meta.api_client()
        members = sorted(d.get_prior("resources"))
        if members:
            default = await get_default_project(api)
            await assign_resources(api, default["id"], members)
            logger.info("Moved %d resource(s) of project %s to the default project", len(members), d.id)

        # Reassignment is asynchronous upstream; the project stays non-empty for a while.
        await retry_operation(
            meta,
            d,
            "delete",
            lambda: api.delete(f"/v2/projects/{d.id}"),
            lambda exc: is_api_error(exc, 412, _NOT_EMPTY),
            description=f"delete of project {d.id}",
        )
        logger.info("Project %s deleted", d.id)
        d.set_id("")

    @staticmethod
    def _request(d: ResourceData) -> dict[str, Any]:
        return {
            "name": d.get("name"),
            "description": d.get("description"),
            "purpose": d.get("purpose"),
            "environment": d.get("environment"),
            "is_default": d.get("is_default"),
        }


class ProjectResourcesResource(Resource):
    """Membership of an existing project; other members are left alone."""

    kind = "digitalocean_project_resources"

    schema = {
        "project": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "resources": Attribute(
            AttrType.SET, required=True, elem=AttrType.STRING, comparator=UrnSetComparator()
        ),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        project_id = d.get("project")
        result = await update_membership(meta.api_client(), project_id, d.get("resources"), managed=())
        if not result.found:
            raise ProviderError(f"project {project_id} does not exist")
        d.set_id(project_id)
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        try:
            current = await list_project_urns(meta.api_client(), d.id)
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        managed = list(d.get("resources"))
        d.set("project", d.id)
        d.set("resources", [u for u in current if any(urns_equal(u, m) for m in managed)])

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        if d.has_change("resources"):
            old, new = d.get_change("resources")
            result = await update_membership(meta.api_client(), d.id, new, managed=old)
            if not result.found:
                gone(d, self.kind)
                return
        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        result = await update_membership(meta.api_client(), d.id, (), managed=d.get_prior("resources"))
        logger.info("Released %d resource(s) from project %s", len(result.removed), d.id)
        d.set_id("")


def project_fields(project: dict[str, Any]) -> dict[str, Any]:
    """Projects an upstream project payload onto the project schema (members excluded)."""
    return {
        "name": project["name"],
        "purpose": (project.get("purpose") or "").removeprefix(_PURPOSE_PREFIX),
        "description": project.get("description") or "",
        "environment": project.get("environment") or "",
        "is_default": bool(project.get("is_default")),
        "owner_uuid": project.get("owner_uuid") or "",
        "owner_id": project.get("owner_id") or 0,
        "created_at": project.get("created_at") or "",
        "updated_at": project.get("updated_at") or "",
    }
