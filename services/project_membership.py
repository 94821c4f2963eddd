"""
services/project_membership.py

Responsibility: Keeps the set of resources assigned to a project in line with
a desired set of URNs. The API has no "remove from project" call, so removed
URNs are reassigned to the account's default project.
Does NOT: create or delete projects, or validate URN kinds.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from doapi.api_client import DigitalOceanClient
from schema.normalizers import urn_remap
from services.error_classifier import is_not_found
from services.pagination import list_path

logger = logging.getLogger(__name__)


@dataclass
class MembershipResult:
    """
    Outcome of update_membership().

    ``found`` is False when the project no longer exists upstream; the
    caller then clears its handle.
    """

    found: bool = True
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    urns: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def get_default_project(api: DigitalOceanClient) -> dict[str, Any]:
    body, _ = await api.get("/v2/projects/default")
    return body["project"]


async def list_project_urns(api: DigitalOceanClient, project_id: str) -> list[str]:
    resources = await list_path(api, f"/v2/projects/{project_id}/resources", "resources")
    return [r["urn"] for r in resources]


async def assign_resources(api: DigitalOceanClient, project_id: str, urns: Iterable[str]) -> None:
    batch = list(urns)
    if not batch:
        return
    logger.debug("Assigning %d resource(s) to project %s", len(batch), project_id)
    await api.post(f"/v2/projects/{project_id}/resources", {"resources": batch})


async def update_membership(
    api: DigitalOceanClient,
    project_id: str,
    desired: Iterable[str],
    *,
    managed: Iterable[str] | None = None,
) -> MembershipResult:
    """
    Reconciles a project's membership with ``desired``.

    URNs present upstream but not desired are moved to the default project;
    desired URNs not present upstream are assigned to ``project_id``. URNs
    already in place are left untouched, so repeated calls are no-ops.

    Args:
        api: REST client.
        project_id: Target project.
        desired: URNs that must belong to the project.
        managed: When given, only these URNs are candidates for removal
            (used when other tooling also assigns resources to the project).

    Returns:
        A MembershipResult; ``found`` is False if the project is gone.
    """
    desired_set = {urn_remap(u, legacy=False) for u in desired}
    try:
        current = await list_project_urns(api, project_id)
    except Exception as exc:
        if is_not_found(exc):
            logger.warning("Project %s not found while reconciling membership", project_id)
            return MembershipResult(found=False)
        raise
    current_set = {urn_remap(u, legacy=False) for u in current}

    to_remove = current_set - desired_set
    if managed is not None:
        to_remove &= {urn_remap(u, legacy=False) for u in managed}
    to_add = desired_set - current_set

    if to_remove:
        default = await get_default_project(api)
        if default["id"] != project_id:
            logger.info("Moving %d resource(s) from project %s to default project", len(to_remove), project_id)
            await assign_resources(api, default["id"], sorted(to_remove))
    if to_add:
        logger.info("Assigning %d resource(s) to project %s", len(to_add), project_id)
        await assign_resources(api, project_id, sorted(to_add))

    return MembershipResult(
        found=True,
        added=sorted(to_add),
        removed=sorted(to_remove),
        urns=sorted((current_set - to_remove) | to_add),
    )
