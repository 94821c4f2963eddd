"""
resources/volume.py

Responsibility: Block storage volumes and volume-to-droplet attachments.
Volumes grow through an awaited resize action; deleting a volume first
detaches it from every droplet it is attached to.
Does NOT: format or mount filesystems beyond the create-time hints.
"""

from __future__ import annotations

import logging
from typing import Any

from config import CombinedClient
from exceptions import ValidationError
from resources.base import (
    Resource,
    clear_if_not_found,
    gone,
    post_action,
    post_action_tolerating,
    unique_id,
    wait_action,
)
from schema.attributes import Attribute, AttrType
from schema.diff import Plan
from schema.normalizers import build_urn, normalize_region
from schema.resource_data import ResourceData
from schema.validation import int_at_least, no_zero_values, string_in
from services.tags import set_tags, tags_attribute

logger = logging.getLogger(__name__)

FILESYSTEM_TYPES = ("ext4", "xfs")


class VolumeResource(Resource):
    kind = "digitalocean_volume"

    schema = {
        "region": Attribute(AttrType.STRING, required=True, force_new=True, state_func=normalize_region),
        "name": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "size": Attribute(AttrType.INT, required=True, validate=int_at_least(1)),
        "description": Attribute(AttrType.STRING, optional=True, force_new=True),
        "snapshot_id": Attribute(AttrType.STRING, optional=True, force_new=True),
        "initial_filesystem_type": Attribute(
            AttrType.STRING, optional=True, force_new=True, validate=string_in(FILESYSTEM_TYPES)
        ),
        "initial_filesystem_label": Attribute(AttrType.STRING, optional=True, force_new=True),
        "tags": tags_attribute(),
        "droplet_ids": Attribute(AttrType.SET, computed=True, elem=AttrType.INT),
        "filesystem_type": Attribute(AttrType.STRING, computed=True),
        "filesystem_label": Attribute(AttrType.STRING, computed=True),
        "urn": Attribute(AttrType.STRING, computed=True),
    }

    def customize_diff(self, plan: Plan, config: Any) -> None:
        change = plan.changes.get("size")
        if change is not None and change.old and change.new < change.old:
            raise ValidationError([f"volumes can only be resized to a larger size (from {change.old} to {change.new})"])

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        request: dict[str, Any] = {
            "name": d.get("name"),
            "region": d.get("region"),
            "size_gigabytes": d.get("size"),
            "description": d.get("description"),
            "tags": list(d.get("tags")),
        }
        for field, key in (
            ("snapshot_id", "snapshot_id"),
            ("initial_filesystem_type", "filesystem_type"),
            ("initial_filesystem_label", "filesystem_label"),
        ):
            value, ok = d.get_ok(field)
            if ok:
                request[key] = value

        body, _ = await meta.api_client().post("/v2/volumes", request)
        d.set_id(body["volume"]["id"])
        logger.info("Volume %s created", d.id)
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        try:
            body, _ = await meta.api_client().get(f"/v2/volumes/{d.id}")
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        volume = body["volume"]
        d.set("name", volume["name"])
        d.set("region", volume["region"]["slug"])
        d.set("size", volume["size_gigabytes"])
        d.set("description", volume.get("description") or "")
        d.set("droplet_ids", volume.get("droplet_ids") or [])
        d.set("filesystem_type", volume.get("filesystem_type") or "")
        d.set("filesystem_label", volume.get("filesystem_label") or "")
        d.set("tags", volume.get("tags") or [])
        d.set("urn", build_urn("volume", volume["id"]))

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        api = meta.api_client()
        if d.has_change("size"):
            logger.info("Resizing volume %s to %d GiB", d.id, d.get("size"))
            body, _ = await api.post(
                f"/v2/volumes/{d.id}/actions",
                {"type": "resize", "size_gigabytes": d.get("size"), "region": d.get("region")},
            )
            await wait_action(meta, body["action"], d, "update")
        if d.has_change("tags"):
            old, new = d.get_change("tags")
            await set_tags(api, d.id, "volume", old, new)
        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        for droplet_id in d.get_prior("droplet_ids"):
            logger.debug("Detaching volume %s from droplet %s before delete", d.id, droplet_id)
            await post_action_tolerating(
                meta, f"/v2/volumes/{d.id}/actions", {"type": "detach", "droplet_id": droplet_id}, d, "delete"
            )
        await meta.api_client().delete(f"/v2/volumes/{d.id}")
        d.set_id("")


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------


class VolumeAttachmentResource(Resource):
    kind = "digitalocean_volume_attachment"

    schema = {
        "droplet_id": Attribute(AttrType.INT, required=True, force_new=True),
        "volume_id": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        droplet_id, volume_id = d.get("droplet_id"), d.get("volume_id")
        body, _ = await meta.api_client().get(f"/v2/volumes/{volume_id}")
        attached = body["volume"].get("droplet_ids") or []
        if not attached or attached[0] != droplet_id:
            await post_action(meta, *self._request(d, "attach"), d, "create")
        d.set_id(unique_id(f"{droplet_id}-{volume_id}-"))

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        try:
            body, _ = await meta.api_client().get(f"/v2/volumes/{d.get('volume_id')}")
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        attached = body["volume"].get("droplet_ids") or []
        if not attached or attached[0] != d.get("droplet_id"):
            gone(d, self.kind)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        volume_id = d.get("volume_id")
        action = await post_action_tolerating(meta, *self._request(d, "detach"), d, "delete")
        if action is None:
            logger.debug("Volume %s already detached from droplet %s", volume_id, d.get("droplet_id"))
        d.set_id("")

    @staticmethod
    def _request(d: ResourceData, kind: str) -> tuple[str, dict[str, Any]]:
        return f"/v2/volumes/{d.get('volume_id')}/actions", {"type": kind, "droplet_id": d.get("droplet_id")}
