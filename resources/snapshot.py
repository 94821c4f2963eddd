"""
resources/snapshot.py

Responsibility: Droplet snapshots (taken through an awaited droplet action
and located afterwards by the action's start time) and volume snapshots.
Does NOT: restore snapshots; droplets and volumes reference them by ID.
"""

from __future__ import annotations

import logging
from typing import Any

from config import CombinedClient
from doapi.types import Action
from exceptions import ProviderError
from resources.base import Resource, clear_if_not_found, wait_action
from schema.attributes import Attribute, AttrType
from schema.resource_data import ResourceData
from schema.validation import no_zero_values
from services.pagination import list_path
from services.tags import set_tags, tags_attribute

logger = logging.getLogger(__name__)


class _SnapshotReader(Resource):
    """Reads any snapshot through /v2/snapshots/{id}."""

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        try:
            body, _ = await meta.api_client().get(f"/v2/snapshots/{d.id}")
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        self._flatten(d, body["snapshot"])

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        logger.info("Deleting snapshot %s", d.id)
        await meta.api_client().delete(f"/v2/snapshots/{d.id}")
        d.set_id("")

    def _flatten(self, d: ResourceData, snapshot: dict[str, Any]) -> None:
        raise NotImplementedError


class DropletSnapshotResource(_SnapshotReader):
    kind = "digitalocean_droplet_snapshot"

    schema = {
        "name": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "droplet_id": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "regions": Attribute(AttrType.SET, computed=True, elem=AttrType.STRING),
        "size": Attribute(AttrType.FLOAT, computed=True),
        "min_disk_size": Attribute(AttrType.INT, computed=True),
        "created_at": Attribute(AttrType.STRING, computed=True),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        droplet_id = d.get("droplet_id")
        body, _ = await meta.api_client().post(
            f"/v2/droplets/{droplet_id}/actions", {"type": "snapshot", "name": d.get("name")}
        )
        action = await wait_action(meta, body["action"], d, "create")
        snapshot = await self._find_snapshot(meta, droplet_id, action)
        d.set_id(snapshot["id"])
        await self.read(d, meta)

    def _flatten(self, d: ResourceData, snapshot: dict[str, Any]) -> None:
        d.set("name", snapshot["name"])
        d.set("droplet_id", str(snapshot.get("resource_id", "")))
        d.set("regions", snapshot.get("regions") or [])
        d.set("size", float(snapshot.get("size_gigabytes") or 0))
        d.set("min_disk_size", snapshot.get("min_disk_size") or 0)
        d.set("created_at", snapshot.get("created_at", ""))

    @staticmethod
    async def _find_snapshot(meta: CombinedClient, droplet_id: str, action: Action) -> dict[str, Any]:
        """The droplet snapshot whose creation time matches the action's start time."""
        snapshots = await list_path(meta.api_client(), f"/v2/droplets/{droplet_id}/snapshots", "snapshots")
        for snapshot in snapshots:
            if snapshot.get("created_at") == action.started_at:
                return snapshot
        raise ProviderError(f"could not locate the snapshot of droplet {droplet_id} taken by action {action.id}")


class VolumeSnapshotResource(_SnapshotReader):
    kind = "digitalocean_volume_snapshot"

    schema = {
        "name": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "volume_id": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "tags": tags_attribute(),
        "regions": Attribute(AttrType.SET, computed=True, elem=AttrType.STRING),
        "size": Attribute(AttrType.FLOAT, computed=True),
        "min_disk_size": Attribute(AttrType.INT, computed=True),
        "created_at": Attribute(AttrType.STRING, computed=True),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        request = {"name": d.get("name"), "tags": list(d.get("tags"))}
        body, _ = await meta.api_client().post(f"/v2/volumes/{d.get('volume_id')}/snapshots", request)
        d.set_id(body["snapshot"]["id"])
        logger.info("Volume snapshot %s created", d.id)
        await self.read(d, meta)

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        if d.has_change("tags"):
            old, new = d.get_change("tags")
            await set_tags(meta.api_client(), d.id, "volume_snapshot", old, new)
        await self.read(d, meta)

    def _flatten(self, d: ResourceData, snapshot: dict[str, Any]) -> None:
        d.set("name", snapshot["name"])
        d.set("volume_id", str(snapshot.get("resource_id", "")))
        d.set("tags", snapshot.get("tags") or [])
        d.set("regions", snapshot.get("regions") or [])
        d.set("size", float(snapshot.get("size_gigabytes") or 0))
        d.set("min_disk_size", snapshot.get("min_disk_size") or 0)
        d.set("created_at", snapshot.get("created_at", ""))
