"""
resources/tag.py

Responsibility: Standalone tags and their per-kind resource counts.
Does NOT: attach tags to resources (taggable kinds do that via services/tags.py).
"""

from __future__ import annotations

from config import CombinedClient
from resources.base import Resource, clear_if_not_found
from schema.attributes import Attribute, AttrType
from schema.resource_data import ResourceData
from services.tags import validate_tag

TAG_COUNTS = {
    "droplets_count": "droplets",
    "images_count": "images",
    "volumes_count": "volumes",
    "volume_snapshots_count": "volume_snapshots",
    "databases_count": "databases",
}


class TagResource(Resource):
    kind = "digitalocean_tag"

    schema = {
        "name": Attribute(AttrType.STRING, required=True, force_new=True, validate=validate_tag),
        "total_resource_count": Attribute(AttrType.INT, computed=True),
        **{name: Attribute(AttrType.INT, computed=True) for name in TAG_COUNTS},
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        body, _ = await meta.api_client().post("/v2/tags", {"name": d.get("name")})
        d.set_id(body["tag"]["name"])
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        try:
            body, _ = await meta.api_client().get(f"/v2/tags/{d.id}")
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        tag = body["tag"]
        resources = tag.get("resources") or {}
        d.set("name", tag["name"])
        d.set("total_resource_count", resources.get("count", 0))
        for attr, key in TAG_COUNTS.items():
            d.set(attr, (resources.get(key) or {}).get("count", 0))

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        await meta.api_client().delete(f"/v2/tags/{d.id}")
        d.set_id("")
