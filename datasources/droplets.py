"""
datasources/droplets.py

Responsibility: The droplets list data source and the single droplet lookup
(by ID, name or tag).
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from config import CombinedClient
from datasources.base import DataSource, find_one
from resources.droplet import droplet_fields
from schema.attributes import Attribute, AttrType
from services.datalist import DataListSource, ResourceConfig
from services.pagination import list_path


def _computed(kind: AttrType, elem: AttrType | None = None) -> Attribute:
    return Attribute(kind, computed=True, elem=elem)


DROPLET_SCHEMA = {
    "id": _computed(AttrType.INT),
    "name": _computed(AttrType.STRING),
    "image": _computed(AttrType.STRING),
    "region": _computed(AttrType.STRING),
    "size": _computed(AttrType.STRING),
    "disk": _computed(AttrType.INT),
    "vcpus": _computed(AttrType.INT),
    "memory": _computed(AttrType.INT),
    "price_hourly": _computed(AttrType.FLOAT),
    "price_monthly": _computed(AttrType.FLOAT),
    "status": _computed(AttrType.STRING),
    "locked": _computed(AttrType.BOOL),
    "created_at": _computed(AttrType.STRING),
    "vpc_uuid": _computed(AttrType.STRING),
    "urn": _computed(AttrType.STRING),
    "ipv4_address": _computed(AttrType.STRING),
    "ipv4_address_private": _computed(AttrType.STRING),
    "ipv6_address": _computed(AttrType.STRING),
    "backups": _computed(AttrType.BOOL),
    "ipv6": _computed(AttrType.BOOL),
    "monitoring": _computed(AttrType.BOOL),
    "volume_ids": _computed(AttrType.SET, AttrType.STRING),
    "tags": _computed(AttrType.SET, AttrType.STRING),
}


def droplet_record(droplet: Mapping[str, Any]) -> dict[str, Any]:
    image = droplet.get("image") or {}
    return {
        "id": droplet["id"],
        "image": image.get("slug") or str(image.get("id", "")),
        **droplet_fields(dict(droplet)),
    }


async def _get_droplets(meta: CombinedClient, extra: dict[str, Any]) -> list[dict[str, Any]]:
    return await list_path(meta.api_client(), "/v2/droplets", "droplets")


def _flatten_droplet(droplet: dict[str, Any], meta: CombinedClient, extra: dict[str, Any]) -> dict[str, Any]:
    return droplet_record(droplet)


def droplets_source() -> DataListSource:
    return DataListSource(
        ResourceConfig(
            record_schema=DROPLET_SCHEMA,
            result_attribute_name="droplets",
            get_records=_get_droplets,
            flatten_record=_flatten_droplet,
        )
    )


class DropletDataSource(DataSource):
    kind = "digitalocean_droplet"
    exactly_one_of = ("id", "name", "tag")

    schema = {
        **{k: v for k, v in DROPLET_SCHEMA.items() if k not in ("id", "name")},
        "id": Attribute(AttrType.INT, optional=True, computed=True),
        "name": Attribute(AttrType.STRING, optional=True, computed=True),
        "tag": Attribute(AttrType.STRING, optional=True),
    }

    async def lookup(self, query: Mapping[str, Any], meta: CombinedClient) -> dict[str, Any]:
        api = meta.api_client()
        if query.get("id"):
            body, _ = await api.get(f"/v2/droplets/{query['id']}")
            return droplet_record(body["droplet"])
        if query.get("name"):
            droplets = await list_path(api, "/v2/droplets", "droplets")
            found = find_one(droplets, lambda r: r["name"] == query["name"], f"droplet named {query['name']!r}")
            return droplet_record(found)
        droplets = await list_path(api, "/v2/droplets", "droplets", params={"tag_name": query["tag"]})
        found = find_one(droplets, lambda r: True, f"droplet tagged {query['tag']!r}")
        return droplet_record(found)
