"""
datasources/catalog.py

Responsibility: List data sources over the account's catalog endpoints:
regions, sizes, images, tags and SSH keys. Each is a plain datalist
instantiation; the records come straight from the paginated listings.
"""

from __future__ import annotations

from typing import Any

from config import CombinedClient
from schema.attributes import Attribute, AttrType, Schema
from resources.tag import TAG_COUNTS
from services.datalist import DataListSource, ResourceConfig
from services.pagination import list_path


def _computed(kind: AttrType, elem: AttrType | None = None) -> Attribute:
    return Attribute(kind, computed=True, elem=elem)


def _listing(path: str, key: str):
    async def get_records(meta: CombinedClient, extra: dict[str, Any]) -> list[dict[str, Any]]:
        return await list_path(meta.api_client(), path, key)

    return get_records


def _source(schema: Schema, name: str, get_records, flatten, *, sort_keys: list[str] | None = None) -> DataListSource:
    return DataListSource(
        ResourceConfig(
            record_schema=schema,
            result_attribute_name=name,
            get_records=get_records,
            flatten_record=lambda record, meta, extra: flatten(record),
            sort_keys=sort_keys,
        )
    )


# ---------------------------------------------------------------------------
# Regions
# ---------------------------------------------------------------------------

REGION_SCHEMA = {
    "slug": _computed(AttrType.STRING),
    "name": _computed(AttrType.STRING),
    "sizes": _computed(AttrType.SET, AttrType.STRING),
    "features": _computed(AttrType.SET, AttrType.STRING),
    "available": _computed(AttrType.BOOL),
}


def region_record(region: dict[str, Any]) -> dict[str, Any]:
    return {
        "slug": region["slug"],
        "name": region.get("name", ""),
        "sizes": region.get("sizes") or [],
        "features": region.get("features") or [],
        "available": bool(region.get("available")),
    }


def regions_source() -> DataListSource:
    return _source(REGION_SCHEMA, "regions", _listing("/v2/regions", "regions"), region_record)


# ---------------------------------------------------------------------------
# Sizes
# ---------------------------------------------------------------------------

SIZE_SCHEMA = {
    "slug": _computed(AttrType.STRING),
    "available": _computed(AttrType.BOOL),
    "transfer": _computed(AttrType.FLOAT),
    "price_monthly": _computed(AttrType.FLOAT),
    "price_hourly": _computed(AttrType.FLOAT),
    "memory": _computed(AttrType.INT),
    "vcpus": _computed(AttrType.INT),
    "disk": _computed(AttrType.INT),
    "regions": _computed(AttrType.SET, AttrType.STRING),
}


def size_record(size: dict[str, Any]) -> dict[str, Any]:
    return {
        "slug": size["slug"],
        "available": bool(size.get("available")),
        "transfer": float(size.get("transfer") or 0),
        "price_monthly": float(size.get("price_monthly") or 0),
        "price_hourly": float(size.get("price_hourly") or 0),
        "memory": size.get("memory", 0),
        "vcpus": size.get("vcpus", 0),
        "disk": size.get("disk", 0),
        "regions": size.get("regions") or [],
    }


def sizes_source() -> DataListSource:
    return _source(
        SIZE_SCHEMA,
        "sizes",
        _listing("/v2/sizes", "sizes"),
        size_record,
        sort_keys=["slug", "memory", "vcpus", "disk", "transfer", "price_monthly", "price_hourly"],
    )


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------

IMAGE_SCHEMA = {
    "id": _computed(AttrType.INT),
    "slug": _computed(AttrType.STRING),
    "name": _computed(AttrType.STRING),
    "type": _computed(AttrType.STRING),
    "distribution": _computed(AttrType.STRING),
    "private": _computed(AttrType.BOOL),
    "regions": _computed(AttrType.SET, AttrType.STRING),
    "min_disk_size": _computed(AttrType.INT),
    "size_gigabytes": _computed(AttrType.FLOAT),
    "created": _computed(AttrType.STRING),
    "description": _computed(AttrType.STRING),
    "tags": _computed(AttrType.SET, AttrType.STRING),
    "status": _computed(AttrType.STRING),
    "error_message": _computed(AttrType.STRING),
}


def image_record(image: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": image["id"],
        "slug": image.get("slug") or "",
        "name": image.get("name", ""),
        "type": image.get("type", ""),
        "distribution": image.get("distribution", ""),
        "private": not image.get("public", False),
        "regions": image.get("regions") or [],
        "min_disk_size": image.get("min_disk_size", 0),
        "size_gigabytes": float(image.get("size_gigabytes") or 0),
        "created": image.get("created_at", ""),
        "description": image.get("description") or "",
        "tags": image.get("tags") or [],
        "status": image.get("status", ""),
        "error_message": image.get("error_message") or "",
    }


def images_source() -> DataListSource:
    return _source(IMAGE_SCHEMA, "images", _listing("/v2/images", "images"), image_record)


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

TAG_SCHEMA = {
    "name": _computed(AttrType.STRING),
    "total_resource_count": _computed(AttrType.INT),
    **{name: _computed(AttrType.INT) for name in TAG_COUNTS},
}


def tag_record(tag: dict[str, Any]) -> dict[str, Any]:
    resources = tag.get("resources") or {}
    record = {"name": tag["name"], "total_resource_count": resources.get("count", 0)}
    for attr, key in TAG_COUNTS.items():
        record[attr] = (resources.get(key) or {}).get("count", 0)
    return record


def tags_source() -> DataListSource:
    return _source(TAG_SCHEMA, "tags", _listing("/v2/tags", "tags"), tag_record)


# ---------------------------------------------------------------------------
# SSH keys
# ---------------------------------------------------------------------------

SSH_KEY_SCHEMA = {
    "id": _computed(AttrType.INT),
    "name": _computed(AttrType.STRING),
    "public_key": _computed(AttrType.STRING),
    "fingerprint": _computed(AttrType.STRING),
}


def ssh_key_record(key: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": key["id"],
        "name": key.get("name", ""),
        "public_key": (key.get("public_key") or "").strip(),
        "fingerprint": key.get("fingerprint", ""),
    }


def ssh_keys_source() -> DataListSource:
    return _source(SSH_KEY_SCHEMA, "ssh_keys", _listing("/v2/account/keys", "ssh_keys"), ssh_key_record)
