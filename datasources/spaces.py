"""
datasources/spaces.py

Responsibility: Spaces data sources: every bucket across the Spaces
regions, a single bucket, a single object's metadata, and a bucket's object
listing. Object listings page through ListObjects with at most 1000 keys
per request.
Does NOT: read object bodies.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from config import CombinedClient
from datasources.base import DataSource
from exceptions import ProviderError
from resources.spaces import SPACES_REGIONS, bucket_domain_name, bucket_endpoint
from schema.attributes import Attribute, AttrType
from schema.normalizers import build_urn, normalize_region
from schema.validation import int_at_least, no_zero_values, string_in
from services.datalist import DataListSource, ResourceConfig
from services.error_classifier import is_not_found

logger = logging.getLogger(__name__)

KEY_REQUEST_PAGE_SIZE = 1000

BUCKET_SCHEMA = {
    "name": Attribute(AttrType.STRING, computed=True),
    "urn": Attribute(AttrType.STRING, computed=True),
    "region": Attribute(AttrType.STRING, computed=True),
    "bucket_domain_name": Attribute(AttrType.STRING, computed=True),
    "endpoint": Attribute(AttrType.STRING, computed=True),
}


def bucket_record(name: str, region: str) -> dict[str, Any]:
    return {
        "name": name,
        "urn": build_urn("space", name),
        "region": region,
        "bucket_domain_name": bucket_domain_name(name, region),
        "endpoint": bucket_endpoint(region),
    }


def _region_query() -> Attribute:
    return Attribute(
        AttrType.STRING,
        required=True,
        validate=string_in(SPACES_REGIONS, ignore_case=True),
        state_func=normalize_region,
    )


# ---------------------------------------------------------------------------
# Buckets
# ---------------------------------------------------------------------------


async def _get_buckets(meta: CombinedClient, extra: dict[str, Any]) -> list[dict[str, Any]]:
    buckets: list[dict[str, Any]] = []
    for region in SPACES_REGIONS:
        for bucket in await meta.spaces_client(region).list_buckets():
            buckets.append({"name": bucket["Name"], "region": region})
    return buckets


def buckets_source() -> DataListSource:
    return DataListSource(
        ResourceConfig(
            record_schema=BUCKET_SCHEMA,
            result_attribute_name="buckets",
            get_records=_get_buckets,
            flatten_record=lambda bucket, meta, extra: bucket_record(bucket["name"], bucket["region"]),
        )
    )


class SpacesBucketDataSource(DataSource):
    kind = "digitalocean_spaces_bucket"

    schema = {
        **BUCKET_SCHEMA,
        "name": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
        "region": _region_query(),
    }

    async def lookup(self, query: Mapping[str, Any], meta: CombinedClient) -> dict[str, Any]:
        name, region = query["name"], normalize_region(query["region"])
        try:
            await meta.spaces_client(region).head_bucket(name)
        except Exception as exc:
            if is_not_found(exc):
                raise ProviderError(f"Spaces bucket {name!r} does not exist in {region}") from exc
            raise
        return {"id": name, **bucket_record(name, region)}


# ---------------------------------------------------------------------------
# Objects
# ---------------------------------------------------------------------------


class SpacesBucketObjectDataSource(DataSource):
    """Metadata of one object, read with HeadObject."""

    kind = "digitalocean_spaces_bucket_object"

    schema = {
        "bucket": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
        "region": _region_query(),
        "key": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
        "content_length": Attribute(AttrType.INT, computed=True),
        "content_type": Attribute(AttrType.STRING, computed=True),
        "etag": Attribute(AttrType.STRING, computed=True),
        "last_modified": Attribute(AttrType.STRING, computed=True),
        "version_id": Attribute(AttrType.STRING, computed=True),
        "metadata": Attribute(AttrType.MAP, computed=True, elem=AttrType.STRING),
    }

    async def lookup(self, query: Mapping[str, Any], meta: CombinedClient) -> dict[str, Any]:
        bucket, key = query["bucket"], query["key"]
        head = await meta.spaces_client(query["region"]).head_object(bucket, key)
        last_modified = head.get("LastModified")
        return {
            "id": f"{bucket}/{key}",
            "content_length": head.get("ContentLength", 0),
            "content_type": head.get("ContentType", ""),
            "etag": (head.get("ETag") or "").strip('"'),
            "last_modified": last_modified.isoformat() if hasattr(last_modified, "isoformat") else str(last_modified or ""),
            "version_id": head.get("VersionId", ""),
            "metadata": dict(head.get("Metadata") or {}),
        }


class SpacesBucketObjectsDataSource(DataSource):
    """
    Lists object keys in a bucket.

    ``max_keys`` bounds the total number of keys returned, not the page
    size: each request asks for at most 1000 keys, and once the remaining
    allowance drops to 1000 or below the next request asks for exactly that.
    """

    kind = "digitalocean_spaces_bucket_objects"

    schema = {
        "bucket": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
        "region": _region_query(),
        "prefix": Attribute(AttrType.STRING, optional=True),
        "delimiter": Attribute(AttrType.STRING, optional=True),
        "encoding_type": Attribute(AttrType.STRING, optional=True),
        "max_keys": Attribute(AttrType.INT, optional=True, default=1000, validate=int_at_least(1)),
        "keys": Attribute(AttrType.LIST, computed=True, elem=AttrType.STRING),
        "common_prefixes": Attribute(AttrType.LIST, computed=True, elem=AttrType.STRING),
        "owners": Attribute(AttrType.LIST, computed=True, elem=AttrType.STRING),
    }

    async def lookup(self, query: Mapping[str, Any], meta: CombinedClient) -> dict[str, Any]:
        spaces = meta.spaces_client(query["region"])
        bucket = query["bucket"]
        remaining = query.get("max_keys") or KEY_REQUEST_PAGE_SIZE
        params: dict[str, Any] = {
            "Prefix": query.get("prefix"),
            "Delimiter": query.get("delimiter"),
            "EncodingType": query.get("encoding_type"),
        }

        keys: list[str] = []
        common_prefixes: list[str] = []
        owners: list[str] = []
        marker = ""
        while remaining > 0:
            page = await spaces.list_objects_page(
                bucket, MaxKeys=min(remaining, KEY_REQUEST_PAGE_SIZE), Marker=marker, **params
            )
            contents = list(page.get("Contents") or [])
            common_prefixes.extend(p["Prefix"] for p in page.get("CommonPrefixes") or [])
            for obj in contents:
                keys.append(obj["Key"])
                if obj.get("Owner"):
                    owners.append(obj["Owner"].get("ID", ""))
            remaining -= len(contents)
            if not page.get("IsTruncated"):
                break
            marker = page.get("NextMarker") or (contents[-1]["Key"] if contents else "")
            if not marker:
                break
        logger.debug("Listed %d key(s) in Spaces bucket %s", len(keys), bucket)
        return {"keys": keys, "common_prefixes": common_prefixes, "owners": owners}
