"""
resources/spaces.py

Responsibility: Spaces buckets and bucket policies, driven through the
region-scoped S3 client from CombinedClient.spaces_client(). S3 failures
surface as SpacesError; nothing here terminates the process.
Does NOT: manage objects, CORS or lifecycle rules.
"""

from __future__ import annotations

import logging

from config import CombinedClient
from doapi.spaces_client import SpacesClient
from exceptions import ProviderError, SpacesError
from resources.base import Resource, clear_if_not_found, retry_operation, split_import_id
from schema.attributes import Attribute, AttrType
from schema.normalizers import JsonEquivalent, build_urn, normalize_json, normalize_region
from schema.resource_data import ResourceData
from schema.validation import all_of, is_json, no_zero_values, string_in
from services.error_classifier import is_spaces_error

logger = logging.getLogger(__name__)

SPACES_REGIONS = ("ams3", "blr1", "fra1", "lon1", "nyc3", "sfo2", "sfo3", "sgp1", "syd1", "tor1")
BUCKET_ACLS = ("private", "public-read")

# A freshly created bucket is not visible to every endpoint at once
_CREATE_RETRY_SECONDS = 5 * 60.0
_CONSISTENCY_RETRY_SECONDS = 60.0


def bucket_domain_name(bucket: str, region: str) -> str:
    return f"{bucket}.{region}.digitaloceanspaces.com"


def bucket_endpoint(region: str) -> str:
    return f"{region}.digitaloceanspaces.com"


def _spaces(d: ResourceData, meta: CombinedClient) -> SpacesClient:
    return meta.spaces_client(d.get("region"))


def _spaces_code(*codes: str):
    return lambda exc: is_spaces_error(exc, *codes)


def _region_attribute() -> Attribute:
    return Attribute(
        AttrType.STRING,
        required=True,
        force_new=True,
        validate=string_in(SPACES_REGIONS, ignore_case=True),
        state_func=normalize_region,
    )


# ---------------------------------------------------------------------------
# Bucket
# ---------------------------------------------------------------------------


class SpacesBucketResource(Resource):
    kind = "digitalocean_spaces_bucket"
    import_fields = ("region", "name")
    import_hint = "importing a Spaces bucket requires the format"

    schema = {
        "name": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "region": _region_attribute(),
        "acl": Attribute(AttrType.STRING, optional=True, default="private", validate=string_in(BUCKET_ACLS)),
        "versioning": Attribute(AttrType.BOOL, optional=True, default=False),
        "force_destroy": Attribute(AttrType.BOOL, optional=True, default=False),
        "urn": Attribute(AttrType.STRING, computed=True),
        "bucket_domain_name": Attribute(AttrType.STRING, computed=True),
        "endpoint": Attribute(AttrType.STRING, computed=True),
    }

    async def import_state(self, import_id: str, d: ResourceData, meta: CombinedClient) -> None:
        region, name = split_import_id(import_id, self.import_fields, hint=self.import_hint)
        d.set("region", region)
        d.set("name", name)
        d.set_id(name)

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        spaces = _spaces(d, meta)
        name = d.get("name")
        await retry_operation(
            meta,
            d,
            "create",
            lambda: spaces.create_bucket(name, d.get("acl")),
            _spaces_code("OperationAborted"),
            timeout=_CREATE_RETRY_SECONDS,
            description=f"creation of Spaces bucket {name}",
        )
        d.set_id(name)
        logger.info("Spaces bucket %s created in %s", name, spaces.region)
        await retry_operation(
            meta,
            d,
            "create",
            lambda: spaces.head_bucket(name),
            _spaces_code("NoSuchBucket"),
            timeout=_CONSISTENCY_RETRY_SECONDS,
            description=f"visibility of Spaces bucket {name}",
        )
        if d.get("versioning"):
            await self._put_versioning(spaces, d, meta, "create")
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        spaces = _spaces(d, meta)
        try:
            await spaces.head_bucket(d.id)
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        location = await spaces.get_bucket_location(d.id)
        region = normalize_region(location or spaces.region)
        if region != spaces.region:
            raise ProviderError(f"bucket {d.id} is located in {region}, not {spaces.region}")

        d.set("name", d.id)
        d.set("region", region)
        d.set("versioning", await spaces.get_bucket_versioning(d.id))
        d.set("urn", build_urn("space", d.id))
        d.set("bucket_domain_name", bucket_domain_name(d.id, region))
        d.set("endpoint", bucket_endpoint(region))

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        spaces = _spaces(d, meta)
        if d.has_change("acl"):
            await spaces.put_bucket_acl(d.id, d.get("acl"))
        if d.has_change("versioning"):
            await self._put_versioning(spaces, d, meta, "update")
        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        spaces = _spaces(d, meta)
        force = bool(d.get("force_destroy"))

        async def attempt() -> None:
            try:
                await spaces.delete_bucket(d.id)
            except SpacesError as exc:
                if exc.code != "BucketNotEmpty" or not force:
                    raise
                objects = await spaces.list_object_versions(d.id)
                logger.info("Spaces bucket %s not empty, deleting %d object(s)", d.id, len(objects))
                if objects:
                    await spaces.delete_objects(d.id, objects)
                raise

        # Listings lag behind deletes, so an emptied bucket can still report BucketNotEmpty
        await retry_operation(
            meta,
            d,
            "delete",
            attempt,
            lambda exc: force and is_spaces_error(exc, "BucketNotEmpty"),
            description=f"delete of Spaces bucket {d.id}",
        )
        logger.info("Spaces bucket %s deleted", d.id)
        d.set_id("")

    @staticmethod
    async def _put_versioning(spaces: SpacesClient, d: ResourceData, meta: CombinedClient, operation: str) -> None:
        enabled = bool(d.get("versioning"))
        await retry_operation(
            meta,
            d,
            operation,
            lambda: spaces.put_bucket_versioning(d.id, enabled),
            _spaces_code("NoSuchBucket"),
            timeout=_CONSISTENCY_RETRY_SECONDS,
            description=f"versioning of Spaces bucket {d.id}",
        )


# ---------------------------------------------------------------------------
# Bucket policy
# ---------------------------------------------------------------------------


class SpacesBucketPolicyResource(Resource):
    kind = "digitalocean_spaces_bucket_policy"
    import_fields = ("region", "bucket")
    import_hint = "importing a Spaces bucket policy requires the format"

    schema = {
        "region": _region_attribute(),
        "bucket": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "policy": Attribute(
            AttrType.STRING,
            required=True,
            validate=all_of(no_zero_values, is_json),
            state_func=normalize_json,
            comparator=JsonEquivalent(),
        ),
    }

    async def import_state(self, import_id: str, d: ResourceData, meta: CombinedClient) -> None:
        region, bucket = split_import_id(import_id, self.import_fields, hint=self.import_hint)
        d.set("region", region)
        d.set("bucket", bucket)
        d.set_id(bucket)

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        bucket = d.get("bucket")
        await self._put(d, meta, bucket)
        d.set_id(bucket)
        logger.info("Policy applied to Spaces bucket %s", bucket)
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        try:
            policy = await _spaces(d, meta).get_bucket_policy(d.id)
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        d.set("bucket", d.id)
        d.set("policy", normalize_json(policy))

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        if d.has_change("policy"):
            await self._put(d, meta, d.id)
        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        try:
            await _spaces(d, meta).delete_bucket_policy(d.id)
        except SpacesError as exc:
            if not is_spaces_error(exc, "BucketDeleted", "NoSuchBucket"):
                raise
            logger.warning("Bucket %s is already deleted, dropping its policy from state", d.id)
        d.set_id("")

    @staticmethod
    async def _put(d: ResourceData, meta: CombinedClient, bucket: str) -> None:
        try:
            await _spaces(d, meta).put_bucket_policy(bucket, d.get("policy"))
        except SpacesError as exc:
            if is_spaces_error(exc, "NoSuchKey", "NoSuchBucket"):
                raise ProviderError(
                    f"Unable to apply Spaces bucket policy because bucket {bucket!r} does not exist"
                ) from exc
            raise
