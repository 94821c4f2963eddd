"""
doapi/spaces_client.py

Responsibility: Wraps a region-scoped boto3 S3 client pointed at DigitalOcean
Spaces. Every boto3 call is blocking and is offloaded to a worker thread.
Does NOT: build sessions or credentials (see config.py), or hold resource state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from exceptions import SpacesError

logger = logging.getLogger(__name__)


class SpacesClient:
    """
    Async facade over a boto3 S3 client for one Spaces region.

    boto3 calls are synchronous and are run via asyncio.to_thread to keep the
    event loop unblocked. botocore ClientError is translated into SpacesError
    carrying the AWS-style error code.

    Collaborators:
        - boto3 S3 client: injected, already bound to the region endpoint
    """

    def __init__(self, s3_client: Any, region: str) -> None:
        """
        Args:
            s3_client: A boto3 ``s3`` client whose endpoint_url targets the region.
            region: Lowercased region slug, e.g. "nyc3".
        """
        self._s3 = s3_client
        self.region = region

    # ---------------------------------------------------------------------------
    # Buckets
    # ---------------------------------------------------------------------------

    async def create_bucket(self, bucket: str, acl: str = "private") -> None:
        await self._call("create_bucket", Bucket=bucket, ACL=acl)

    async def head_bucket(self, bucket: str) -> dict[str, Any]:
        return await self._call("head_bucket", Bucket=bucket)

    async def delete_bucket(self, bucket: str) -> None:
        await self._call("delete_bucket", Bucket=bucket)

    async def get_bucket_location(self, bucket: str) -> str:
        result = await self._call("get_bucket_location", Bucket=bucket)
        return result.get("LocationConstraint") or ""

    async def put_bucket_acl(self, bucket: str, acl: str) -> None:
        await self._call("put_bucket_acl", Bucket=bucket, ACL=acl)

    async def list_buckets(self) -> list[dict[str, Any]]:
        result = await self._call("list_buckets")
        return list(result.get("Buckets") or [])

    async def put_bucket_versioning(self, bucket: str, enabled: bool) -> None:
        status = "Enabled" if enabled else "Suspended"
        await self._call(
            "put_bucket_versioning",
            Bucket=bucket,
            VersioningConfiguration={"Status": status},
        )

    async def get_bucket_versioning(self, bucket: str) -> bool:
        result = await self._call("get_bucket_versioning", Bucket=bucket)
        return result.get("Status") == "Enabled"

    # ---------------------------------------------------------------------------
    # Bucket policies
    # ---------------------------------------------------------------------------

    async def put_bucket_policy(self, bucket: str, policy: str) -> None:
        await self._call("put_bucket_policy", Bucket=bucket, Policy=policy)

    async def get_bucket_policy(self, bucket: str) -> str:
        result = await self._call("get_bucket_policy", Bucket=bucket)
        return result.get("Policy") or ""

    async def delete_bucket_policy(self, bucket: str) -> None:
        await self._call("delete_bucket_policy", Bucket=bucket)

    # ---------------------------------------------------------------------------
    # Objects
    # ---------------------------------------------------------------------------

    async def list_objects_page(self, bucket: str, **params: Any) -> dict[str, Any]:
        """
        Fetches a single ListObjects page.

        Args:
            bucket: Bucket name.
            **params: Prefix, Delimiter, EncodingType, MaxKeys, Marker.

        Returns:
            The raw ListObjects response (Contents, CommonPrefixes, IsTruncated,
            NextMarker).
        """
        query = {k: v for k, v in params.items() if v not in (None, "")}
        return await self._call("list_objects", Bucket=bucket, **query)

    async def head_object(self, bucket: str, key: str) -> dict[str, Any]:
        return await self._call("head_object", Bucket=bucket, Key=key)

    async def list_object_versions(self, bucket: str, max_keys: int = 1000) -> list[dict[str, Any]]:
        """Every object version and delete marker, as Key/VersionId pairs."""
        result = await self._call("list_object_versions", Bucket=bucket, MaxKeys=max_keys)
        entries = list(result.get("Versions") or []) + list(result.get("DeleteMarkers") or [])
        return [{"Key": e["Key"], "VersionId": e["VersionId"]} for e in entries]

    async def delete_objects(self, bucket: str, objects: list[dict[str, Any]]) -> None:
        await self._call("delete_objects", Bucket=bucket, Delete={"Objects": objects, "Quiet": True})

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    async def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        logger.debug("Spaces %s %s %s", self.region, operation, kwargs.get("Bucket", ""))
        method = getattr(self._s3, operation)
        try:
            result = await asyncio.to_thread(method, **kwargs)
        except ClientError as exc:
            error = exc.response.get("Error", {})
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
            raise SpacesError(
                error.get("Code", "Unknown"),
                error.get("Message", str(exc)),
                status_code=status,
            ) from exc
        except BotoCoreError as exc:
            raise SpacesError("TransportError", str(exc)) from exc
        return result or {}
