"""
resources/registry.py

Responsibility: The account's container registry (one per account) and its
subscription tier.
Does NOT: push, pull or garbage-collect images.
"""

from __future__ import annotations

import logging

from config import CombinedClient
from resources.base import Resource, clear_if_not_found
from schema.attributes import Attribute, AttrType
from schema.normalizers import normalize_region
from schema.resource_data import ResourceData
from schema.validation import no_zero_values, string_in

logger = logging.getLogger(__name__)

REGISTRY_HOSTNAME = "registry.digitalocean.com"
SUBSCRIPTION_TIERS = ("starter", "basic", "professional")


class ContainerRegistryResource(Resource):
    kind = "digitalocean_container_registry"

    schema = {
        "name": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "subscription_tier_slug": Attribute(AttrType.STRING, required=True, validate=string_in(SUBSCRIPTION_TIERS)),
        "region": Attribute(AttrType.STRING, optional=True, computed=True, force_new=True, state_func=normalize_region),
        "endpoint": Attribute(AttrType.STRING, computed=True),
        "server_url": Attribute(AttrType.STRING, computed=True),
        "storage_usage_bytes": Attribute(AttrType.INT, computed=True),
        "created_at": Attribute(AttrType.STRING, computed=True),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        request = {"name": d.get("name"), "subscription_tier_slug": d.get("subscription_tier_slug")}
        region, ok = d.get_ok("region")
        if ok:
            request["region"] = region
        body, _ = await meta.api_client().post("/v2/registry", request)
        d.set_id(body["registry"]["name"])
        logger.info("Container registry %s created", d.id)
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        api = meta.api_client()
        try:
            body, _ = await api.get("/v2/registry")
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        registry = body["registry"]
        d.set_id(registry["name"])
        d.set("name", registry["name"])
        d.set("region", registry.get("region") or "")
        d.set("endpoint", f"{REGISTRY_HOSTNAME}/{registry['name']}")
        d.set("server_url", REGISTRY_HOSTNAME)
        d.set("storage_usage_bytes", registry.get("storage_usage_bytes", 0))
        d.set("created_at", registry.get("created_at", ""))

        sub, _ = await api.get("/v2/registry/subscription")
        d.set("subscription_tier_slug", sub["subscription"]["tier"]["slug"])

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        if d.has_change("subscription_tier_slug"):
            await meta.api_client().post(
                "/v2/registry/subscription", {"tier_slug": d.get("subscription_tier_slug")}
            )
        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        logger.info("Deleting container registry %s", d.id)
        await meta.api_client().delete("/v2/registry")
        d.set_id("")
