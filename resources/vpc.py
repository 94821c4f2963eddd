"""
resources/vpc.py

Responsibility: VPC networks. Deleting a VPC retries while the upstream
still reports member resources (403), which happens briefly after the last
member (e.g. a database cluster) is destroyed.
Does NOT: manage VPC peering or NAT gateways.
"""

from __future__ import annotations

import logging
from typing import Any

from config import CombinedClient
from resources.base import Resource, clear_if_not_found, retry_operation
from schema.attributes import Attribute, AttrType
from schema.normalizers import normalize_region
from schema.resource_data import ResourceData
from schema.validation import matches, no_zero_values
from services.error_classifier import is_api_error

logger = logging.getLogger(__name__)

_CIDR = r"^\d{1,3}(\.\d{1,3}){3}/\d{1,2}$"


class VPCResource(Resource):
    kind = "digitalocean_vpc"
    timeouts = {"delete": 2 * 60.0}

    schema = {
        "name": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
        "region": Attribute(AttrType.STRING, required=True, force_new=True, state_func=normalize_region),
        "description": Attribute(AttrType.STRING, optional=True),
        "ip_range": Attribute(
            AttrType.STRING, optional=True, computed=True, force_new=True, validate=matches(_CIDR, "must be a CIDR block")
        ),
        "urn": Attribute(AttrType.STRING, computed=True),
        "default": Attribute(AttrType.BOOL, computed=True),
        "created_at": Attribute(AttrType.STRING, computed=True),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        request: dict[str, Any] = {"name": d.get("name"), "region": d.get("region")}
        for field in ("description", "ip_range"):
            value, ok = d.get_ok(field)
            if ok:
                request[field] = value
        body, _ = await meta.api_client().post("/v2/vpcs", request)
        d.set_id(body["vpc"]["id"])
        logger.info("VPC %s created", d.id)
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        try:
            body, _ = await meta.api_client().get(f"/v2/vpcs/{d.id}")
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        vpc = body["vpc"]
        d.set("name", vpc["name"])
        d.set("region", vpc["region"])
        d.set("description", vpc.get("description") or "")
        d.set("ip_range", vpc.get("ip_range") or "")
        d.set("urn", vpc.get("urn") or "")
        d.set("default", bool(vpc.get("default")))
        d.set("created_at", vpc.get("created_at") or "")

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        if d.has_changes("name", "description"):
            await meta.api_client().patch(
                f"/v2/vpcs/{d.id}", {"name": d.get("name"), "description": d.get("description")}
            )
        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        await retry_operation(
            meta,
            d,
            "delete",
            lambda: meta.api_client().delete(f"/v2/vpcs/{d.id}"),
            lambda exc: is_api_error(exc, 403),
            description=f"delete of VPC {d.id}",
        )
        logger.info("VPC %s deleted", d.id)
        d.set_id("")
