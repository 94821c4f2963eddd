"""
resources/reserved_ip.py

Responsibility: Reserved IPs and reserved-IP-to-droplet assignments, plus
the legacy floating IP spellings of both kinds.
Does NOT: manage the droplets the IPs are assigned to.
"""

from __future__ import annotations

import logging
from typing import Any

from config import CombinedClient
from exceptions import ImportFormatError
from resources.base import Resource, clear_if_not_found, gone, post_action_tolerating, unique_id, wait_action
from schema.attributes import Attribute, AttrType
from schema.normalizers import build_urn, normalize_region
from schema.resource_data import ResourceData
from schema.validation import is_ip_address

logger = logging.getLogger(__name__)


class ReservedIPResource(Resource):
    kind = "digitalocean_reserved_ip"
    path = "/v2/reserved_ips"
    payload_key = "reserved_ip"
    urn_kind = "reservedip"

    schema = {
        "region": Attribute(AttrType.STRING, required=True, force_new=True, state_func=normalize_region),
        "droplet_id": Attribute(AttrType.INT, optional=True),
        "ip_address": Attribute(AttrType.STRING, optional=True, computed=True, force_new=True, validate=is_ip_address),
        "urn": Attribute(AttrType.STRING, computed=True),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        api = meta.api_client()
        body, _ = await api.post(self.path, {"region": d.get("region")})
        ip = body[self.payload_key]["ip"]
        d.set_id(ip)
        logger.info("Reserved IP %s in %s", ip, d.get("region"))

        droplet_id = d.get("droplet_id")
        if droplet_id:
            await self._assign(d, meta, droplet_id)
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        try:
            body, _ = await meta.api_client().get(f"{self.path}/{d.id}")
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        ip = body[self.payload_key]
        d.set("region", ip["region"]["slug"])
        d.set("ip_address", ip["ip"])
        d.set("droplet_id", (ip.get("droplet") or {}).get("id", 0))
        d.set("urn", build_urn(self.urn_kind, ip["ip"]))

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        if d.has_change("droplet_id"):
            old, new = d.get_change("droplet_id")
            if old:
                await self._unassign(d, meta)
            if new:
                await self._assign(d, meta, new)
        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        if d.get_prior("droplet_id"):
            await self._unassign(d, meta)
        try:
            await meta.api_client().delete(f"{self.path}/{d.id}")
        except Exception as exc:
            if not clear_if_not_found(d, self.kind, exc):
                raise
        d.set_id("")

    async def import_state(self, import_id: str, d: ResourceData, meta: CombinedClient) -> None:
        d.set_id(import_id)
        d.set("ip_address", import_id)

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    async def _assign(self, d: ResourceData, meta: CombinedClient, droplet_id: int) -> None:
        logger.debug("Assigning %s to droplet %s", d.id, droplet_id)
        body, _ = await meta.api_client().post(
            f"{self.path}/{d.id}/actions", {"type": "assign", "droplet_id": droplet_id}
        )
        await wait_action(meta, body["action"], d, "create")

    async def _unassign(self, d: ResourceData, meta: CombinedClient) -> None:
        logger.debug("Unassigning %s", d.id)
        await post_action_tolerating(meta, f"{self.path}/{d.id}/actions", {"type": "unassign"}, d, "delete")


class FloatingIPResource(ReservedIPResource):
    kind = "digitalocean_floating_ip"
    path = "/v2/floating_ips"
    payload_key = "floating_ip"
    urn_kind = "floatingip"


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


class ReservedIPAssignmentResource(Resource):
    kind = "digitalocean_reserved_ip_assignment"
    path = "/v2/reserved_ips"
    payload_key = "reserved_ip"

    import_fields = ("ip_address", "droplet_id")
    import_hint = "must use the reserved IP and the ID of the Droplet joined with a comma"

    schema = {
        "ip_address": Attribute(AttrType.STRING, required=True, force_new=True, validate=is_ip_address),
        "droplet_id": Attribute(AttrType.INT, required=True, force_new=True),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        ip, droplet_id = d.get("ip_address"), d.get("droplet_id")
        body, _ = await meta.api_client().post(
            f"{self.path}/{ip}/actions", {"type": "assign", "droplet_id": droplet_id}
        )
        d.set_id(unique_id(f"{droplet_id}-{ip}-"))
        await wait_action(meta, body["action"], d, "create")
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        ip, droplet_id = d.get("ip_address"), d.get("droplet_id")
        try:
            body, _ = await meta.api_client().get(f"{self.path}/{ip}")
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        droplet: dict[str, Any] = body[self.payload_key].get("droplet") or {}
        if droplet.get("id") != droplet_id:
            gone(d, self.kind)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        ip = d.get("ip_address")
        await post_action_tolerating(meta, f"{self.path}/{ip}/actions", {"type": "unassign"}, d, "delete")
        d.set_id("")

    async def import_state(self, import_id: str, d: ResourceData, meta: CombinedClient) -> None:
        await super().import_state(import_id, d, meta)
        try:
            droplet_id = int(d.get("droplet_id"))
        except (TypeError, ValueError):
            raise ImportFormatError(f"{self.import_hint}: droplet ID must be an integer") from None
        d.set("droplet_id", droplet_id)
        d.set_id(unique_id(f"{droplet_id}-{d.get('ip_address')}-"))


class FloatingIPAssignmentResource(ReservedIPAssignmentResource):
    kind = "digitalocean_floating_ip_assignment"
    path = "/v2/floating_ips"
    payload_key = "floating_ip"
    import_hint = "must use the floating IP and the ID of the Droplet joined with a comma"
