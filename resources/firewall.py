"""
resources/firewall.py

Responsibility: Cloud firewalls (inbound/outbound rule sets applied to
droplets by ID or tag). Every update replaces the whole firewall with a
single PUT.
Does NOT: manage database trusted sources (see resources/database.py).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from config import CombinedClient
from exceptions import ValidationError
from resources.base import Resource, clear_if_not_found
from schema.attributes import Attribute, AttrType
from schema.diff import Plan
from schema.resource_data import ResourceData
from schema.validation import no_zero_values, string_in
from services.tags import tags_attribute

logger = logging.getLogger(__name__)

PROTOCOLS = ("tcp", "udp", "icmp")

# Rule keys as the API spells them, paired with the flattened attribute suffix
_TARGET_FIELDS = (
    ("addresses", "addresses"),
    ("droplet_ids", "droplet_ids"),
    ("load_balancer_uids", "load_balancer_uids"),
    ("kubernetes_ids", "kubernetes_ids"),
    ("tags", "tags"),
)


def _rule_schema(prefix: str) -> dict[str, Attribute]:
    return {
        "protocol": Attribute(AttrType.STRING, required=True, validate=string_in(PROTOCOLS)),
        "port_range": Attribute(AttrType.STRING, optional=True),
        f"{prefix}_addresses": Attribute(AttrType.SET, optional=True, elem=AttrType.STRING),
        f"{prefix}_droplet_ids": Attribute(AttrType.SET, optional=True, elem=AttrType.INT),
        f"{prefix}_load_balancer_uids": Attribute(AttrType.SET, optional=True, elem=AttrType.STRING),
        f"{prefix}_kubernetes_ids": Attribute(AttrType.SET, optional=True, elem=AttrType.STRING),
        f"{prefix}_tags": Attribute(AttrType.SET, optional=True, elem=AttrType.STRING),
    }


class FirewallResource(Resource):
    kind = "digitalocean_firewall"

    schema = {
        "name": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
        "droplet_ids": Attribute(AttrType.SET, optional=True, elem=AttrType.INT),
        "tags": tags_attribute(),
        "inbound_rule": Attribute(AttrType.SET, optional=True, elem=_rule_schema("source")),
        "outbound_rule": Attribute(AttrType.SET, optional=True, elem=_rule_schema("destination")),
        "status": Attribute(AttrType.STRING, computed=True),
        "created_at": Attribute(AttrType.STRING, computed=True),
        "pending_changes": Attribute(
            AttrType.LIST,
            computed=True,
            elem={
                "droplet_id": Attribute(AttrType.INT, computed=True),
                "removing": Attribute(AttrType.BOOL, computed=True),
                "status": Attribute(AttrType.STRING, computed=True),
            },
        ),
    }

    def customize_diff(self, plan: Plan, config: Mapping[str, Any]) -> None:
        errors: list[str] = []
        for block in ("inbound_rule", "outbound_rule"):
            direction = block.split("_")[0]
            for rule in config.get(block) or ():
                if rule.get("protocol") in ("tcp", "udp") and not rule.get("port_range"):
                    errors.append(f"`port_range` of {direction} rules is required if protocol is `tcp` or `udp`")
        if errors:
            raise ValidationError(sorted(set(errors)))

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        body, _ = await meta.api_client().post("/v2/firewalls", self._request(d))
        d.set_id(body["firewall"]["id"])
        logger.info("Firewall %s created", d.id)
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        try:
            body, _ = await meta.api_client().get(f"/v2/firewalls/{d.id}")
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        firewall = body["firewall"]
        d.set("name", firewall["name"])
        d.set("status", firewall.get("status", ""))
        d.set("created_at", firewall.get("created_at", ""))
        d.set("droplet_ids", firewall.get("droplet_ids") or [])
        d.set("tags", firewall.get("tags") or [])
        d.set("inbound_rule", [_flatten_rule(r, "sources", "source") for r in firewall.get("inbound_rules") or []])
        d.set(
            "outbound_rule",
            [_flatten_rule(r, "destinations", "destination") for r in firewall.get("outbound_rules") or []],
        )
        d.set(
            "pending_changes",
            [
                {"droplet_id": c.get("droplet_id", 0), "removing": bool(c.get("removing")), "status": c.get("status", "")}
                for c in firewall.get("pending_changes") or []
            ],
        )

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        await meta.api_client().put(f"/v2/firewalls/{d.id}", self._request(d))
        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        await meta.api_client().delete(f"/v2/firewalls/{d.id}")
        d.set_id("")

    @staticmethod
    def _request(d: ResourceData) -> dict[str, Any]:
        return {
            "name": d.get("name"),
            "droplet_ids": sorted(d.get("droplet_ids")),
            "tags": list(d.get("tags")),
            "inbound_rules": [_expand_rule(r, "sources", "source") for r in d.get("inbound_rule")],
            "outbound_rules": [_expand_rule(r, "destinations", "destination") for r in d.get("outbound_rule")],
        }


def _expand_rule(rule: Mapping[str, Any], key: str, prefix: str) -> dict[str, Any]:
    target: dict[str, Any] = {}
    for api_name, suffix in _TARGET_FIELDS:
        values = list(rule.get(f"{prefix}_{suffix}") or ())
        if values:
            target[api_name] = sorted(values) if api_name == "droplet_ids" else values
    expanded: dict[str, Any] = {"protocol": rule["protocol"], key: target}
    if rule.get("port_range"):
        expanded["ports"] = rule["port_range"]
    return expanded


def _flatten_rule(rule: Mapping[str, Any], key: str, prefix: str) -> dict[str, Any]:
    ports = rule.get("ports") or ""
    # ICMP has no ports; the API reports "0".
    if rule.get("protocol") == "icmp" and ports == "0":
        ports = ""
    target = rule.get(key) or {}
    flattened: dict[str, Any] = {"protocol": rule.get("protocol", ""), "port_range": ports}
    for api_name, suffix in _TARGET_FIELDS:
        flattened[f"{prefix}_{suffix}"] = target.get(api_name) or []
    return flattened
