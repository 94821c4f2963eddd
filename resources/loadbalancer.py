"""
resources/loadbalancer.py

Responsibility: Load balancers, including forwarding rules whose certificate
references are resolved by name so that Let's Encrypt renewals (which rotate
the certificate ID) never show up as a change.
Does NOT: manage certificates or the droplets behind the balancer.
"""

from __future__ import annotations

import logging
from typing import Any

from config import CombinedClient
from resources.base import Resource, clear_if_not_found, wait_status
from schema.attributes import Attribute, AttrType
from schema.normalizers import build_urn, flatten_droplet_ids, hash_forwarding_rule, normalize_region
from schema.resource_data import ResourceData
from schema.validation import int_between, string_in
from services.certificate_resolver import resolve_certificate
from services.error_classifier import is_not_found
from services.tags import tags_attribute

logger = logging.getLogger(__name__)

PROTOCOLS = ("http", "https", "http2", "http3", "tcp", "udp")

_FORWARDING_RULE = {
    "entry_protocol": Attribute(AttrType.STRING, required=True, validate=string_in(PROTOCOLS, ignore_case=True)),
    "entry_port": Attribute(AttrType.INT, required=True, validate=int_between(1, 65535)),
    "target_protocol": Attribute(AttrType.STRING, required=True, validate=string_in(PROTOCOLS, ignore_case=True)),
    "target_port": Attribute(AttrType.INT, required=True, validate=int_between(1, 65535)),
    "certificate_name": Attribute(AttrType.STRING, optional=True, computed=True),
    "certificate_id": Attribute(AttrType.STRING, optional=True, computed=True),
    "tls_passthrough": Attribute(AttrType.BOOL, optional=True, default=False),
}

_HEALTHCHECK = {
    "protocol": Attribute(AttrType.STRING, required=True, validate=string_in(("http", "https", "tcp"))),
    "port": Attribute(AttrType.INT, required=True, validate=int_between(1, 65535)),
    "path": Attribute(AttrType.STRING, optional=True),
    "check_interval_seconds": Attribute(AttrType.INT, optional=True, default=10, validate=int_between(3, 300)),
    "response_timeout_seconds": Attribute(AttrType.INT, optional=True, default=5, validate=int_between(3, 300)),
    "unhealthy_threshold": Attribute(AttrType.INT, optional=True, default=3, validate=int_between(2, 10)),
    "healthy_threshold": Attribute(AttrType.INT, optional=True, default=5, validate=int_between(2, 10)),
}

_STICKY_SESSIONS = {
    "type": Attribute(AttrType.STRING, optional=True, default="none", validate=string_in(("cookies", "none"))),
    "cookie_name": Attribute(AttrType.STRING, optional=True),
    "cookie_ttl_seconds": Attribute(AttrType.INT, optional=True),
}


class LoadBalancerResource(Resource):
    kind = "digitalocean_loadbalancer"

    schema = {
        "name": Attribute(AttrType.STRING, required=True),
        "region": Attribute(AttrType.STRING, required=True, force_new=True, state_func=normalize_region),
        "size": Attribute(AttrType.STRING, optional=True, computed=True),
        "size_unit": Attribute(AttrType.INT, optional=True, computed=True, validate=int_between(1, 100)),
        "vpc_uuid": Attribute(AttrType.STRING, optional=True, computed=True, force_new=True),
        "forwarding_rule": Attribute(
            AttrType.SET, required=True, elem=_FORWARDING_RULE, set_hash=hash_forwarding_rule
        ),
        "healthcheck": Attribute(AttrType.LIST, optional=True, computed=True, max_items=1, elem=_HEALTHCHECK),
        "sticky_sessions": Attribute(AttrType.LIST, optional=True, computed=True, max_items=1, elem=_STICKY_SESSIONS),
        "droplet_ids": Attribute(AttrType.SET, optional=True, computed=True, elem=AttrType.INT),
        "droplet_tag": Attribute(AttrType.STRING, optional=True),
        "redirect_http_to_https": Attribute(AttrType.BOOL, optional=True, default=False),
        "enable_proxy_protocol": Attribute(AttrType.BOOL, optional=True, default=False),
        "enable_backend_keepalive": Attribute(AttrType.BOOL, optional=True, default=False),
        "disable_lets_encrypt_dns_records": Attribute(AttrType.BOOL, optional=True, default=False),
        "tags": tags_attribute(),
        "ip": Attribute(AttrType.STRING, computed=True),
        "status": Attribute(AttrType.STRING, computed=True),
        "urn": Attribute(AttrType.STRING, computed=True),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        request = await self._request(d, meta)
        body, _ = await meta.api_client().post("/v2/load_balancers", request)
        d.set_id(body["load_balancer"]["id"])
        logger.info("Load balancer %s created, waiting for it to become active", d.id)
        await wait_status(meta, d, "create", f"/v2/load_balancers/{d.id}", "load_balancer", ("active",), ("new",))
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        try:
            body, _ = await meta.api_client().get(f"/v2/load_balancers/{d.id}")
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        lb = body["load_balancer"]
        d.set("name", lb["name"])
        d.set("region", lb["region"]["slug"])
        d.set("size", lb.get("size") or "")
        d.set("size_unit", lb.get("size_unit") or 0)
        d.set("vpc_uuid", lb.get("vpc_uuid") or "")
        d.set("ip", lb.get("ip") or "")
        d.set("status", lb.get("status") or "")
        d.set("urn", build_urn("loadbalancer", lb["id"]))
        d.set("droplet_ids", flatten_droplet_ids(lb.get("droplet_ids")))
        d.set("droplet_tag", lb.get("tag") or "")
        d.set("redirect_http_to_https", bool(lb.get("redirect_http_to_https")))
        d.set("enable_proxy_protocol", bool(lb.get("enable_proxy_protocol")))
        d.set("enable_backend_keepalive", bool(lb.get("enable_backend_keepalive")))
        d.set("disable_lets_encrypt_dns_records", bool(lb.get("disable_lets_encrypt_dns_records")))
        d.set("tags", lb.get("tags") or [])
        d.set("forwarding_rule", await self._flatten_rules(lb.get("forwarding_rules") or [], meta))
        health = lb.get("health_check")
        d.set("healthcheck", [_flatten_healthcheck(health)] if health else [])
        sticky = lb.get("sticky_sessions")
        d.set("sticky_sessions", [_flatten_sticky(sticky)] if sticky else [])

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        request = await self._request(d, meta)
        await meta.api_client().put(f"/v2/load_balancers/{d.id}", request)
        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        await meta.api_client().delete(f"/v2/load_balancers/{d.id}")
        d.set_id("")

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    async def _request(self, d: ResourceData, meta: CombinedClient) -> dict[str, Any]:
        request: dict[str, Any] = {
            "name": d.get("name"),
            "region": d.get("region"),
            "forwarding_rules": [await _expand_rule(rule, meta) for rule in d.get("forwarding_rule")],
            "redirect_http_to_https": d.get("redirect_http_to_https"),
            "enable_proxy_protocol": d.get("enable_proxy_protocol"),
            "enable_backend_keepalive": d.get("enable_backend_keepalive"),
            "disable_lets_encrypt_dns_records": d.get("disable_lets_encrypt_dns_records"),
        }
        for field, key in (("size", "size"), ("size_unit", "size_unit"), ("vpc_uuid", "vpc_uuid")):
            value, ok = d.get_ok(field)
            if ok:
                request[key] = value
        tag, ok = d.get_ok("droplet_tag")
        if ok:
            request["tag"] = tag
        else:
            request["droplet_ids"] = sorted(d.get("droplet_ids"))
        tags = d.get("tags")
        if tags:
            request["tags"] = list(tags)
        health = d.get("healthcheck")
        if health:
            request["health_check"] = _expand_healthcheck(health[0])
        sticky = d.get("sticky_sessions")
        if sticky:
            request["sticky_sessions"] = _expand_sticky(sticky[0])
        return request

    async def _flatten_rules(self, rules: list[dict[str, Any]], meta: CombinedClient) -> list[dict[str, Any]]:
        flattened = []
        for rule in rules:
            cert_ref = rule.get("certificate_id") or ""
            if cert_ref:
                cert_ref = await _certificate_name(cert_ref, meta)
            flattened.append(
                {
                    "entry_protocol": rule["entry_protocol"],
                    "entry_port": rule["entry_port"],
                    "target_protocol": rule["target_protocol"],
                    "target_port": rule["target_port"],
                    "certificate_name": cert_ref,
                    "certificate_id": cert_ref,
                    "tls_passthrough": bool(rule.get("tls_passthrough")),
                }
            )
        return flattened


async def _certificate_name(cert_id: str, meta: CombinedClient) -> str:
    """Maps an upstream certificate ID to its (stable) name."""
    try:
        body, _ = await meta.api_client().get(f"/v2/certificates/{cert_id}")
    except Exception as exc:
        if is_not_found(exc):
            logger.warning("Certificate %s referenced by a forwarding rule no longer exists", cert_id)
            return cert_id
        raise
    return body["certificate"]["name"]


async def _expand_rule(rule: dict[str, Any], meta: CombinedClient) -> dict[str, Any]:
    expanded: dict[str, Any] = {
        "entry_protocol": rule["entry_protocol"].lower(),
        "entry_port": rule["entry_port"],
        "target_protocol": rule["target_protocol"].lower(),
        "target_port": rule["target_port"],
        "tls_passthrough": bool(rule.get("tls_passthrough")),
    }
    cert_ref = rule.get("certificate_name") or rule.get("certificate_id")
    if cert_ref:
        cert = await resolve_certificate(meta.api_client(), cert_ref)
        expanded["certificate_id"] = cert["id"]
    return expanded


def _expand_healthcheck(health: dict[str, Any]) -> dict[str, Any]:
    return {
        "protocol": health["protocol"],
        "port": health["port"],
        "path": health.get("path") or "",
        "check_interval_seconds": health.get("check_interval_seconds"),
        "response_timeout_seconds": health.get("response_timeout_seconds"),
        "unhealthy_threshold": health.get("unhealthy_threshold"),
        "healthy_threshold": health.get("healthy_threshold"),
    }


def _flatten_healthcheck(health: dict[str, Any]) -> dict[str, Any]:
    return {
        "protocol": health.get("protocol", ""),
        "port": health.get("port", 0),
        "path": health.get("path") or "",
        "check_interval_seconds": health.get("check_interval_seconds", 0),
        "response_timeout_seconds": health.get("response_timeout_seconds", 0),
        "unhealthy_threshold": health.get("unhealthy_threshold", 0),
        "healthy_threshold": health.get("healthy_threshold", 0),
    }


def _expand_sticky(sticky: dict[str, Any]) -> dict[str, Any]:
    request: dict[str, Any] = {"type": sticky.get("type") or "none"}
    if request["type"] == "cookies":
        request["cookie_name"] = sticky.get("cookie_name") or ""
        request["cookie_ttl_seconds"] = sticky.get("cookie_ttl_seconds") or 0
    return request


def _flatten_sticky(sticky: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": sticky.get("type") or "none",
        "cookie_name": sticky.get("cookie_name") or "",
        "cookie_ttl_seconds": sticky.get("cookie_ttl_seconds") or 0,
    }
