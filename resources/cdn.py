"""
resources/cdn.py

Responsibility: CDN endpoints in front of Spaces origins. A custom domain's
certificate is referenced by name and resolved to the current upstream ID on
every write, so Let's Encrypt renewals never surface as drift.
Does NOT: purge cached content.
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
from schema.validation import no_zero_values
from services.certificate_resolver import resolve_certificate
from services.error_classifier import is_not_found

logger = logging.getLogger(__name__)

TTL_CHOICES = (60, 600, 3600, 86400, 604800)


def _ttl(value: Any, key: str) -> list[str]:
    if value in TTL_CHOICES:
        return []
    return [f"{key}: expected one of {list(TTL_CHOICES)}, got {value!r}"]


class CDNResource(Resource):
    kind = "digitalocean_cdn"

    schema = {
        "origin": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "ttl": Attribute(AttrType.INT, optional=True, default=3600, validate=_ttl),
        "certificate_name": Attribute(AttrType.STRING, optional=True, computed=True),
        "certificate_id": Attribute(AttrType.STRING, optional=True, computed=True),
        "custom_domain": Attribute(AttrType.STRING, optional=True),
        "endpoint": Attribute(AttrType.STRING, computed=True),
        "created_at": Attribute(AttrType.STRING, computed=True),
    }

    def customize_diff(self, plan: Plan, config: Mapping[str, Any]) -> None:
        has_cert = bool(config.get("certificate_name") or config.get("certificate_id"))
        if config.get("custom_domain") and not has_cert:
            raise ValidationError(["custom_domain requires certificate_name"])

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        request: dict[str, Any] = {"origin": d.get("origin"), "ttl": d.get("ttl")}
        domain, ok = d.get_ok("custom_domain")
        if ok:
            request["custom_domain"] = domain
            request["certificate_id"] = await self._certificate_id(d, meta)
        body, _ = await meta.api_client().post("/v2/cdn/endpoints", request)
        d.set_id(body["endpoint"]["id"])
        logger.info("CDN endpoint %s created for %s", d.id, d.get("origin"))
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        api = meta.api_client()
        try:
            body, _ = await api.get(f"/v2/cdn/endpoints/{d.id}")
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        endpoint = body["endpoint"]
        d.set("origin", endpoint["origin"])
        d.set("ttl", endpoint.get("ttl", 0))
        d.set("endpoint", endpoint.get("endpoint", ""))
        d.set("created_at", endpoint.get("created_at", ""))
        d.set("custom_domain", endpoint.get("custom_domain") or "")

        cert_id = endpoint.get("certificate_id") or ""
        cert_name = ""
        if cert_id:
            try:
                cert, _ = await api.get(f"/v2/certificates/{cert_id}")
                cert_name = cert["certificate"]["name"]
            except Exception as exc:
                if not is_not_found(exc):
                    raise
                logger.warning("Certificate %s of CDN endpoint %s no longer exists", cert_id, d.id)
                cert_name = cert_id
        d.set("certificate_name", cert_name)
        d.set("certificate_id", cert_name)

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        api = meta.api_client()
        if d.has_change("ttl"):
            await api.put(f"/v2/cdn/endpoints/{d.id}", {"ttl": d.get("ttl")})
        if d.has_changes("certificate_name", "certificate_id", "custom_domain"):
            request: dict[str, Any] = {"custom_domain": d.get("custom_domain"), "certificate_id": ""}
            if d.get("custom_domain"):
                request["certificate_id"] = await self._certificate_id(d, meta)
            await api.put(f"/v2/cdn/endpoints/{d.id}", request)
            logger.info("Updated custom domain of CDN endpoint %s", d.id)
        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        await meta.api_client().delete(f"/v2/cdn/endpoints/{d.id}")
        d.set_id("")

    @staticmethod
    async def _certificate_id(d: ResourceData, meta: CombinedClient) -> str:
        ref = d.get("certificate_name") or d.get("certificate_id")
        cert = await resolve_certificate(meta.api_client(), ref)
        return cert["id"]
