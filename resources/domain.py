"""
resources/domain.py

Responsibility: DNS domains and DNS records, including the trailing-dot
semantics of host-valued record data and the computed fully-qualified name.
Does NOT: resolve names or validate zone delegation.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from config import CombinedClient
from exceptions import ImportFormatError, ValidationError
from resources.base import Resource, clear_if_not_found, split_import_id
from schema.attributes import Attribute, AttrType
from schema.diff import Plan
from schema.normalizers import (
    DnsNameComparator,
    DnsValueComparator,
    build_urn,
    construct_fqdn,
    normalize_dns_data,
)
from schema.resource_data import ResourceData
from schema.validation import int_at_least, int_between, is_ip_address, no_zero_values, string_in

logger = logging.getLogger(__name__)

RECORD_TYPES = ("A", "AAAA", "CAA", "CNAME", "MX", "NS", "TXT", "SRV", "SOA")
CAA_TAGS = ("issue", "issuewild", "iodef")


class DomainResource(Resource):
    kind = "digitalocean_domain"

    schema = {
        "name": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "ip_address": Attribute(AttrType.STRING, optional=True, force_new=True, validate=is_ip_address),
        "ttl": Attribute(AttrType.INT, computed=True),
        "urn": Attribute(AttrType.STRING, computed=True),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        request: dict[str, Any] = {"name": d.get("name")}
        ip_address = d.get("ip_address")
        if ip_address:
            request["ip_address"] = ip_address
        body, _ = await meta.api_client().post("/v2/domains", request)
        d.set_id(body["domain"]["name"])
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        try:
            body, _ = await meta.api_client().get(f"/v2/domains/{d.id}")
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        domain = body["domain"]
        d.set("name", domain["name"])
        d.set("ttl", domain.get("ttl", 0))
        d.set("urn", build_urn("domain", domain["name"]))

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        await meta.api_client().delete(f"/v2/domains/{d.id}")
        d.set_id("")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class RecordResource(Resource):
    """
    A DNS record inside a domain.

    Host-valued data (CNAME, MX, NS, SRV, CAA) is stored with a trailing dot;
    the value comparator treats "x.example.com", "x.example.com." and the
    relative "x" as equal so stored and configured spellings never diff.
    """

    kind = "digitalocean_record"

    schema = {
        "type": Attribute(AttrType.STRING, required=True, force_new=True, validate=string_in(RECORD_TYPES)),
        "domain": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "name": Attribute(AttrType.STRING, required=True, validate=no_zero_values, comparator=DnsNameComparator()),
        "port": Attribute(AttrType.INT, optional=True, validate=int_between(0, 65535)),
        "priority": Attribute(AttrType.INT, optional=True, validate=int_between(0, 65535)),
        "weight": Attribute(AttrType.INT, optional=True, validate=int_between(0, 65535)),
        "ttl": Attribute(AttrType.INT, optional=True, computed=True, validate=int_at_least(1)),
        "value": Attribute(AttrType.STRING, required=True, comparator=DnsValueComparator()),
        "flags": Attribute(AttrType.INT, optional=True, validate=int_between(0, 255)),
        "tag": Attribute(AttrType.STRING, optional=True, validate=string_in(CAA_TAGS)),
        "fqdn": Attribute(AttrType.STRING, computed=True),
    }

    def customize_diff(self, plan: Plan, config: Mapping[str, Any]) -> None:
        record_type = config.get("type")
        errors: list[str] = []
        if record_type == "MX" and config.get("priority") is None:
            errors.append("`priority` is required for when type is `MX`")
        if record_type == "SRV":
            for field in ("priority", "weight", "port"):
                if config.get(field) is None:
                    errors.append(f"`{field}` is required for when type is `SRV`")
        if record_type == "CAA":
            if config.get("flags") is None:
                errors.append("`flags` is required for when type is `CAA`")
            if not config.get("tag"):
                errors.append("`tag` is required for when type is `CAA`")
        if errors:
            raise ValidationError(errors)

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        domain = d.get("domain")
        body, _ = await meta.api_client().post(f"/v2/domains/{domain}/records", self._request(d))
        d.set_id(body["domain_record"]["id"])
        logger.info("Created %s record %s in %s", d.get("type"), d.id, domain)
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        domain = d.get("domain")
        try:
            body, _ = await meta.api_client().get(f"/v2/domains/{domain}/records/{d.id}")
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        for name, value in record_fields(body["domain_record"], domain).items():
            d.set(name, value)

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        domain = d.get("domain")
        await meta.api_client().put(f"/v2/domains/{domain}/records/{d.id}", self._request(d))
        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        domain = d.get("domain")
        await meta.api_client().delete(f"/v2/domains/{domain}/records/{d.id}")
        d.set_id("")

    async def import_state(self, import_id: str, d: ResourceData, meta: CombinedClient) -> None:
        domain, record_id = split_import_id(import_id, ("domain", "id"))
        if not record_id.isdigit():
            raise ImportFormatError(f"invalid record ID {record_id!r}: must be an integer")
        d.set("domain", domain)
        d.set_id(record_id)

    @staticmethod
    def _request(d: ResourceData) -> dict[str, Any]:
        request: dict[str, Any] = {
            "type": d.get("type"),
            "name": d.get("name"),
            "data": d.get("value"),
        }
        for field in ("priority", "port", "weight", "flags"):
            value, ok = d.get_ok(field)
            if ok:
                request[field] = value
        ttl, ok = d.get_ok("ttl")
        if ok:
            request["ttl"] = ttl
        tag, ok = d.get_ok("tag")
        if ok:
            request["tag"] = tag
        return request


def record_fields(record: Mapping[str, Any], domain: str) -> dict[str, Any]:
    """Upstream record payload projected onto the record attributes."""
    return {
        "type": record["type"],
        "name": record["name"],
        "value": normalize_dns_data(record["type"], record.get("data", ""), record.get("tag") or ""),
        "ttl": record.get("ttl", 0),
        "priority": record.get("priority") or 0,
        "port": record.get("port") or 0,
        "weight": record.get("weight") or 0,
        "flags": record.get("flags") or 0,
        "tag": record.get("tag") or "",
        "fqdn": construct_fqdn(record["name"], domain),
    }
