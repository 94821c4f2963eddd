"""
datasources/domains.py

Responsibility: Domain and DNS record data sources: the domains and records
lists plus single domain and record lookups.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from config import CombinedClient
from datasources.base import DataSource, find_one
from resources.domain import record_fields
from schema.attributes import Attribute, AttrType
from schema.normalizers import build_urn
from schema.validation import no_zero_values
from services.datalist import DataListSource, ResourceConfig
from services.pagination import list_path

DOMAIN_SCHEMA = {
    "name": Attribute(AttrType.STRING, computed=True),
    "urn": Attribute(AttrType.STRING, computed=True),
    "ttl": Attribute(AttrType.INT, computed=True),
}

RECORD_SCHEMA = {
    "id": Attribute(AttrType.INT, computed=True),
    "domain": Attribute(AttrType.STRING, computed=True),
    "name": Attribute(AttrType.STRING, computed=True),
    "type": Attribute(AttrType.STRING, computed=True),
    "value": Attribute(AttrType.STRING, computed=True),
    "priority": Attribute(AttrType.INT, computed=True),
    "port": Attribute(AttrType.INT, computed=True),
    "ttl": Attribute(AttrType.INT, computed=True),
    "weight": Attribute(AttrType.INT, computed=True),
    "flags": Attribute(AttrType.INT, computed=True),
    "tag": Attribute(AttrType.STRING, computed=True),
    "fqdn": Attribute(AttrType.STRING, computed=True),
}


def domain_record(domain: Mapping[str, Any]) -> dict[str, Any]:
    return {"name": domain["name"], "urn": build_urn("domain", domain["name"]), "ttl": domain.get("ttl", 0)}


def dns_record(record: Mapping[str, Any], domain: str) -> dict[str, Any]:
    return {"id": record["id"], "domain": domain, **record_fields(record, domain)}


# ---------------------------------------------------------------------------
# Domains
# ---------------------------------------------------------------------------


async def _get_domains(meta: CombinedClient, extra: dict[str, Any]) -> list[dict[str, Any]]:
    return await list_path(meta.api_client(), "/v2/domains", "domains")


def domains_source() -> DataListSource:
    return DataListSource(
        ResourceConfig(
            record_schema=DOMAIN_SCHEMA,
            result_attribute_name="domains",
            get_records=_get_domains,
            flatten_record=lambda domain, meta, extra: domain_record(domain),
        )
    )


class DomainDataSource(DataSource):
    kind = "digitalocean_domain"

    schema = {
        **DOMAIN_SCHEMA,
        "name": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
        "zone_file": Attribute(AttrType.STRING, computed=True),
    }

    async def lookup(self, query: Mapping[str, Any], meta: CombinedClient) -> dict[str, Any]:
        body, _ = await meta.api_client().get(f"/v2/domains/{query['name']}")
        domain = body["domain"]
        return {"id": domain["name"], "zone_file": domain.get("zone_file") or "", **domain_record(domain)}


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


async def _get_records(meta: CombinedClient, extra: dict[str, Any]) -> list[dict[str, Any]]:
    return await list_path(meta.api_client(), f"/v2/domains/{extra['domain']}/records", "domain_records")


def records_source() -> DataListSource:
    return DataListSource(
        ResourceConfig(
            record_schema=RECORD_SCHEMA,
            result_attribute_name="records",
            get_records=_get_records,
            flatten_record=lambda record, meta, extra: dns_record(record, extra["domain"]),
            extra_query_schema={
                "domain": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
            },
        )
    )


class RecordDataSource(DataSource):
    """A single record, matched by name (and type, when given) within a domain."""

    kind = "digitalocean_record"

    schema = {
        **RECORD_SCHEMA,
        "domain": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
        "name": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
        "type": Attribute(AttrType.STRING, optional=True, computed=True),
    }

    async def lookup(self, query: Mapping[str, Any], meta: CombinedClient) -> dict[str, Any]:
        domain, name, kind = query["domain"], query["name"], query.get("type") or ""
        records = await list_path(meta.api_client(), f"/v2/domains/{domain}/records", "domain_records")

        def match(record: Mapping[str, Any]) -> bool:
            return record["name"] == name and (not kind or record["type"].upper() == kind.upper())

        return dns_record(find_one(records, match, f"record {name!r} in {domain}"), domain)
