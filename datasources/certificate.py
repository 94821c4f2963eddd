"""
datasources/certificate.py

Responsibility: Looks up a certificate by name. The name is the stable
handle; the upstream ID is exposed as ``uuid`` and changes on renewal.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from config import CombinedClient
from datasources.base import DataSource
from exceptions import ProviderError
from schema.attributes import Attribute, AttrType
from schema.validation import no_zero_values
from services.certificate_resolver import find_certificate_by_name


class CertificateDataSource(DataSource):
    kind = "digitalocean_certificate"

    schema = {
        "name": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
        "uuid": Attribute(AttrType.STRING, computed=True),
        "type": Attribute(AttrType.STRING, computed=True),
        "state": Attribute(AttrType.STRING, computed=True),
        "domains": Attribute(AttrType.SET, computed=True, elem=AttrType.STRING),
        "not_after": Attribute(AttrType.STRING, computed=True),
        "sha1_fingerprint": Attribute(AttrType.STRING, computed=True),
    }

    async def lookup(self, query: Mapping[str, Any], meta: CombinedClient) -> dict[str, Any]:
        cert = await find_certificate_by_name(meta.api_client(), query["name"])
        if cert is None:
            raise ProviderError(f"certificate {query['name']!r} not found")
        return {
            "id": cert["name"],
            "name": cert["name"],
            "uuid": cert["id"],
            "type": cert.get("type") or "custom",
            "state": cert.get("state") or "",
            "domains": cert.get("dns_names") or [],
            "not_after": cert.get("not_after") or "",
            "sha1_fingerprint": cert.get("sha1_fingerprint") or "",
        }
