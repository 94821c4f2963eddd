"""
resources/certificate.py

Responsibility: TLS certificates (custom uploads and Let's Encrypt). The
handle is the certificate name; the upstream ID, which rotates on renewal,
is kept in ``uuid``. Key material is stored hashed.
Does NOT: renew certificates or attach them to load balancers.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from config import CombinedClient
from exceptions import ValidationError
from resources.base import Resource, gone, retry_operation, wait_status
from schema.attributes import Attribute, AttrType
from schema.diff import Plan
from schema.normalizers import sha1_hex
from schema.resource_data import ResourceData
from schema.validation import no_zero_values, string_in
from services.certificate_resolver import find_certificate_by_name
from services.error_classifier import is_api_error

logger = logging.getLogger(__name__)

CERT_TYPES = ("custom", "lets_encrypt")

# Certificates stay locked for a short while after detaching from a load balancer
_DELETE_IN_USE_TIMEOUT = 30.0
_IN_USE_MESSAGE = "Make sure the certificate is not in use before deleting it"


class CertificateResource(Resource):
    kind = "digitalocean_certificate"

    schema = {
        "name": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "type": Attribute(AttrType.STRING, optional=True, force_new=True, default="custom", validate=string_in(CERT_TYPES)),
        "private_key": Attribute(AttrType.STRING, optional=True, force_new=True, sensitive=True, state_func=sha1_hex),
        "leaf_certificate": Attribute(AttrType.STRING, optional=True, force_new=True, state_func=sha1_hex),
        "certificate_chain": Attribute(AttrType.STRING, optional=True, force_new=True, state_func=sha1_hex),
        "domains": Attribute(AttrType.SET, optional=True, computed=True, force_new=True, elem=AttrType.STRING),
        "uuid": Attribute(AttrType.STRING, computed=True),
        "state": Attribute(AttrType.STRING, computed=True),
        "not_after": Attribute(AttrType.STRING, computed=True),
        "sha1_fingerprint": Attribute(AttrType.STRING, computed=True),
    }

    def customize_diff(self, plan: Plan, config: Mapping[str, Any]) -> None:
        cert_type = config.get("type") or "custom"
        errors: list[str] = []
        if cert_type == "custom":
            for field in ("private_key", "leaf_certificate"):
                if not config.get(field):
                    errors.append(f"{field} is required for when type is custom or empty")
        elif cert_type == "lets_encrypt" and not config.get("domains"):
            errors.append("domains is required for when type is lets_encrypt")
        if errors:
            raise ValidationError(errors)

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        # NOTE: state only ever holds hashes of the key material.
        request: dict[str, Any] = {"name": d.get("name"), "type": d.get("type")}
        if request["type"] == "custom":
            request["private_key"] = d.get_raw("private_key")
            request["leaf_certificate"] = d.get_raw("leaf_certificate")
            if d.get_raw("certificate_chain"):
                request["certificate_chain"] = d.get_raw("certificate_chain")
        else:
            request["dns_names"] = sorted(d.get("domains"))

        body, _ = await meta.api_client().post("/v2/certificates", request)
        cert = body["certificate"]
        # The name is the handle; the ID changes on every Let's Encrypt renewal.
        d.set_id(cert["name"])
        d.set("uuid", cert["id"])

        await wait_status(
            meta, d, "create", f"/v2/certificates/{cert['id']}", "certificate", ("verified",), ("pending",)
        )
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        cert = await find_certificate_by_name(meta.api_client(), d.id)
        if cert is None:
            gone(d, self.kind)
            return
        d.set("name", cert["name"])
        d.set("uuid", cert["id"])
        d.set("type", cert.get("type") or "custom")
        d.set("state", cert.get("state") or "")
        d.set("not_after", cert.get("not_after") or "")
        d.set("sha1_fingerprint", cert.get("sha1_fingerprint") or "")
        d.set("domains", cert.get("dns_names") or [])

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        cert = await find_certificate_by_name(meta.api_client(), d.id)
        if cert is None:
            d.set_id("")
            return
        api = meta.api_client()
        await retry_operation(
            meta,
            d,
            "delete",
            lambda: api.delete(f"/v2/certificates/{cert['id']}"),
            lambda exc: is_api_error(exc, 403, _IN_USE_MESSAGE),
            timeout=_DELETE_IN_USE_TIMEOUT,
            description=f"delete of certificate {d.id}",
        )
        d.set_id("")

    async def import_state(self, import_id: str, d: ResourceData, meta: CombinedClient) -> None:
        d.set_id(import_id)
