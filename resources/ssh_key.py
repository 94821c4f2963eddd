"""
resources/ssh_key.py

Responsibility: SSH public keys registered with the account.
"""

from __future__ import annotations

from config import CombinedClient
from resources.base import Resource, clear_if_not_found
from schema.attributes import Attribute, AttrType
from schema.resource_data import ResourceData
from schema.validation import no_zero_values


class SSHKeyResource(Resource):
    kind = "digitalocean_ssh_key"

    schema = {
        "name": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
        "public_key": Attribute(AttrType.STRING, required=True, force_new=True, state_func=str.strip),
        "fingerprint": Attribute(AttrType.STRING, computed=True),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        body, _ = await meta.api_client().post(
            "/v2/account/keys", {"name": d.get("name"), "public_key": d.get("public_key")}
        )
        d.set_id(body["ssh_key"]["id"])
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        try:
            body, _ = await meta.api_client().get(f"/v2/account/keys/{d.id}")
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        key = body["ssh_key"]
        d.set("name", key["name"])
        d.set("public_key", key["public_key"].strip())
        d.set("fingerprint", key.get("fingerprint", ""))

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        if d.has_change("name"):
            await meta.api_client().put(f"/v2/account/keys/{d.id}", {"name": d.get("name")})
        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        await meta.api_client().delete(f"/v2/account/keys/{d.id}")
        d.set_id("")
