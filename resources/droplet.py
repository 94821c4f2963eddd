"""
resources/droplet.py

Responsibility: Droplets (virtual machines). Resizes power the droplet off,
resize it and power it back on; renames, backups, IPv6 and volume
attachments are applied as droplet/volume actions, each awaited.
Does NOT: manage the volumes, keys or VPCs a droplet references.
"""

from __future__ import annotations

import logging
from typing import Any

from config import CombinedClient
from exceptions import ImportFormatError
from resources.base import (
    Resource,
    clear_if_not_found,
    post_action,
    post_action_tolerating,
    wait_action,
    wait_status,
)
from schema.attributes import Attribute, AttrType
from schema.normalizers import build_urn, normalize_region, sha1_hex
from schema.resource_data import ResourceData
from schema.validation import no_zero_values
from services.action_waiter import wait_for_resource
from services.error_classifier import is_not_found
from services.tags import set_tags, tags_attribute

logger = logging.getLogger(__name__)

# Deleting waits for the droplet to be archived or disappear
_DESTROY_TIMEOUT = 60.0


class DropletResource(Resource):
    kind = "digitalocean_droplet"

    schema = {
        "image": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "name": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
        "region": Attribute(AttrType.STRING, optional=True, computed=True, force_new=True, state_func=normalize_region),
        "size": Attribute(AttrType.STRING, required=True, state_func=str.lower),
        "resize_disk": Attribute(AttrType.BOOL, optional=True, default=True),
        "backups": Attribute(AttrType.BOOL, optional=True, default=False),
        "monitoring": Attribute(AttrType.BOOL, optional=True, default=False, force_new=True),
        "ipv6": Attribute(AttrType.BOOL, optional=True, default=False),
        "vpc_uuid": Attribute(AttrType.STRING, optional=True, computed=True, force_new=True),
        "ssh_keys": Attribute(AttrType.SET, optional=True, force_new=True, elem=AttrType.STRING),
        "user_data": Attribute(AttrType.STRING, optional=True, force_new=True, state_func=sha1_hex),
        "volume_ids": Attribute(AttrType.SET, optional=True, computed=True, elem=AttrType.STRING),
        "graceful_shutdown": Attribute(AttrType.BOOL, optional=True, default=False),
        "tags": tags_attribute(),
        "disk": Attribute(AttrType.INT, computed=True),
        "vcpus": Attribute(AttrType.INT, computed=True),
        "memory": Attribute(AttrType.INT, computed=True),
        "price_hourly": Attribute(AttrType.FLOAT, computed=True),
        "price_monthly": Attribute(AttrType.FLOAT, computed=True),
        "status": Attribute(AttrType.STRING, computed=True),
        "locked": Attribute(AttrType.BOOL, computed=True),
        "ipv4_address": Attribute(AttrType.STRING, computed=True),
        "ipv4_address_private": Attribute(AttrType.STRING, computed=True),
        "ipv6_address": Attribute(AttrType.STRING, computed=True),
        "created_at": Attribute(AttrType.STRING, computed=True),
        "urn": Attribute(AttrType.STRING, computed=True),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        image: Any = d.get("image")
        request: dict[str, Any] = {
            "name": d.get("name"),
            "size": d.get("size"),
            "image": int(image) if image.isdigit() else image,
            "backups": d.get("backups"),
            "monitoring": d.get("monitoring"),
            "ipv6": d.get("ipv6"),
            "tags": list(d.get("tags")),
        }
        region, ok = d.get_ok("region")
        if ok:
            request["region"] = region
        vpc, ok = d.get_ok("vpc_uuid")
        if ok:
            request["vpc_uuid"] = vpc
        user_data = d.get_raw("user_data")
        if user_data:
            request["user_data"] = user_data
        keys = d.get("ssh_keys")
        if keys:
            request["ssh_keys"] = [int(k) if str(k).isdigit() else k for k in keys]
        volumes = d.get("volume_ids")
        if volumes:
            request["volumes"] = list(volumes)

        body, _ = await meta.api_client().post("/v2/droplets", request)
        d.set_id(body["droplet"]["id"])
        logger.info("Droplet %s created, waiting for it to become active", d.id)
        await self._wait_attribute(d, meta, "create", "active", ("new",))
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        try:
            body, _ = await meta.api_client().get(f"/v2/droplets/{d.id}")
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        droplet = body["droplet"]
        image = droplet.get("image") or {}
        # Keep the user's spelling: numeric IDs stay numeric, slugs stay slugs.
        configured = str(d.get("image") or "")
        if image.get("slug") and not configured.isdigit():
            d.set("image", image["slug"])
        elif image.get("id") is not None:
            d.set("image", str(image["id"]))

        for name, value in droplet_fields(droplet).items():
            d.set(name, value)

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        api = meta.api_client()
        actions = f"/v2/droplets/{d.id}/actions"

        if d.has_change("size"):
            await self._resize(d, meta)

        if d.has_change("name"):
            body, _ = await api.post(actions, {"type": "rename", "name": d.get("name")})
            await wait_action(meta, body["action"], d, "update")

        if d.has_change("backups"):
            kind = "enable_backups" if d.get("backups") else "disable_backups"
            body, _ = await api.post(actions, {"type": kind})
            await wait_action(meta, body["action"], d, "update")

        if d.has_change("ipv6") and d.get("ipv6"):
            body, _ = await api.post(actions, {"type": "enable_ipv6"})
            await wait_action(meta, body["action"], d, "update")

        if d.has_change("tags"):
            old, new = d.get_change("tags")
            await set_tags(api, d.id, "droplet", old, new)

        if d.has_change("volume_ids"):
            old, new = d.get_change("volume_ids")
            for volume_id in new.difference(old):
                await post_action(
                    meta, f"/v2/volumes/{volume_id}/actions", {"type": "attach", "droplet_id": int(d.id)}, d, "update"
                )
            for volume_id in old.difference(new):
                await self._detach_volume(d, meta, volume_id)

        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        await self._wait_attribute(
            d, meta, "delete", "false", ("", "true"), status_of=lambda p: str(bool(p.get("locked"))).lower()
        )
        for volume_id in d.get_prior("volume_ids"):
            await self._detach_volume(d, meta, volume_id)

        logger.info("Deleting droplet %s", d.id)
        await meta.api_client().delete(f"/v2/droplets/{d.id}")
        await self._wait_destroyed(d, meta)
        d.set_id("")

    async def import_state(self, import_id: str, d: ResourceData, meta: CombinedClient) -> None:
        if not import_id.isdigit():
            raise ImportFormatError(f"invalid droplet id: {import_id!r}")
        d.set_id(import_id)
        body, _ = await meta.api_client().get(f"/v2/droplets/{import_id}")
        image = body["droplet"].get("image") or {}
        d.set("image", image.get("slug") or str(image.get("id", "")))
        d.set("resize_disk", True)

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    async def _resize(self, d: ResourceData, meta: CombinedClient) -> None:
        api = meta.api_client()
        actions = f"/v2/droplets/{d.id}/actions"
        power_off = "shutdown" if d.get("graceful_shutdown") else "power_off"

        body, _ = await api.post(actions, {"type": power_off})
        await wait_action(meta, body["action"], d, "update")
        await self._wait_attribute(d, meta, "update", "off", ("active",))

        try:
            body, _ = await api.post(actions, {"type": "resize", "size": d.get("size"), "disk": d.get("resize_disk")})
            await wait_action(meta, body["action"], d, "update")
        except Exception:
            logger.warning("Resize of droplet %s failed, powering it back on", d.id)
            await self._power_on(d, meta)
            raise
        await self._power_on(d, meta)

    async def _power_on(self, d: ResourceData, meta: CombinedClient) -> None:
        body, _ = await meta.api_client().post(f"/v2/droplets/{d.id}/actions", {"type": "power_on"})
        await wait_action(meta, body["action"], d, "update")
        await self._wait_attribute(d, meta, "update", "active", ("off",))

    async def _detach_volume(self, d: ResourceData, meta: CombinedClient, volume_id: str) -> None:
        logger.debug("Detaching volume %s from droplet %s", volume_id, d.id)
        await post_action_tolerating(
            meta,
            f"/v2/volumes/{volume_id}/actions",
            {"type": "detach", "droplet_id": int(d.id)},
            d,
            "delete",
        )

    async def _wait_attribute(
        self,
        d: ResourceData,
        meta: CombinedClient,
        operation: str,
        target: str,
        pending: tuple[str, ...],
        *,
        status_of: Any = None,
    ) -> dict[str, Any]:
        return await wait_status(
            meta, d, operation, f"/v2/droplets/{d.id}", "droplet", (target,), pending, status_of=status_of
        )

    async def _wait_destroyed(self, d: ResourceData, meta: CombinedClient) -> None:
        api = meta.api_client()

        async def poll(droplet_id: str) -> tuple[Any, str]:
            try:
                body, _ = await api.get(f"/v2/droplets/{droplet_id}")
            except Exception as exc:
                if is_not_found(exc):
                    return {}, "archived"
                raise
            return body["droplet"], body["droplet"].get("status", "")

        await wait_for_resource(
            d.id,
            poll,
            ("archived",),
            ("active", "off"),
            settings=meta.poll,
            timeout=_DESTROY_TIMEOUT,
            cancel=d.cancel,
            description=f"droplet {d.id} destroy",
        )


def droplet_fields(droplet: dict[str, Any]) -> dict[str, Any]:
    """Upstream droplet payload projected onto the droplet attributes (image excluded)."""
    size = droplet.get("size") or {}
    networks = droplet.get("networks") or {}
    features = droplet.get("features") or []
    return {
        "name": droplet["name"],
        "region": droplet["region"]["slug"],
        "size": droplet.get("size_slug") or "",
        "disk": droplet.get("disk", 0),
        "vcpus": droplet.get("vcpus", 0),
        "memory": droplet.get("memory", 0),
        "price_hourly": float(size.get("price_hourly", 0.0)),
        "price_monthly": float(size.get("price_monthly", 0.0)),
        "status": droplet.get("status", ""),
        "locked": bool(droplet.get("locked")),
        "created_at": droplet.get("created_at", ""),
        "vpc_uuid": droplet.get("vpc_uuid") or "",
        "urn": build_urn("droplet", droplet["id"]),
        "ipv4_address": _address(networks.get("v4"), "public"),
        "ipv4_address_private": _address(networks.get("v4"), "private"),
        "ipv6_address": _address(networks.get("v6"), "public").lower(),
        "backups": "backups" in features,
        "ipv6": "ipv6" in features,
        "monitoring": "monitoring" in features,
        "volume_ids": [str(v) for v in droplet.get("volume_ids") or []],
        "tags": droplet.get("tags") or [],
    }


def _address(networks: list[dict[str, Any]] | None, kind: str) -> str:
    for network in networks or ():
        if network.get("type") == kind:
            return network.get("ip_address", "")
    return ""
