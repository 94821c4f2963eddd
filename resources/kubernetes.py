"""
resources/kubernetes.py

Responsibility: Managed Kubernetes clusters (with their default node pool)
and additional node pools. Creates and node-pool changes wait until every
node in the pool reports "running".
Does NOT: talk to the Kubernetes API server itself.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from config import CombinedClient
from exceptions import ProviderError
from resources.base import Resource, clear_if_not_found, wait_status
from schema.attributes import Attribute, AttrType
from schema.normalizers import build_urn, normalize_region, trim_time_seconds
from schema.resource_data import ResourceData
from schema.validation import int_at_least, no_zero_values, string_in
from services.pagination import list_path
from services.tags import tags_attribute

logger = logging.getLogger(__name__)

# Marks the pool managed inline by the cluster resource
DEFAULT_NODE_POOL_TAG = "terraform:default-node-pool"

MAINTENANCE_DAYS = ("any", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_CLUSTERS = "/v2/kubernetes/clusters"


def filter_tags(tags: list[str] | None) -> list[str]:
    """Drops the tags the platform and this provider add on their own."""
    return [t for t in tags or () if t != "k8s" and not t.startswith(("k8s:", "terraform:"))]


def _node_pool_schema(*, inline: bool) -> dict[str, Attribute]:
    pool = {
        "name": Attribute(AttrType.STRING, required=True, force_new=not inline, validate=no_zero_values),
        "size": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "node_count": Attribute(AttrType.INT, optional=True, validate=int_at_least(1)),
        "auto_scale": Attribute(AttrType.BOOL, optional=True, default=False),
        "min_nodes": Attribute(AttrType.INT, optional=True),
        "max_nodes": Attribute(AttrType.INT, optional=True),
        "tags": tags_attribute(),
        "labels": Attribute(AttrType.MAP, optional=True, elem=AttrType.STRING),
        "taint": Attribute(
            AttrType.SET,
            optional=True,
            elem={
                "key": Attribute(AttrType.STRING, required=True),
                "value": Attribute(AttrType.STRING, required=True),
                "effect": Attribute(
                    AttrType.STRING, required=True, validate=string_in(("NoSchedule", "PreferNoSchedule", "NoExecute"))
                ),
            },
        ),
        "actual_node_count": Attribute(AttrType.INT, computed=True),
        "nodes": Attribute(
            AttrType.LIST,
            computed=True,
            elem={
                "id": Attribute(AttrType.STRING, computed=True),
                "name": Attribute(AttrType.STRING, computed=True),
                "status": Attribute(AttrType.STRING, computed=True),
                "droplet_id": Attribute(AttrType.STRING, computed=True),
            },
        ),
    }
    if inline:
        pool["id"] = Attribute(AttrType.STRING, computed=True)
    return pool


def expand_node_pool(pool: Mapping[str, Any], *extra_tags: str) -> dict[str, Any]:
    request: dict[str, Any] = {
        "name": pool["name"],
        "size": pool["size"],
        "tags": list(pool.get("tags") or ()) + list(extra_tags),
        "labels": dict(pool.get("labels") or {}),
        "auto_scale": bool(pool.get("auto_scale")),
        "taints": [dict(t) for t in pool.get("taint") or ()],
    }
    for field, key in (("node_count", "count"), ("min_nodes", "min_nodes"), ("max_nodes", "max_nodes")):
        if pool.get(field):
            request[key] = pool[field]
    return request


def flatten_node_pool(pool: Mapping[str, Any], *, inline: bool, configured_count: int = 0) -> dict[str, Any]:
    nodes = pool.get("nodes") or []
    flattened: dict[str, Any] = {
        "name": pool["name"],
        "size": pool["size"],
        # Autoscaled pools drift in size; only echo node_count when configured.
        "node_count": pool.get("count", 0) if configured_count or not pool.get("auto_scale") else 0,
        "actual_node_count": pool.get("count", 0),
        "auto_scale": bool(pool.get("auto_scale")),
        "min_nodes": pool.get("min_nodes", 0),
        "max_nodes": pool.get("max_nodes", 0),
        "tags": filter_tags(pool.get("tags")),
        "labels": pool.get("labels") or {},
        "taint": [
            {"key": t["key"], "value": t.get("value", ""), "effect": t["effect"]} for t in pool.get("taints") or []
        ],
        "nodes": [
            {
                "id": n.get("id", ""),
                "name": n.get("name", ""),
                "status": (n.get("status") or {}).get("state", ""),
                "droplet_id": n.get("droplet_id", ""),
            }
            for n in nodes
        ],
    }
    if inline:
        flattened["id"] = pool["id"]
    return flattened


def pool_status(pool: Mapping[str, Any]) -> str:
    """"running" once the pool has its full node count and every node runs."""
    nodes = pool.get("nodes") or []
    if len(nodes) == pool.get("count", 0) and all((n.get("status") or {}).get("state") == "running" for n in nodes):
        return "running"
    return "provisioning"


async def wait_node_pool(meta: CombinedClient, d: ResourceData, operation: str, cluster_id: str, pool_id: str) -> None:
    await wait_status(
        meta,
        d,
        operation,
        f"{_CLUSTERS}/{cluster_id}/node_pools/{pool_id}",
        "node_pool",
        ("running",),
        ("provisioning",),
        status_of=pool_status,
    )


# ---------------------------------------------------------------------------
# Cluster
# ---------------------------------------------------------------------------


class KubernetesClusterResource(Resource):
    kind = "digitalocean_kubernetes_cluster"
    timeouts = {"create": 30 * 60.0}

    schema = {
        "name": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
        "region": Attribute(AttrType.STRING, required=True, force_new=True, state_func=normalize_region),
        "version": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
        "vpc_uuid": Attribute(AttrType.STRING, optional=True, computed=True, force_new=True),
        "ha": Attribute(AttrType.BOOL, optional=True, default=False, force_new=True),
        "auto_upgrade": Attribute(AttrType.BOOL, optional=True, default=False),
        "surge_upgrade": Attribute(AttrType.BOOL, optional=True, default=True),
        "registry_integration": Attribute(AttrType.BOOL, optional=True, default=False),
        "tags": tags_attribute(),
        "node_pool": Attribute(AttrType.LIST, required=True, max_items=1, elem=_node_pool_schema(inline=True)),
        "maintenance_policy": Attribute(
            AttrType.LIST,
            optional=True,
            computed=True,
            max_items=1,
            elem={
                "day": Attribute(AttrType.STRING, optional=True, validate=string_in(MAINTENANCE_DAYS)),
                "start_time": Attribute(AttrType.STRING, optional=True, state_func=trim_time_seconds),
                "duration": Attribute(AttrType.STRING, computed=True),
            },
        ),
        "cluster_subnet": Attribute(AttrType.STRING, computed=True),
        "service_subnet": Attribute(AttrType.STRING, computed=True),
        "ipv4_address": Attribute(AttrType.STRING, computed=True),
        "endpoint": Attribute(AttrType.STRING, computed=True),
        "status": Attribute(AttrType.STRING, computed=True),
        "created_at": Attribute(AttrType.STRING, computed=True),
        "updated_at": Attribute(AttrType.STRING, computed=True),
        "kube_config": Attribute(
            AttrType.LIST,
            computed=True,
            sensitive=True,
            elem={
                "host": Attribute(AttrType.STRING, computed=True),
                "cluster_ca_certificate": Attribute(AttrType.STRING, computed=True),
                "client_key": Attribute(AttrType.STRING, computed=True),
                "client_certificate": Attribute(AttrType.STRING, computed=True),
                "token": Attribute(AttrType.STRING, computed=True),
                "expires_at": Attribute(AttrType.STRING, computed=True),
            },
        ),
        "urn": Attribute(AttrType.STRING, computed=True),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        pool = d.get("node_pool")[0]
        request: dict[str, Any] = {
            "name": d.get("name"),
            "region": d.get("region"),
            "version": d.get("version"),
            "ha": d.get("ha"),
            "auto_upgrade": d.get("auto_upgrade"),
            "surge_upgrade": d.get("surge_upgrade"),
            "tags": list(d.get("tags")),
            "node_pools": [expand_node_pool(pool, DEFAULT_NODE_POOL_TAG)],
        }
        vpc, ok = d.get_ok("vpc_uuid")
        if ok:
            request["vpc_uuid"] = vpc
        policy = d.get("maintenance_policy")
        if policy:
            request["maintenance_policy"] = _expand_policy(policy[0])

        body, _ = await meta.api_client().post(_CLUSTERS, request)
        d.set_id(body["kubernetes_cluster"]["id"])
        logger.info("Kubernetes cluster %s created, waiting for it to run", d.id)
        await wait_status(
            meta,
            d,
            "create",
            f"{_CLUSTERS}/{d.id}",
            "kubernetes_cluster",
            ("running",),
            ("provisioning",),
            status_of=lambda c: (c.get("status") or {}).get("state", ""),
        )
        if d.get("registry_integration"):
            await meta.api_client().post("/v2/kubernetes/registry", {"cluster_uuids": [d.id]})
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        api = meta.api_client()
        try:
            body, _ = await api.get(f"{_CLUSTERS}/{d.id}")
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        cluster = body["kubernetes_cluster"]
        d.set("name", cluster["name"])
        d.set("region", cluster["region"])
        d.set("version", cluster["version"])
        d.set("vpc_uuid", cluster.get("vpc_uuid") or "")
        d.set("ha", bool(cluster.get("ha")))
        d.set("auto_upgrade", bool(cluster.get("auto_upgrade")))
        d.set("surge_upgrade", bool(cluster.get("surge_upgrade")))
        d.set("registry_integration", bool(cluster.get("registry_enabled")))
        d.set("tags", filter_tags(cluster.get("tags")))
        d.set("cluster_subnet", cluster.get("cluster_subnet", ""))
        d.set("service_subnet", cluster.get("service_subnet", ""))
        d.set("ipv4_address", cluster.get("ipv4", ""))
        d.set("endpoint", cluster.get("endpoint", ""))
        d.set("status", (cluster.get("status") or {}).get("state", ""))
        d.set("created_at", cluster.get("created_at", ""))
        d.set("updated_at", cluster.get("updated_at", ""))
        d.set("urn", build_urn("kubernetes", cluster["id"]))

        policy = cluster.get("maintenance_policy")
        if policy:
            d.set(
                "maintenance_policy",
                [
                    {
                        "day": policy.get("day", ""),
                        "start_time": trim_time_seconds(policy.get("start_time", "")),
                        "duration": policy.get("duration", ""),
                    }
                ],
            )

        defaults = [p for p in cluster.get("node_pools") or [] if DEFAULT_NODE_POOL_TAG in (p.get("tags") or [])]
        if len(defaults) > 1:
            logger.warning("Multiple node pools of cluster %s carry the %s tag", d.id, DEFAULT_NODE_POOL_TAG)
        if defaults:
            configured = (d.get("node_pool") or [{}])[0].get("node_count") or 0
            d.set("node_pool", [flatten_node_pool(defaults[0], inline=True, configured_count=configured)])
        else:
            logger.warning("No default node pool found for cluster %s", d.id)

        if _credentials_expired(d.get("kube_config")):
            creds, _ = await api.get(f"{_CLUSTERS}/{d.id}/credentials")
            d.set("kube_config", [_flatten_credentials(creds)])

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        api = meta.api_client()
        if d.has_changes("name", "tags", "auto_upgrade", "surge_upgrade", "maintenance_policy"):
            request: dict[str, Any] = {
                "name": d.get("name"),
                "tags": list(d.get("tags")),
                "auto_upgrade": d.get("auto_upgrade"),
                "surge_upgrade": d.get("surge_upgrade"),
            }
            policy = d.get("maintenance_policy")
            if policy:
                request["maintenance_policy"] = _expand_policy(policy[0])
            await api.put(f"{_CLUSTERS}/{d.id}", request)

        if d.has_change("node_pool"):
            old, new = d.get_change("node_pool")
            pool_id = old[0]["id"]
            await api.put(
                f"{_CLUSTERS}/{d.id}/node_pools/{pool_id}", expand_node_pool(new[0], DEFAULT_NODE_POOL_TAG)
            )
            await wait_node_pool(meta, d, "update", d.id, pool_id)

        if d.has_change("version"):
            logger.info("Upgrading Kubernetes cluster %s to %s", d.id, d.get("version"))
            await api.post(f"{_CLUSTERS}/{d.id}/upgrade", {"version": d.get("version")})

        if d.has_change("registry_integration"):
            body = {"cluster_uuids": [d.id]}
            if d.get("registry_integration"):
                await api.post("/v2/kubernetes/registry", body)
            else:
                await api.delete("/v2/kubernetes/registry", body)

        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        await meta.api_client().delete(f"{_CLUSTERS}/{d.id}")
        d.set_id("")


def _expand_policy(policy: Mapping[str, Any]) -> dict[str, Any]:
    request: dict[str, Any] = {}
    if policy.get("day"):
        request["day"] = policy["day"]
    if policy.get("start_time"):
        request["start_time"] = policy["start_time"]
    return request


def _credentials_expired(kube_config: list[dict[str, Any]] | None) -> bool:
    if not kube_config:
        return True
    expires_at = kube_config[0].get("expires_at") or ""
    if not expires_at:
        return True
    try:
        expiry = datetime.fromisoformat(expires_at.replace("Z", "+00:00"))
    except ValueError:
        return True
    return expiry <= datetime.now(timezone.utc)


def _flatten_credentials(creds: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "host": creds.get("server", ""),
        "cluster_ca_certificate": creds.get("certificate_authority_data", ""),
        "client_key": creds.get("client_key_data") or "",
        "client_certificate": creds.get("client_certificate_data") or "",
        "token": creds.get("token", ""),
        "expires_at": creds.get("expires_at", ""),
    }


# ---------------------------------------------------------------------------
# Node pools
# ---------------------------------------------------------------------------


class KubernetesNodePoolResource(Resource):
    kind = "digitalocean_kubernetes_node_pool"

    schema = {
        "cluster_id": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        **_node_pool_schema(inline=False),
    }

    def _path(self, d: ResourceData) -> str:
        return f"{_CLUSTERS}/{d.get('cluster_id')}/node_pools/{d.id}"

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        pool = {name: d.get(name) for name in ("name", "size", "node_count", "auto_scale", "min_nodes", "max_nodes", "tags", "labels", "taint")}
        cluster_id = d.get("cluster_id")
        body, _ = await meta.api_client().post(f"{_CLUSTERS}/{cluster_id}/node_pools", expand_node_pool(pool))
        d.set_id(body["node_pool"]["id"])
        await wait_node_pool(meta, d, "create", cluster_id, d.id)
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        try:
            body, _ = await meta.api_client().get(self._path(d))
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        flattened = flatten_node_pool(body["node_pool"], inline=False, configured_count=d.get("node_count"))
        for name, value in flattened.items():
            d.set(name, value)

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        pool = {name: d.get(name) for name in ("name", "size", "node_count", "auto_scale", "min_nodes", "max_nodes", "tags", "labels", "taint")}
        await meta.api_client().put(self._path(d), expand_node_pool(pool))
        await wait_node_pool(meta, d, "update", d.get("cluster_id"), d.id)
        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        await meta.api_client().delete(self._path(d))
        d.set_id("")

    async def import_state(self, import_id: str, d: ResourceData, meta: CombinedClient) -> None:
        """Finds the cluster owning the node pool by scanning every cluster."""
        clusters = await list_path(meta.api_client(), _CLUSTERS, "kubernetes_clusters")
        owner, pool = "", None
        for cluster in clusters:
            for candidate in cluster.get("node_pools") or []:
                if candidate["id"] == import_id:
                    if owner:
                        raise ProviderError(f"node pool {import_id} is associated with multiple clusters")
                    owner, pool = cluster["id"], candidate
        if pool is None:
            raise ProviderError(f"did not find the cluster owning the node pool {import_id}")
        if DEFAULT_NODE_POOL_TAG in (pool.get("tags") or []):
            raise ProviderError(
                f"node pool {import_id} has the default node pool tag set; import the owning "
                f"digitalocean_kubernetes_cluster resource instead (cluster ID={owner})"
            )
        d.set("cluster_id", owner)
        d.set_id(import_id)
