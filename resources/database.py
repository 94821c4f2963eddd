"""
resources/database.py

Responsibility: Managed database clusters and their children (logical
databases, users, connection pools, read replicas, trusted-source firewall).
Cluster updates are applied in a fixed order: resize, migrate, maintenance
window, eviction policy, SQL mode, version upgrade, tags. Resizes and
migrations wait for the cluster to come back "online".
Does NOT: manage database engine configuration beyond the fields declared here.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote, urlsplit, urlunsplit

from config import CombinedClient
from resources.base import Resource, clear_if_not_found, gone, wait_status
from schema.attributes import Attribute, AttrType
from schema.normalizers import build_urn, normalize_region, trim_time_seconds
from schema.resource_data import ResourceData
from schema.validation import int_between, no_zero_values, string_in
from services.tags import set_tags, tags_attribute

logger = logging.getLogger(__name__)

ENGINES = ("pg", "mysql", "redis", "valkey", "mongodb", "kafka", "opensearch")
EVICTION_POLICIES = (
    "noeviction",
    "allkeys_lru",
    "allkeys_random",
    "volatile_lru",
    "volatile_random",
    "volatile_ttl",
)
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_ONLINE = ("online",)
_TRANSITIONAL = ("creating", "resizing", "migrating", "forking")

_MAINTENANCE_WINDOW = {
    "day": Attribute(AttrType.STRING, required=True, validate=string_in(WEEKDAYS, ignore_case=True)),
    "hour": Attribute(AttrType.STRING, required=True, state_func=trim_time_seconds),
}


def cluster_path(cluster_id: str) -> str:
    return f"/v2/databases/{cluster_id}"


class DatabaseClusterResource(Resource):
    kind = "digitalocean_database_cluster"

    schema = {
        "name": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "engine": Attribute(AttrType.STRING, required=True, force_new=True, validate=string_in(ENGINES)),
        "version": Attribute(AttrType.STRING, optional=True),
        "size": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
        "region": Attribute(AttrType.STRING, required=True, state_func=normalize_region),
        "node_count": Attribute(AttrType.INT, required=True, validate=int_between(1, 3)),
        "storage_size_mib": Attribute(AttrType.STRING, optional=True, computed=True),
        "private_network_uuid": Attribute(AttrType.STRING, optional=True, computed=True, force_new=True),
        "maintenance_window": Attribute(AttrType.LIST, optional=True, max_items=1, elem=_MAINTENANCE_WINDOW),
        "eviction_policy": Attribute(AttrType.STRING, optional=True, validate=string_in(EVICTION_POLICIES)),
        "sql_mode": Attribute(AttrType.STRING, optional=True),
        "tags": tags_attribute(),
        "status": Attribute(AttrType.STRING, computed=True),
        "host": Attribute(AttrType.STRING, computed=True),
        "private_host": Attribute(AttrType.STRING, computed=True),
        "port": Attribute(AttrType.INT, computed=True),
        "uri": Attribute(AttrType.STRING, computed=True, sensitive=True),
        "private_uri": Attribute(AttrType.STRING, computed=True, sensitive=True),
        "database": Attribute(AttrType.STRING, computed=True),
        "user": Attribute(AttrType.STRING, computed=True),
        "password": Attribute(AttrType.STRING, computed=True, sensitive=True),
        "urn": Attribute(AttrType.STRING, computed=True),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        request: dict[str, Any] = {
            "name": d.get("name"),
            "engine": d.get("engine"),
            "size": d.get("size"),
            "region": d.get("region"),
            "num_nodes": d.get("node_count"),
            "tags": list(d.get("tags")),
        }
        for field in ("version", "private_network_uuid"):
            value, ok = d.get_ok(field)
            if ok:
                request[field] = value
        storage, ok = d.get_ok("storage_size_mib")
        if ok:
            request["storage_size_mib"] = int(storage)

        body, _ = await meta.api_client().post("/v2/databases", request)
        cluster = body["database"]
        d.set_id(cluster["id"])
        # Credentials are only returned in full on create.
        self._set_connection(d, cluster)
        logger.info("Database cluster %s created, waiting for it to come online", d.id)
        await self._wait_online(d, meta, "create")

        window = d.get("maintenance_window")
        if window:
            await self._set_maintenance(d, meta, window[0])
        policy, ok = d.get_ok("eviction_policy")
        if ok:
            await meta.api_client().put(f"{cluster_path(d.id)}/eviction_policy", {"eviction_policy": policy})
        sql_mode, ok = d.get_ok("sql_mode")
        if ok:
            await meta.api_client().put(f"{cluster_path(d.id)}/sql_mode", {"sql_mode": sql_mode})

        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        try:
            body, _ = await meta.api_client().get(cluster_path(d.id))
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        cluster = body["database"]
        d.set("name", cluster["name"])
        d.set("engine", cluster["engine"])
        d.set("version", cluster.get("version") or "")
        d.set("size", cluster["size"])
        d.set("region", cluster["region"])
        d.set("node_count", cluster["num_nodes"])
        if cluster.get("storage_size_mib"):
            d.set("storage_size_mib", str(cluster["storage_size_mib"]))
        d.set("private_network_uuid", cluster.get("private_network_uuid") or "")
        d.set("tags", cluster.get("tags") or [])
        d.set("status", cluster.get("status") or "")
        d.set("urn", build_urn("dbaas", cluster["id"]))

        window = cluster.get("maintenance_window")
        if window:
            d.set("maintenance_window", [{"day": window["day"], "hour": trim_time_seconds(window["hour"])}])

        self._set_connection(d, cluster)

        engine = cluster["engine"]
        if engine in ("redis", "valkey") and d.get("eviction_policy"):
            policy, _ = await meta.api_client().get(f"{cluster_path(d.id)}/eviction_policy")
            d.set("eviction_policy", policy.get("eviction_policy", ""))
        if engine == "mysql" and d.get("sql_mode"):
            mode, _ = await meta.api_client().get(f"{cluster_path(d.id)}/sql_mode")
            d.set("sql_mode", mode.get("sql_mode", ""))

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        """
        Applies changes in a fixed order. A resize must finish (cluster back
        online) before a migration is requested.
        """
        api = meta.api_client()
        path = cluster_path(d.id)

        if d.has_changes("size", "node_count", "storage_size_mib"):
            request: dict[str, Any] = {"size": d.get("size"), "num_nodes": d.get("node_count")}
            storage, ok = d.get_ok("storage_size_mib")
            if ok:
                request["storage_size_mib"] = int(storage)
            logger.info("Resizing database cluster %s", d.id)
            await api.put(f"{path}/resize", request)
            await self._wait_online(d, meta, "update")

        if d.has_change("region"):
            logger.info("Migrating database cluster %s to %s", d.id, d.get("region"))
            await api.put(f"{path}/migrate", {"region": d.get("region")})
            await self._wait_online(d, meta, "update")

        if d.has_change("maintenance_window"):
            window = d.get("maintenance_window")
            if window:
                await self._set_maintenance(d, meta, window[0])

        if d.has_change("eviction_policy"):
            policy, ok = d.get_ok("eviction_policy")
            await api.put(f"{path}/eviction_policy", {"eviction_policy": policy if ok else "noeviction"})

        if d.has_change("sql_mode"):
            await api.put(f"{path}/sql_mode", {"sql_mode": d.get("sql_mode")})

        if d.has_change("version"):
            await api.put(f"{path}/upgrade", {"version": d.get("version")})

        if d.has_change("tags"):
            old, new = d.get_change("tags")
            await set_tags(api, d.id, "database", old, new)

        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        await meta.api_client().delete(cluster_path(d.id))
        d.set_id("")

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    async def _wait_online(self, d: ResourceData, meta: CombinedClient, operation: str) -> None:
        await wait_status(meta, d, operation, cluster_path(d.id), "database", _ONLINE, _TRANSITIONAL)

    async def _set_maintenance(self, d: ResourceData, meta: CombinedClient, window: dict[str, Any]) -> None:
        await meta.api_client().put(
            f"{cluster_path(d.id)}/maintenance",
            {"day": window["day"], "hour": window["hour"]},
        )

    def _set_connection(self, d: ResourceData, cluster: dict[str, Any]) -> None:
        # NOTE: reads only return the password for admin users; keep the stored one.
        conn = cluster.get("connection") or {}
        private = cluster.get("private_connection") or {}
        password = conn.get("password") or d.get("password")
        d.set("host", conn.get("host", ""))
        d.set("private_host", private.get("host", ""))
        d.set("port", conn.get("port", 0))
        d.set("database", conn.get("database", ""))
        d.set("user", conn.get("user", ""))
        d.set("password", password)
        d.set("uri", with_password(conn.get("uri", ""), password))
        d.set("private_uri", with_password(private.get("uri", ""), password))


def with_password(uri: str, password: str) -> str:
    """Rebuilds a connection URI so that it carries ``password``."""
    if not uri or not password:
        return uri
    parts = urlsplit(uri)
    if not parts.username:
        return uri
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    netloc = f"{parts.username}:{quote(password, safe='')}@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


# ---------------------------------------------------------------------------
# Children
# ---------------------------------------------------------------------------


class _ClusterChild(Resource):
    """
    Common shape of objects living inside a cluster: handle
    ``<cluster_id>/<segment>/<name>``, import ``<cluster_id>,<name>``.
    """

    segment = ""
    collection = ""
    payload_key = ""
    import_fields = ("cluster_id", "name")

    def child_id(self, cluster_id: str, name: str) -> str:
        return f"{cluster_id}/{self.segment}/{name}"

    def child_path(self, d: ResourceData) -> str:
        return f"{cluster_path(d.get('cluster_id'))}/{self.collection}/{d.get('name')}"

    async def import_state(self, import_id: str, d: ResourceData, meta: CombinedClient) -> None:
        await super().import_state(import_id, d, meta)
        d.set_id(self.child_id(d.get("cluster_id"), d.get("name")))

    async def _get(self, d: ResourceData, meta: CombinedClient) -> dict[str, Any] | None:
        try:
            body, _ = await meta.api_client().get(self.child_path(d))
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return None
            raise
        return body[self.payload_key]

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        await meta.api_client().delete(self.child_path(d))
        d.set_id("")


class DatabaseDBResource(_ClusterChild):
    kind = "digitalocean_database_db"
    segment = "database"
    collection = "dbs"
    payload_key = "db"

    schema = {
        "cluster_id": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "name": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        cluster_id = d.get("cluster_id")
        await meta.api_client().post(f"{cluster_path(cluster_id)}/dbs", {"name": d.get("name")})
        d.set_id(self.child_id(cluster_id, d.get("name")))
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        db = await self._get(d, meta)
        if db is not None:
            d.set("cluster_id", d.get("cluster_id"))
            d.set("name", db["name"])


class DatabaseUserResource(_ClusterChild):
    kind = "digitalocean_database_user"
    segment = "user"
    collection = "users"
    payload_key = "user"

    schema = {
        "cluster_id": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "name": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "mysql_auth_plugin": Attribute(
            AttrType.STRING,
            optional=True,
            validate=string_in(("mysql_native_password", "caching_sha2_password")),
        ),
        "role": Attribute(AttrType.STRING, computed=True),
        "password": Attribute(AttrType.STRING, computed=True, sensitive=True),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        cluster_id = d.get("cluster_id")
        request: dict[str, Any] = {"name": d.get("name")}
        plugin, ok = d.get_ok("mysql_auth_plugin")
        if ok:
            request["mysql_settings"] = {"auth_plugin": plugin}
        body, _ = await meta.api_client().post(f"{cluster_path(cluster_id)}/users", request)
        d.set_id(self.child_id(cluster_id, d.get("name")))
        d.set("password", body["user"].get("password", ""))
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        user = await self._get(d, meta)
        if user is None:
            return
        d.set("role", user.get("role", ""))
        # Only admin tokens see passwords on reads.
        if user.get("password"):
            d.set("password", user["password"])
        plugin = (user.get("mysql_settings") or {}).get("auth_plugin")
        if plugin:
            d.set("mysql_auth_plugin", plugin)

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        if d.has_change("mysql_auth_plugin"):
            await meta.api_client().post(
                f"{self.child_path(d)}/reset_auth",
                {"mysql_settings": {"auth_plugin": d.get("mysql_auth_plugin")}},
            )
        await self.read(d, meta)


class DatabaseConnectionPoolResource(_ClusterChild):
    kind = "digitalocean_database_connection_pool"
    segment = "pool"
    collection = "pools"
    payload_key = "pool"

    schema = {
        "cluster_id": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "name": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "user": Attribute(AttrType.STRING, optional=True, force_new=True),
        "size": Attribute(AttrType.INT, required=True, force_new=True),
        "db_name": Attribute(AttrType.STRING, required=True, force_new=True),
        "mode": Attribute(
            AttrType.STRING, required=True, force_new=True, validate=string_in(("session", "transaction", "statement"))
        ),
        "host": Attribute(AttrType.STRING, computed=True),
        "private_host": Attribute(AttrType.STRING, computed=True),
        "port": Attribute(AttrType.INT, computed=True),
        "uri": Attribute(AttrType.STRING, computed=True, sensitive=True),
        "private_uri": Attribute(AttrType.STRING, computed=True, sensitive=True),
        "password": Attribute(AttrType.STRING, computed=True, sensitive=True),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        cluster_id = d.get("cluster_id")
        request = {
            "name": d.get("name"),
            "user": d.get("user"),
            "size": d.get("size"),
            "db": d.get("db_name"),
            "mode": d.get("mode"),
        }
        await meta.api_client().post(f"{cluster_path(cluster_id)}/pools", request)
        d.set_id(self.child_id(cluster_id, d.get("name")))
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        pool = await self._get(d, meta)
        if pool is None:
            return
        conn = pool.get("connection") or {}
        private = pool.get("private_connection") or {}
        d.set("user", pool.get("user", ""))
        d.set("size", pool.get("size", 0))
        d.set("db_name", pool.get("db", ""))
        d.set("mode", pool.get("mode", ""))
        d.set("host", conn.get("host", ""))
        d.set("private_host", private.get("host", ""))
        d.set("port", conn.get("port", 0))
        d.set("uri", conn.get("uri", ""))
        d.set("private_uri", private.get("uri", ""))
        d.set("password", conn.get("password", ""))


class DatabaseReplicaResource(_ClusterChild):
    kind = "digitalocean_database_replica"
    segment = "replica"
    collection = "replicas"
    payload_key = "replica"

    schema = {
        "cluster_id": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "name": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "region": Attribute(AttrType.STRING, optional=True, computed=True, force_new=True, state_func=normalize_region),
        "size": Attribute(AttrType.STRING, optional=True, computed=True),
        "private_network_uuid": Attribute(AttrType.STRING, optional=True, computed=True, force_new=True),
        "tags": tags_attribute(),
        "uuid": Attribute(AttrType.STRING, computed=True),
        "host": Attribute(AttrType.STRING, computed=True),
        "port": Attribute(AttrType.INT, computed=True),
        "uri": Attribute(AttrType.STRING, computed=True, sensitive=True),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        cluster_id = d.get("cluster_id")
        request: dict[str, Any] = {"name": d.get("name"), "tags": list(d.get("tags"))}
        for field in ("region", "size", "private_network_uuid"):
            value, ok = d.get_ok(field)
            if ok:
                request[field] = value
        await meta.api_client().post(f"{cluster_path(cluster_id)}/replicas", request)
        d.set_id(self.child_id(cluster_id, d.get("name")))
        await wait_status(meta, d, "create", self.child_path(d), "replica", _ONLINE, ("forking", "creating"))
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        replica = await self._get(d, meta)
        if replica is None:
            return
        conn = replica.get("connection") or {}
        d.set("uuid", replica.get("id", ""))
        d.set("region", replica.get("region", ""))
        d.set("size", replica.get("size", ""))
        d.set("private_network_uuid", replica.get("private_network_uuid") or "")
        d.set("tags", replica.get("tags") or [])
        d.set("host", conn.get("host", ""))
        d.set("port", conn.get("port", 0))
        d.set("uri", conn.get("uri", ""))

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        if d.has_change("size"):
            await meta.api_client().put(f"{self.child_path(d)}/resize", {"size": d.get("size")})
            await wait_status(meta, d, "update", self.child_path(d), "replica", _ONLINE, ("resizing",))
        await self.read(d, meta)


# ---------------------------------------------------------------------------
# Trusted sources
# ---------------------------------------------------------------------------

FIREWALL_RULE_TYPES = ("ip_addr", "droplet", "k8s", "tag", "app")


class DatabaseFirewallResource(Resource):
    """
    The trusted-source rule set of a cluster. Every change replaces the whole
    set with one synchronous PUT.
    """

    kind = "digitalocean_database_firewall"

    schema = {
        "cluster_id": Attribute(AttrType.STRING, required=True, force_new=True, validate=no_zero_values),
        "rule": Attribute(
            AttrType.SET,
            required=True,
            elem={
                "type": Attribute(AttrType.STRING, required=True, validate=string_in(FIREWALL_RULE_TYPES)),
                "value": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
            },
        ),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        await self._put_rules(d, meta)
        d.set_id(d.get("cluster_id"))
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        try:
            body, _ = await meta.api_client().get(f"{cluster_path(d.id)}/firewall")
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        rules = body.get("rules") or []
        if not rules:
            gone(d, self.kind)
            return
        d.set("cluster_id", d.id)
        d.set("rule", [{"type": r["type"], "value": r["value"]} for r in rules])

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        await self._put_rules(d, meta)
        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        await meta.api_client().put(f"{cluster_path(d.id)}/firewall", {"rules": []})
        d.set_id("")

    async def _put_rules(self, d: ResourceData, meta: CombinedClient) -> None:
        rules = [{"type": r["type"], "value": r["value"]} for r in d.get("rule")]
        await meta.api_client().put(f"{cluster_path(d.get('cluster_id'))}/firewall", {"rules": rules})
