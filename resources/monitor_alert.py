"""
resources/monitor_alert.py

Responsibility: Monitoring alert policies on droplet metrics, with Slack and
e-mail notification targets.
"""

from __future__ import annotations

from typing import Any

from config import CombinedClient
from resources.base import Resource, clear_if_not_found
from schema.attributes import Attribute, AttrType
from schema.resource_data import ResourceData
from schema.validation import no_zero_values, string_in
from services.tags import tags_attribute

_METRIC_PREFIX = "v1/insights/droplet/"

ALERT_TYPES = tuple(
    _METRIC_PREFIX + metric
    for metric in (
        "cpu",
        "memory_utilization_percent",
        "disk_utilization_percent",
        "public_outbound_bandwidth",
        "public_inbound_bandwidth",
        "private_outbound_bandwidth",
        "private_inbound_bandwidth",
        "disk_read",
        "disk_write",
        "load_1",
        "load_5",
        "load_15",
    )
)
COMPARISONS = ("GreaterThan", "LessThan")
WINDOWS = ("5m", "10m", "30m", "1h")


class MonitorAlertResource(Resource):
    kind = "digitalocean_monitor_alert"

    schema = {
        "type": Attribute(AttrType.STRING, required=True, validate=string_in(ALERT_TYPES)),
        "compare": Attribute(AttrType.STRING, required=True, validate=string_in(COMPARISONS)),
        "value": Attribute(AttrType.FLOAT, required=True),
        "window": Attribute(AttrType.STRING, required=True, validate=string_in(WINDOWS)),
        "description": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
        "enabled": Attribute(AttrType.BOOL, optional=True, default=True),
        "entities": Attribute(AttrType.SET, optional=True, elem=AttrType.STRING),
        "tags": tags_attribute(),
        "alerts": Attribute(
            AttrType.LIST,
            required=True,
            max_items=1,
            elem={
                "email": Attribute(AttrType.LIST, optional=True, elem=AttrType.STRING),
                "slack": Attribute(
                    AttrType.LIST,
                    optional=True,
                    elem={
                        "channel": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
                        "url": Attribute(AttrType.STRING, required=True, validate=no_zero_values),
                    },
                ),
            },
        ),
        "uuid": Attribute(AttrType.STRING, computed=True),
    }

    async def create(self, d: ResourceData, meta: CombinedClient) -> None:
        body, _ = await meta.api_client().post("/v2/monitoring/alerts", self._request(d))
        d.set_id(body["policy"]["uuid"])
        await self.read(d, meta)

    async def read(self, d: ResourceData, meta: CombinedClient) -> None:
        try:
            body, _ = await meta.api_client().get(f"/v2/monitoring/alerts/{d.id}")
        except Exception as exc:
            if clear_if_not_found(d, self.kind, exc):
                return
            raise
        policy = body["policy"]
        alerts = policy.get("alerts") or {}
        d.set("uuid", policy["uuid"])
        d.set("type", policy["type"])
        d.set("compare", policy["compare"])
        d.set("value", float(policy.get("value", 0)))
        d.set("window", policy["window"])
        d.set("description", policy.get("description", ""))
        d.set("enabled", bool(policy.get("enabled")))
        d.set("entities", policy.get("entities") or [])
        d.set("tags", policy.get("tags") or [])
        d.set(
            "alerts",
            [
                {
                    "email": alerts.get("email") or [],
                    "slack": [{"channel": s["channel"], "url": s["url"]} for s in alerts.get("slack") or []],
                }
            ],
        )

    async def update(self, d: ResourceData, meta: CombinedClient) -> None:
        await meta.api_client().put(f"/v2/monitoring/alerts/{d.id}", self._request(d))
        await self.read(d, meta)

    async def delete(self, d: ResourceData, meta: CombinedClient) -> None:
        await meta.api_client().delete(f"/v2/monitoring/alerts/{d.id}")
        d.set_id("")

    @staticmethod
    def _request(d: ResourceData) -> dict[str, Any]:
        alerts = d.get("alerts")[0]
        return {
            "type": d.get("type"),
            "compare": d.get("compare"),
            "value": d.get("value"),
            "window": d.get("window"),
            "description": d.get("description"),
            "enabled": d.get("enabled"),
            "entities": list(d.get("entities")),
            "tags": list(d.get("tags")),
            "alerts": {
                "email": list(alerts.get("email") or []),
                "slack": [dict(s) for s in alerts.get("slack") or []],
            },
        }
