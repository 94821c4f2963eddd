"""
tests/integration/test_kubernetes.py

Integration tests for Kubernetes clusters and node pools: the inline default
pool is tagged so it can be told apart, creates and pool resizes wait until
every node runs, and platform tags never reach state.
All DigitalOcean API calls are intercepted by respx.
"""

from __future__ import annotations

import json

import httpx
import pytest

from exceptions import ProviderError
from resources import engine
from resources.kubernetes import DEFAULT_NODE_POOL_TAG, KubernetesClusterResource, KubernetesNodePoolResource

_API = "https://api.digitalocean.com"
_CLUSTER = "bd5f5959-5e1e-4205-a714-a914373942af"
_CLUSTERS = f"{_API}/v2/kubernetes/clusters"
_POOL = "cdda885e-7663-40c8-bc74-3a036c66545d"

_CONFIG = {
    "name": "prod",
    "region": "nyc1",
    "version": "1.29.1-do.0",
    "node_pool": [{"name": "default", "size": "s-2vcpu-2gb", "node_count": 3}],
}


def _pool(pool_id=_POOL, name="default", count=3, running=None, tags=(DEFAULT_NODE_POOL_TAG,), **kwargs):
    running = count if running is None else running
    pool = {
        "id": pool_id,
        "name": name,
        "size": "s-2vcpu-2gb",
        "count": count,
        "auto_scale": False,
        "tags": ["k8s", f"k8s:{_CLUSTER}", "k8s:worker", *tags],
        "labels": {},
        "taints": [],
        "nodes": [
            {
                "id": f"node-{i}",
                "name": f"{name}-{i}",
                "status": {"state": "running" if i < running else "provisioning"},
                "droplet_id": str(100 + i),
            }
            for i in range(count)
        ],
    }
    pool.update(kwargs)
    return pool


def _cluster(state="running", pool=None):
    return httpx.Response(
        200,
        json={
            "kubernetes_cluster": {
                "id": _CLUSTER,
                "name": "prod",
                "region": "nyc1",
                "version": "1.29.1-do.0",
                "vpc_uuid": "c33931f2-a26a-4e61-b85c-4e95a2ec431b",
                "ha": False,
                "auto_upgrade": False,
                "surge_upgrade": True,
                "registry_enabled": False,
                "tags": ["k8s", f"k8s:{_CLUSTER}"],
                "cluster_subnet": "10.244.0.0/16",
                "service_subnet": "10.245.0.0/16",
                "ipv4": "68.183.121.157",
                "endpoint": f"https://{_CLUSTER}.k8s.ondigitalocean.com",
                "status": {"state": state},
                "created_at": "2024-01-11T18:05:00Z",
                "updated_at": "2024-01-11T18:10:00Z",
                "node_pools": [pool or _pool()],
            }
        },
    )


def _credentials():
    return httpx.Response(
        200,
        json={
            "server": f"https://{_CLUSTER}.k8s.ondigitalocean.com",
            "certificate_authority_data": "Y2EtZGF0YQ==",
            "token": "dop_v1_token",
            "expires_at": "2099-01-01T00:00:00Z",
        },
    )


def _mock_create(mock_http):
    create = mock_http.post(_CLUSTERS).mock(
        return_value=httpx.Response(201, json={"kubernetes_cluster": {"id": _CLUSTER, "status": {"state": "provisioning"}}})
    )
    credentials = mock_http.get(f"{_CLUSTERS}/{_CLUSTER}/credentials").mock(return_value=_credentials())
    return create, credentials


# ---------------------------------------------------------------------------
# Cluster
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cluster_create_tags_default_pool_and_waits_for_running(mock_http, combined_client):
    create, credentials = _mock_create(mock_http)
    poll = mock_http.get(f"{_CLUSTERS}/{_CLUSTER}").mock(
        side_effect=[_cluster("provisioning"), _cluster(), _cluster()]
    )

    result = await engine.create(KubernetesClusterResource(), _CONFIG, combined_client)

    sent = json.loads(create.calls.last.request.content)
    assert sent["node_pools"] == [
        {
            "name": "default",
            "size": "s-2vcpu-2gb",
            "tags": [DEFAULT_NODE_POOL_TAG],
            "labels": {},
            "auto_scale": False,
            "taints": [],
            "count": 3,
        }
    ]
    assert poll.call_count == 3
    assert credentials.call_count == 1
    assert result.handle == _CLUSTER
    assert result.state["tags"] == []
    pool = result.state["node_pool"][0]
    assert pool["id"] == _POOL
    assert pool["tags"] == []
    assert pool["actual_node_count"] == 3
    assert result.state["kube_config"][0]["token"] == "dop_v1_token"


@pytest.mark.asyncio
async def test_cluster_pool_resize_waits_for_every_node(mock_http, combined_client):
    _mock_create(mock_http)
    mock_http.get(f"{_CLUSTERS}/{_CLUSTER}").mock(
        side_effect=[_cluster(), _cluster(), _cluster(pool=_pool(count=5))]
    )
    created = await engine.create(KubernetesClusterResource(), _CONFIG, combined_client)
    put = mock_http.put(f"{_CLUSTERS}/{_CLUSTER}/node_pools/{_POOL}").mock(
        return_value=httpx.Response(202, json={"node_pool": _pool(count=5, running=3)})
    )
    pool_poll = mock_http.get(f"{_CLUSTERS}/{_CLUSTER}/node_pools/{_POOL}").mock(
        side_effect=[
            httpx.Response(200, json={"node_pool": _pool(count=5, running=3)}),
            httpx.Response(200, json={"node_pool": _pool(count=5)}),
        ]
    )
    config = {**_CONFIG, "node_pool": [{"name": "default", "size": "s-2vcpu-2gb", "node_count": 5}]}

    result = await engine.update(KubernetesClusterResource(), _CLUSTER, created.state, config, combined_client)

    sent = json.loads(put.calls.last.request.content)
    assert sent["count"] == 5
    assert sent["tags"] == [DEFAULT_NODE_POOL_TAG]
    assert pool_poll.call_count == 2
    assert result.state["node_pool"][0]["node_count"] == 5


@pytest.mark.asyncio
async def test_cluster_delete(mock_http, combined_client):
    delete = mock_http.delete(f"{_CLUSTERS}/{_CLUSTER}").mock(return_value=httpx.Response(204))

    result = await engine.delete(KubernetesClusterResource(), _CLUSTER, {"name": "prod"}, combined_client)

    assert result.gone
    assert delete.call_count == 1


# ---------------------------------------------------------------------------
# Node pool
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_autoscaled_node_pool_does_not_echo_node_count(mock_http, combined_client):
    create = mock_http.post(f"{_CLUSTERS}/{_CLUSTER}/node_pools").mock(
        return_value=httpx.Response(201, json={"node_pool": _pool("pool-2", "workers", count=2, running=0, tags=())})
    )
    mock_http.get(f"{_CLUSTERS}/{_CLUSTER}/node_pools/pool-2").mock(
        return_value=httpx.Response(
            200, json={"node_pool": _pool("pool-2", "workers", count=2, tags=(), auto_scale=True, min_nodes=1, max_nodes=3)}
        )
    )
    config = {
        "cluster_id": _CLUSTER,
        "name": "workers",
        "size": "s-2vcpu-2gb",
        "auto_scale": True,
        "min_nodes": 1,
        "max_nodes": 3,
    }

    result = await engine.create(KubernetesNodePoolResource(), config, combined_client)

    assert json.loads(create.calls.last.request.content) == {
        "name": "workers",
        "size": "s-2vcpu-2gb",
        "tags": [],
        "labels": {},
        "auto_scale": True,
        "taints": [],
        "min_nodes": 1,
        "max_nodes": 3,
    }
    assert result.handle == "pool-2"
    assert result.state["node_count"] == 0
    assert result.state["actual_node_count"] == 2
    assert result.state["tags"] == []


@pytest.mark.asyncio
async def test_default_pool_cannot_be_imported_as_node_pool(mock_http, combined_client):
    mock_http.get(_CLUSTERS).mock(
        return_value=httpx.Response(
            200,
            json={"kubernetes_clusters": [json.loads(_cluster().content)["kubernetes_cluster"]], "links": {}},
        )
    )

    with pytest.raises(ProviderError, match="default node pool tag"):
        await engine.import_resource(KubernetesNodePoolResource(), _POOL, combined_client)
