"""
tests/integration/test_loadbalancer_certificates.py

Integration tests for load balancer forwarding rules that reference a
Let's Encrypt certificate by name. A renewal rotates the certificate ID
upstream; the stored forwarding rules must not change.
All DigitalOcean API calls are intercepted by respx.
"""

from __future__ import annotations

import json

import httpx
import pytest

from resources import engine
from resources.loadbalancer import LoadBalancerResource

_API = "https://api.digitalocean.com"
_LB = "4de7ac8b-495b-4884-9a69-1050c6793cd6"


def _certificate(cert_id, name="le-cert"):
    return {"id": cert_id, "name": name, "type": "lets_encrypt", "state": "verified", "dns_names": ["example.com"]}


def _load_balancer(cert_id, **kwargs):
    return {
        "id": _LB,
        "name": kwargs.get("name", "web-lb"),
        "ip": "203.0.113.10",
        "status": kwargs.get("status", "active"),
        "size": "lb-small",
        "size_unit": 1,
        "region": {"slug": "nyc3"},
        "vpc_uuid": "vpc-1",
        "droplet_ids": [3164444, 3164445],
        "tag": "",
        "tags": [],
        "redirect_http_to_https": True,
        "forwarding_rules": [
            {
                "entry_protocol": "https",
                "entry_port": 443,
                "target_protocol": "http",
                "target_port": 80,
                "certificate_id": cert_id,
                "tls_passthrough": False,
            }
        ],
        "health_check": {
            "protocol": "http",
            "port": 80,
            "path": "/",
            "check_interval_seconds": 10,
            "response_timeout_seconds": 5,
            "healthy_threshold": 5,
            "unhealthy_threshold": 3,
        },
        "sticky_sessions": {"type": "none"},
    }


def _config(**kwargs):
    config = {
        "name": "web-lb",
        "region": "nyc3",
        "droplet_ids": [3164444, 3164445],
        "redirect_http_to_https": True,
        "forwarding_rule": [
            {
                "entry_protocol": "https",
                "entry_port": 443,
                "target_protocol": "http",
                "target_port": 80,
                "certificate_name": "le-cert",
            }
        ],
    }
    config.update(kwargs)
    return config


def _mock_certificates(mock_http, cert_id):
    mock_http.get(f"{_API}/v2/certificates").mock(
        return_value=httpx.Response(200, json={"certificates": [_certificate(cert_id)], "links": {}})
    )
    mock_http.get(f"{_API}/v2/certificates/{cert_id}").mock(
        return_value=httpx.Response(200, json={"certificate": _certificate(cert_id)})
    )


@pytest.mark.asyncio
async def test_create_resolves_certificate_name_to_current_id(mock_http, combined_client):
    _mock_certificates(mock_http, "cert-old")
    create = mock_http.post(f"{_API}/v2/load_balancers").mock(
        return_value=httpx.Response(202, json={"load_balancer": _load_balancer("cert-old", status="new")})
    )
    mock_http.get(f"{_API}/v2/load_balancers/{_LB}").mock(
        side_effect=[
            httpx.Response(200, json={"load_balancer": _load_balancer("cert-old", status="new")}),
            httpx.Response(200, json={"load_balancer": _load_balancer("cert-old")}),
            httpx.Response(200, json={"load_balancer": _load_balancer("cert-old")}),
        ]
    )

    result = await engine.create(LoadBalancerResource(), _config(), combined_client)

    sent = json.loads(create.calls.last.request.content)
    assert sent["forwarding_rules"][0]["certificate_id"] == "cert-old"
    assert sent["droplet_ids"] == [3164444, 3164445]
    assert result.handle == _LB
    assert result.state["status"] == "active"
    assert result.state["forwarding_rule"][0]["certificate_name"] == "le-cert"


@pytest.mark.asyncio
async def test_certificate_renewal_produces_no_diff(mock_http, combined_client):
    _mock_certificates(mock_http, "cert-new")
    mock_http.get(f"{_API}/v2/load_balancers/{_LB}").mock(
        return_value=httpx.Response(200, json={"load_balancer": _load_balancer("cert-new")})
    )
    prior = {
        **_config(),
        "forwarding_rule": [
            {
                "entry_protocol": "https",
                "entry_port": 443,
                "target_protocol": "http",
                "target_port": 80,
                "certificate_name": "le-cert",
                "certificate_id": "le-cert",
                "tls_passthrough": False,
            }
        ],
    }

    refreshed = await engine.read(LoadBalancerResource(), _LB, prior, combined_client)
    plan = engine.plan(LoadBalancerResource(), refreshed.state, _config())

    assert refreshed.state["forwarding_rule"][0]["certificate_name"] == "le-cert"
    assert plan.empty, plan.changes


@pytest.mark.asyncio
async def test_update_sends_renewed_certificate_id(mock_http, combined_client):
    _mock_certificates(mock_http, "cert-new")
    update = mock_http.put(f"{_API}/v2/load_balancers/{_LB}").mock(
        return_value=httpx.Response(200, json={"load_balancer": _load_balancer("cert-new", name="web-lb-2")})
    )
    mock_http.get(f"{_API}/v2/load_balancers/{_LB}").mock(
        return_value=httpx.Response(200, json={"load_balancer": _load_balancer("cert-new", name="web-lb-2")})
    )
    prior = {**_config(), "size": "lb-small", "status": "active"}

    result = await engine.update(LoadBalancerResource(), _LB, prior, _config(name="web-lb-2"), combined_client)

    sent = json.loads(update.calls.last.request.content)
    assert sent["name"] == "web-lb-2"
    assert sent["forwarding_rules"][0]["certificate_id"] == "cert-new"
    assert sent["size"] == "lb-small"
    assert result.state["name"] == "web-lb-2"


@pytest.mark.asyncio
async def test_missing_certificate_keeps_its_reference(mock_http, combined_client):
    mock_http.get(f"{_API}/v2/certificates/cert-gone").mock(
        return_value=httpx.Response(404, json={"id": "not_found", "message": "not found"})
    )
    mock_http.get(f"{_API}/v2/load_balancers/{_LB}").mock(
        return_value=httpx.Response(200, json={"load_balancer": _load_balancer("cert-gone")})
    )

    result = await engine.read(LoadBalancerResource(), _LB, _config(), combined_client)

    assert result.state["forwarding_rule"][0]["certificate_id"] == "cert-gone"
