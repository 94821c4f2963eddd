"""
tests/integration/test_data_sources.py

Integration tests for list and single-object data sources, read through
provider.read_data_source. DigitalOcean API calls are intercepted by respx;
Spaces calls go to the MagicMock S3 client.
"""

from __future__ import annotations

import httpx
import pytest

import provider
from exceptions import DataListError, ProviderError, ValidationError

_API = "https://api.digitalocean.com"


def _droplet(droplet_id, name, region, vcpus, **kwargs):
    return {
        "id": droplet_id,
        "name": name,
        "memory": 1024 * vcpus,
        "vcpus": vcpus,
        "disk": 25,
        "locked": False,
        "status": "active",
        "created_at": "2020-07-21T18:37:44Z",
        "features": kwargs.get("features", []),
        "image": {"id": 6918990, "slug": "ubuntu-22-04-x64"},
        "size": {"price_monthly": 6.0 * vcpus, "price_hourly": 0.00893 * vcpus},
        "size_slug": f"s-{vcpus}vcpu-{vcpus}gb",
        "networks": {"v4": [{"ip_address": f"203.0.113.{droplet_id}", "type": "public"}], "v6": []},
        "region": {"slug": region},
        "tags": kwargs.get("tags", []),
        "volume_ids": [],
        "vpc_uuid": "vpc-1",
    }


def _page(key, items):
    return httpx.Response(200, json={key: items, "links": {}, "meta": {"total": len(items)}})


# ---------------------------------------------------------------------------
# Lists
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_droplets_filtered_by_region_and_sorted_by_vcpus(mock_http, combined_client):
    mock_http.get(f"{_API}/v2/droplets").mock(
        return_value=_page(
            "droplets",
            [
                _droplet(1, "web-1", "nyc3", 1),
                _droplet(2, "web-2", "nyc3", 4),
                _droplet(3, "web-3", "sfo3", 8),
                _droplet(4, "web-4", "NYC3", 2),
            ],
        )
    )
    query = {
        "filter": [{"key": "region", "values": ["nyc3"]}],
        "sort": [{"key": "vcpus", "direction": "desc"}],
    }

    state = await provider.read_data_source("digitalocean_droplets", query, combined_client)

    assert [d["name"] for d in state["droplets"]] == ["web-2", "web-4", "web-1"]
    assert state["droplets"][0]["ipv4_address"] == "203.0.113.2"
    assert state["droplets"][0]["urn"] == "do:droplet:2"
    assert state["filter"] == query["filter"]
    assert state["id"]


@pytest.mark.asyncio
async def test_sizes_filtered_by_availability_and_vcpus(mock_http, combined_client):
    mock_http.get(f"{_API}/v2/sizes").mock(
        return_value=_page(
            "sizes",
            [
                {"slug": "s-2vcpu-4gb", "available": True, "vcpus": 2, "memory": 4096, "price_monthly": 24, "regions": ["nyc3"]},
                {"slug": "c-2", "available": True, "vcpus": 2, "memory": 4096, "price_monthly": 42, "regions": ["nyc3"]},
                {"slug": "s-2vcpu-2gb", "available": True, "vcpus": 2, "memory": 2048, "price_monthly": 18, "regions": ["sfo3"]},
                {"slug": "s-2vcpu-old", "available": False, "vcpus": 2, "memory": 2048, "price_monthly": 15},
                {"slug": "s-1vcpu-1gb", "available": True, "vcpus": 1, "memory": 1024, "price_monthly": 6},
            ],
        )
    )
    query = {
        "filter": [
            {"key": "available", "values": ["true"]},
            {"key": "vcpus", "values": ["2"]},
        ],
        "sort": [{"key": "price_monthly", "direction": "asc"}],
    }

    state = await provider.read_data_source("digitalocean_sizes", query, combined_client)

    assert [s["slug"] for s in state["sizes"]] == ["s-2vcpu-2gb", "s-2vcpu-4gb", "c-2"]
    assert state["sizes"][0]["price_monthly"] == 18.0


@pytest.mark.asyncio
async def test_sizes_reject_filtering_on_unknown_field(combined_client):
    with pytest.raises((ValidationError, DataListError)):
        await provider.read_data_source(
            "digitalocean_sizes", {"filter": [{"key": "colour", "values": ["red"]}]}, combined_client
        )


@pytest.mark.asyncio
async def test_records_list_echoes_domain(mock_http, combined_client):
    mock_http.get(f"{_API}/v2/domains/example.com/records").mock(
        return_value=_page(
            "domain_records",
            [
                {"id": 1, "type": "A", "name": "@", "data": "192.0.2.1", "ttl": 1800},
                {"id": 2, "type": "MX", "name": "@", "data": "mail.example.com", "priority": 10, "ttl": 1800},
                {"id": 3, "type": "MX", "name": "@", "data": "backup", "priority": 20, "ttl": 1800},
            ],
        )
    )
    query = {"domain": "example.com", "filter": [{"key": "type", "values": ["mx"]}]}

    state = await provider.read_data_source("digitalocean_records", query, combined_client)

    assert state["domain"] == "example.com"
    assert [r["value"] for r in state["records"]] == ["mail.example.com.", "backup."]
    assert state["records"][0]["fqdn"] == "example.com"


@pytest.mark.asyncio
async def test_spaces_buckets_across_regions(combined_client, s3_client):
    s3_client.list_buckets.return_value = {"Buckets": [{"Name": "assets"}]}

    state = await provider.read_data_source(
        "digitalocean_spaces_buckets", {"filter": [{"key": "region", "values": ["fra1"]}]}, combined_client
    )

    assert state["buckets"] == [
        {
            "name": "assets",
            "urn": "do:space:assets",
            "region": "fra1",
            "bucket_domain_name": "assets.fra1.digitaloceanspaces.com",
            "endpoint": "fra1.digitaloceanspaces.com",
        }
    ]


# ---------------------------------------------------------------------------
# Single-object lookups
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_droplet_lookup_requires_exactly_one_selector(combined_client):
    with pytest.raises(ValidationError, match="exactly one of"):
        await provider.read_data_source("digitalocean_droplet", {"id": 1, "name": "web-1"}, combined_client)
    with pytest.raises(ValidationError, match="exactly one of"):
        await provider.read_data_source("digitalocean_droplet", {}, combined_client)


@pytest.mark.asyncio
async def test_droplet_lookup_by_name(mock_http, combined_client):
    mock_http.get(f"{_API}/v2/droplets").mock(
        return_value=_page("droplets", [_droplet(1, "web-1", "nyc3", 1), _droplet(2, "web-2", "nyc3", 2)])
    )

    state = await provider.read_data_source("digitalocean_droplet", {"name": "web-2"}, combined_client)

    assert state["id"] == "2"
    assert state["vcpus"] == 2
    assert state["image"] == "ubuntu-22-04-x64"


@pytest.mark.asyncio
async def test_droplet_lookup_by_tag_must_be_unique(mock_http, combined_client):
    route = mock_http.get(f"{_API}/v2/droplets").mock(
        return_value=_page("droplets", [_droplet(1, "web-1", "nyc3", 1), _droplet(2, "web-2", "nyc3", 2)])
    )

    with pytest.raises(ProviderError, match="too many"):
        await provider.read_data_source("digitalocean_droplet", {"tag": "web"}, combined_client)

    assert route.calls.last.request.url.params["tag_name"] == "web"


@pytest.mark.asyncio
async def test_project_lookup_defaults_to_default_project(mock_http, combined_client):
    mock_http.get(f"{_API}/v2/projects/default").mock(
        return_value=httpx.Response(
            200, json={"project": {"id": "proj-default", "name": "Default", "purpose": "Other: Testing", "is_default": True}}
        )
    )
    mock_http.get(f"{_API}/v2/projects/proj-default/resources").mock(
        return_value=_page("resources", [{"urn": "do:droplet:1"}])
    )

    state = await provider.read_data_source("digitalocean_project", {}, combined_client)

    assert state["id"] == "proj-default"
    assert state["is_default"] is True
    assert state["purpose"] == "Testing"
    assert state["resources"] == ["do:droplet:1"]


@pytest.mark.asyncio
async def test_certificate_lookup_by_name(mock_http, combined_client):
    mock_http.get(f"{_API}/v2/certificates").mock(
        return_value=_page(
            "certificates",
            [{"id": "cert-2", "name": "le-cert", "type": "lets_encrypt", "state": "verified", "dns_names": ["example.com"]}],
        )
    )

    state = await provider.read_data_source("digitalocean_certificate", {"name": "le-cert"}, combined_client)

    assert state["id"] == "le-cert"
    assert state["uuid"] == "cert-2"
    assert state["domains"] == ["example.com"]


@pytest.mark.asyncio
async def test_bucket_objects_page_until_max_keys(combined_client, s3_client):
    first = [{"Key": f"k{i:04d}"} for i in range(1000)]
    second = [{"Key": f"k{i:04d}"} for i in range(1000, 1500)]
    s3_client.list_objects.side_effect = [
        {"Contents": first, "IsTruncated": True},
        {"Contents": second, "IsTruncated": True},
    ]

    state = await provider.read_data_source(
        "digitalocean_spaces_bucket_objects",
        {"bucket": "assets", "region": "nyc3", "max_keys": 1500},
        combined_client,
    )

    assert len(state["keys"]) == 1500
    calls = s3_client.list_objects.call_args_list
    assert calls[0].kwargs == {"Bucket": "assets", "MaxKeys": 1000}
    assert calls[1].kwargs == {"Bucket": "assets", "MaxKeys": 500, "Marker": "k0999"}


def test_unknown_data_source_is_rejected():
    with pytest.raises(ProviderError, match="unknown data source"):
        provider.data_source("digitalocean_nothing")
