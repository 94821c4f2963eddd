"""
tests/unit/test_certificate_resolver.py

Unit tests for services/certificate_resolver.py.
All DigitalOcean API calls are intercepted by respx; no real network traffic.
"""

from __future__ import annotations

import httpx
import pytest

from exceptions import ApiError, ProviderError
from services.certificate_resolver import find_certificate_by_name, resolve_certificate

_API = "https://api.digitalocean.com"


def _cert(**kwargs):
    return {
        "id": kwargs.get("id", "cert-id-1"),
        "name": kwargs.get("name", "le-cert"),
        "type": kwargs.get("type", "lets_encrypt"),
        "state": kwargs.get("state", "verified"),
        "dns_names": kwargs.get("dns_names", ["example.com"]),
    }


def _listing(mock_http, *certs):
    return mock_http.get(f"{_API}/v2/certificates").mock(
        return_value=httpx.Response(200, json={"certificates": list(certs), "links": {}})
    )


@pytest.mark.asyncio
async def test_find_by_name_returns_matching_certificate(mock_http, combined_client):
    _listing(mock_http, _cert(name="other", id="x"), _cert())

    cert = await find_certificate_by_name(combined_client.api_client(), "le-cert")

    assert cert["id"] == "cert-id-1"


@pytest.mark.asyncio
async def test_find_by_name_returns_none_when_absent(mock_http, combined_client):
    _listing(mock_http, _cert(name="other"))

    assert await find_certificate_by_name(combined_client.api_client(), "le-cert") is None


@pytest.mark.asyncio
async def test_duplicate_names_are_an_error(mock_http, combined_client):
    _listing(mock_http, _cert(id="a"), _cert(id="b"))

    with pytest.raises(ProviderError, match="Found 2 certificates"):
        await find_certificate_by_name(combined_client.api_client(), "le-cert")


@pytest.mark.asyncio
async def test_resolve_prefers_name_over_id(mock_http, combined_client):
    _listing(mock_http, _cert(id="renewed-id"))
    by_id = mock_http.get(f"{_API}/v2/certificates/le-cert")

    cert = await resolve_certificate(combined_client.api_client(), "le-cert")

    assert cert["id"] == "renewed-id"
    assert not by_id.called


@pytest.mark.asyncio
async def test_resolve_falls_back_to_id(mock_http, combined_client):
    _listing(mock_http, _cert(name="other"))
    mock_http.get(f"{_API}/v2/certificates/cert-id-9").mock(
        return_value=httpx.Response(200, json={"certificate": _cert(id="cert-id-9", name="custom")})
    )

    cert = await resolve_certificate(combined_client.api_client(), "cert-id-9")

    assert cert["name"] == "custom"


@pytest.mark.asyncio
async def test_resolve_unknown_reference_raises_not_found(mock_http, combined_client):
    _listing(mock_http)
    mock_http.get(f"{_API}/v2/certificates/missing").mock(
        return_value=httpx.Response(404, json={"id": "not_found", "message": "not found"})
    )

    with pytest.raises(ApiError) as exc_info:
        await resolve_certificate(combined_client.api_client(), "missing")

    assert exc_info.value.status_code == 404
