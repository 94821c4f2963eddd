"""
services/certificate_resolver.py

Responsibility: Resolves a certificate reference that may be either a name
or an ID. Names are tried first because Let's Encrypt certificates get a new
ID on every renewal while their name stays the same.
Does NOT: create, renew or delete certificates.
"""

from __future__ import annotations

import logging
from typing import Any

from doapi.api_client import DigitalOceanClient
from exceptions import ProviderError
from services.pagination import list_path

logger = logging.getLogger(__name__)


async def find_certificate_by_name(api: DigitalOceanClient, name: str) -> dict[str, Any] | None:
    """
    Lists every certificate and returns the one called ``name``.

    Args:
        api: REST client.
        name: Certificate name.

    Returns:
        The certificate payload, or None when no certificate has that name.

    Raises:
        ProviderError: If more than one certificate carries the name.
    """
    certificates = await list_path(api, "/v2/certificates", "certificates")
    matches = [c for c in certificates if c.get("name") == name]
    if len(matches) > 1:
        raise ProviderError(f"Found {len(matches)} certificates named {name!r}, expected one")
    return matches[0] if matches else None


async def resolve_certificate(api: DigitalOceanClient, ref: str) -> dict[str, Any]:
    """
    Returns the certificate identified by ``ref`` (name first, then ID).

    Args:
        api: REST client.
        ref: Certificate name or ID.

    Returns:
        The certificate payload.

    Raises:
        ApiError: 404 when neither a name nor an ID matches.
    """
    cert = await find_certificate_by_name(api, ref)
    if cert is not None:
        return cert
    logger.debug("No certificate named %r, trying it as an ID", ref)
    body, _ = await api.get(f"/v2/certificates/{ref}")
    return body["certificate"]
