"""
tests/conftest.py

Shared pytest fixtures used by both unit and integration test suites.
All HTTP fixtures use respx.mock and all Spaces clients are MagicMocks, so
no real network calls are made in any test.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import httpx
import pytest
import respx

from config import CombinedClient, ProviderConfig
from services.action_waiter import PollSettings

API = "https://api.digitalocean.com"
TOKEN = "test-token"


# ---------------------------------------------------------------------------
# HTTP mock fixture: intercepts all httpx calls
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_http():
    """
    Yields a respx router that intercepts all httpx.AsyncClient calls.

    No real network traffic is allowed during tests. Use this fixture
    wherever a client would normally make an outbound request.
    """
    with respx.mock(assert_all_called=False) as router:
        yield router


# ---------------------------------------------------------------------------
# Shared httpx.AsyncClient fixture
# ---------------------------------------------------------------------------


@pytest.fixture()
async def http_client():
    """
    Yields a real httpx.AsyncClient instance for use in tests.

    Pair with the mock_http fixture so all requests are intercepted by respx.
    The client is closed after each test.
    """
    async with httpx.AsyncClient() as client:
        yield client


# ---------------------------------------------------------------------------
# Provider fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def s3_client():
    """A MagicMock standing in for a boto3 S3 client; every region shares it."""
    return MagicMock(name="s3")


@pytest.fixture()
def provider_config():
    return ProviderConfig(
        token=TOKEN,
        spaces_access_id="spaces-id",
        spaces_secret_key="spaces-secret",
        http_retry_max=1,
        http_retry_wait_min=0.0,
        http_retry_wait_max=0.0,
    )


@pytest.fixture()
def combined_client(provider_config, http_client, s3_client):
    """
    A CombinedClient wired to the respx-backed http_client, with zero poll
    delays so waiters resolve immediately.
    """
    return CombinedClient(
        provider_config,
        http_client=http_client,
        poll=PollSettings(delay=0, min_timeout=0, timeout=5, not_found_checks=3),
        s3_factory=lambda region, endpoint, access_id, secret_key: s3_client,
    )
