"""
config.py

Responsibility: Reads provider-level settings (token, endpoints, Spaces
credentials, retry tuning) from explicit overrides or environment variables
and assembles the CombinedClient handed to every resource operation.
Does NOT: call the API, poll actions, or hold any resource state.
"""

from __future__ import annotations

import logging
import os
import string
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import boto3
import httpx

from doapi.api_client import DigitalOceanClient
from doapi.spaces_client import SpacesClient
from exceptions import ConfigError, CredentialsMissingError
from services.action_waiter import PollSettings

logger = logging.getLogger(__name__)

PROVIDER_VERSION = "2.0.0"

DEFAULT_API_ENDPOINT = "https://api.digitalocean.com"
DEFAULT_SPACES_ENDPOINT = "https://{Region}.digitaloceanspaces.com"

# Older configurations spell the placeholder as a Go template.
_LEGACY_REGION_PLACEHOLDER = "{{.Region}}"

# Spaces ignores the signing region but boto3 requires one.
_SPACES_SIGNING_REGION = "us-east-1"

S3ClientFactory = Callable[[str, str, str, str], Any]


def _env(*names: str, default: str | None = None) -> str | None:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return default


def normalize_spaces_template(template: str) -> str:
    """
    Validates a Spaces endpoint template and returns it in ``{Region}`` form.

    Args:
        template: e.g. "https://{Region}.digitaloceanspaces.com".

    Returns:
        The template with any legacy ``{{.Region}}`` placeholder rewritten.

    Raises:
        ConfigError: If the template has placeholders other than {Region}
            or unbalanced braces.
    """
    template = template.replace(_LEGACY_REGION_PLACEHOLDER, "{Region}")
    try:
        fields = {name for _, name, _, _ in string.Formatter().parse(template) if name is not None}
    except ValueError as exc:
        raise ConfigError(f"Invalid spaces_endpoint template {template!r}: {exc}") from exc
    unknown = fields - {"Region"}
    if unknown:
        raise ConfigError(
            f"Invalid spaces_endpoint template {template!r}: unknown placeholder(s) {sorted(unknown)}"
        )
    return template


def _default_s3_factory(region: str, endpoint: str, access_id: str, secret_key: str) -> Any:
    session = boto3.session.Session()
    return session.client(
        "s3",
        region_name=_SPACES_SIGNING_REGION,
        endpoint_url=endpoint,
        aws_access_key_id=access_id,
        aws_secret_access_key=secret_key,
    )


# ---------------------------------------------------------------------------
# Provider configuration
# ---------------------------------------------------------------------------


@dataclass
class ProviderConfig:
    """
    Provider-level inputs. Every field may be overridden from the environment.
    """

    # Bearer credential for the REST API
    token: str

    # REST base URL (no /v2 suffix)
    api_endpoint: str = DEFAULT_API_ENDPOINT

    # S3 endpoint template; {Region} is replaced with the lowercased region slug
    spaces_endpoint: str = DEFAULT_SPACES_ENDPOINT

    # HMAC credentials for Spaces; optional unless a Spaces resource is used
    spaces_access_id: str = ""
    spaces_secret_key: str = ""

    # Client-side request rate; 0 means unlimited
    requests_per_second: float = 0.0

    # Retry tuning for 429, 5xx and transport failures
    http_retry_max: int = 4
    http_retry_wait_min: float = 1.0
    http_retry_wait_max: float = 30.0

    # Version of the host runtime, folded into the User-Agent
    host_version: str = "dev"

    def __post_init__(self) -> None:
        if not self.token:
            raise ConfigError(
                "A DigitalOcean API token is required (set token or DIGITALOCEAN_TOKEN)"
            )
        url = httpx.URL(self.api_endpoint)
        if url.scheme not in ("http", "https") or not url.host:
            raise ConfigError(f"api_endpoint must be an http(s) URL, got {self.api_endpoint!r}")
        self.spaces_endpoint = normalize_spaces_template(self.spaces_endpoint)

    @classmethod
    def from_env(cls, **overrides: Any) -> ProviderConfig:
        """
        Builds a config from explicit overrides, falling back to environment
        variables and then to the documented defaults.

        Args:
            **overrides: Any ProviderConfig field; None values are ignored.

        Returns:
            A validated ProviderConfig.

        Raises:
            ConfigError: If the resulting configuration is invalid.
        """
        values: dict[str, Any] = {
            "token": _env("DIGITALOCEAN_TOKEN", "DIGITALOCEAN_ACCESS_TOKEN", default=""),
            "api_endpoint": _env("DIGITALOCEAN_API_URL", default=DEFAULT_API_ENDPOINT),
            "spaces_endpoint": _env("SPACES_ENDPOINT_URL", default=DEFAULT_SPACES_ENDPOINT),
            "spaces_access_id": _env("SPACES_ACCESS_KEY_ID", default=""),
            "spaces_secret_key": _env("SPACES_SECRET_ACCESS_KEY", default=""),
            "requests_per_second": float(_env("DIGITALOCEAN_REQUESTS_PER_SECOND", default="0")),
            "http_retry_max": int(_env("DIGITALOCEAN_HTTP_RETRY_MAX", default="4")),
            "http_retry_wait_min": float(_env("DIGITALOCEAN_HTTP_RETRY_WAIT_MIN", default="1")),
            "http_retry_wait_max": float(_env("DIGITALOCEAN_HTTP_RETRY_WAIT_MAX", default="30")),
            "host_version": _env("DIGITALOCEAN_HOST_VERSION", default="dev"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def user_agent(self) -> str:
        return f"digitalocean-provider/{PROVIDER_VERSION} (host {self.host_version})"

    def client(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        poll: PollSettings | None = None,
        s3_factory: S3ClientFactory | None = None,
    ) -> CombinedClient:
        """
        Assembles the combined REST + Spaces client.

        Args:
            http_client: Optional shared httpx.AsyncClient; one is created
                (and owned) when omitted.
            poll: Polling tunables for the action waiter.
            s3_factory: Builds a boto3 S3 client from (region, endpoint,
                access_id, secret_key); defaults to a boto3 session client.

        Returns:
            A CombinedClient.
        """
        return CombinedClient(
            self,
            http_client=http_client,
            poll=poll or PollSettings(),
            s3_factory=s3_factory or _default_s3_factory,
        )


# ---------------------------------------------------------------------------
# Combined client
# ---------------------------------------------------------------------------


@dataclass
class CombinedClient:
    """
    Handle passed as ``meta`` to every resource and data-source operation.

    Exposes the REST client and lazily constructed, region-keyed Spaces
    clients. Instances are immutable after construction apart from the
    Spaces cache.

    Collaborators:
        - DigitalOceanClient: REST transport
        - SpacesClient: S3 transport, one per region
    """

    config: ProviderConfig
    http_client: httpx.AsyncClient | None = None
    poll: PollSettings = field(default_factory=PollSettings)
    s3_factory: S3ClientFactory = _default_s3_factory
    _api: DigitalOceanClient | None = field(default=None, init=False, repr=False)
    _spaces: dict[str, SpacesClient] = field(default_factory=dict, init=False, repr=False)
    _owns_http: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(timeout=httpx.Timeout(60.0))
            self._owns_http = True
        self._api = DigitalOceanClient(
            self.http_client,
            self.config.token,
            base_url=self.config.api_endpoint,
            user_agent=self.config.user_agent,
            requests_per_second=self.config.requests_per_second,
            retry_max=self.config.http_retry_max,
            retry_wait_min=self.config.http_retry_wait_min,
            retry_wait_max=self.config.http_retry_wait_max,
        )

    def api_client(self) -> DigitalOceanClient:
        return self._api

    def spaces_endpoint(self, region: str) -> str:
        return self.config.spaces_endpoint.format(Region=region.lower())

    def spaces_client(self, region: str) -> SpacesClient:
        """
        Returns the Spaces client for a region, constructing it on first use.

        Args:
            region: Region slug in any case, e.g. "NYC3".

        Returns:
            The cached SpacesClient for the lowercased region.

        Raises:
            CredentialsMissingError: If the access ID or secret key is unset.
        """
        if not self.config.spaces_access_id or not self.config.spaces_secret_key:
            raise CredentialsMissingError(
                "Spaces credentials are not configured: set spaces_access_id and spaces_secret_key"
            )
        slug = region.lower()
        cached = self._spaces.get(slug)
        if cached is not None:
            return cached
        endpoint = self.spaces_endpoint(slug)
        logger.debug("Creating Spaces client for region %s at %s", slug, endpoint)
        s3 = self.s3_factory(
            slug, endpoint, self.config.spaces_access_id, self.config.spaces_secret_key
        )
        client = SpacesClient(s3, slug)
        self._spaces[slug] = client
        return client

    async def aclose(self) -> None:
        if self._owns_http and self.http_client is not None:
            await self.http_client.aclose()
