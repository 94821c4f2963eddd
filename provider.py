"""
provider.py

Responsibility: The provider's entry point for the host runtime. Registers
every resource kind and data source under its type name and builds the
CombinedClient from provider settings.
Does NOT: order operations or persist state; the host does both.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

from config import CombinedClient, ProviderConfig
from datasources.catalog import images_source, regions_source, sizes_source, ssh_keys_source, tags_source
from datasources.certificate import CertificateDataSource
from datasources.domains import DomainDataSource, RecordDataSource, domains_source, records_source
from datasources.droplets import DropletDataSource, droplets_source
from datasources.projects import ProjectDataSource, projects_source
from datasources.spaces import (
    SpacesBucketDataSource,
    SpacesBucketObjectDataSource,
    SpacesBucketObjectsDataSource,
    buckets_source,
)
from exceptions import ProviderError
from resources.base import Resource
from resources.cdn import CDNResource
from resources.certificate import CertificateResource
from resources.database import (
    DatabaseClusterResource,
    DatabaseConnectionPoolResource,
    DatabaseDBResource,
    DatabaseFirewallResource,
    DatabaseReplicaResource,
    DatabaseUserResource,
)
from resources.domain import DomainResource, RecordResource
from resources.droplet import DropletResource
from resources.firewall import FirewallResource
from resources.kubernetes import KubernetesClusterResource, KubernetesNodePoolResource
from resources.loadbalancer import LoadBalancerResource
from resources.monitor_alert import MonitorAlertResource
from resources.project import ProjectResource, ProjectResourcesResource
from resources.registry import ContainerRegistryResource
from resources.reserved_ip import (
    FloatingIPAssignmentResource,
    FloatingIPResource,
    ReservedIPAssignmentResource,
    ReservedIPResource,
)
from resources.snapshot import DropletSnapshotResource, VolumeSnapshotResource
from resources.spaces import SpacesBucketPolicyResource, SpacesBucketResource
from resources.ssh_key import SSHKeyResource
from resources.tag import TagResource
from resources.volume import VolumeAttachmentResource, VolumeResource
from resources.vpc import VPCResource
from schema.attributes import Schema

logger = logging.getLogger(__name__)


class DataSourceLike(Protocol):
    schema: Schema

    async def read(self, query: Mapping[str, Any], meta: Any) -> dict[str, Any]: ...


def _by_kind(*resources: Resource) -> dict[str, Resource]:
    return {r.kind: r for r in resources}


RESOURCES: dict[str, Resource] = _by_kind(
    CDNResource(),
    CertificateResource(),
    ContainerRegistryResource(),
    DatabaseClusterResource(),
    DatabaseConnectionPoolResource(),
    DatabaseDBResource(),
    DatabaseFirewallResource(),
    DatabaseReplicaResource(),
    DatabaseUserResource(),
    DomainResource(),
    DropletResource(),
    DropletSnapshotResource(),
    FirewallResource(),
    FloatingIPAssignmentResource(),
    FloatingIPResource(),
    KubernetesClusterResource(),
    KubernetesNodePoolResource(),
    LoadBalancerResource(),
    MonitorAlertResource(),
    ProjectResource(),
    ProjectResourcesResource(),
    RecordResource(),
    ReservedIPAssignmentResource(),
    ReservedIPResource(),
    SpacesBucketPolicyResource(),
    SpacesBucketResource(),
    SSHKeyResource(),
    TagResource(),
    VolumeAttachmentResource(),
    VolumeResource(),
    VolumeSnapshotResource(),
    VPCResource(),
)

DATA_SOURCES: dict[str, DataSourceLike] = {
    # Lists with filter and sort
    "digitalocean_domains": domains_source(),
    "digitalocean_droplets": droplets_source(),
    "digitalocean_images": images_source(),
    "digitalocean_projects": projects_source(),
    "digitalocean_records": records_source(),
    "digitalocean_regions": regions_source(),
    "digitalocean_sizes": sizes_source(),
    "digitalocean_spaces_buckets": buckets_source(),
    "digitalocean_ssh_keys": ssh_keys_source(),
    "digitalocean_tags": tags_source(),
    # Single-object lookups
    "digitalocean_certificate": CertificateDataSource(),
    "digitalocean_domain": DomainDataSource(),
    "digitalocean_droplet": DropletDataSource(),
    "digitalocean_project": ProjectDataSource(),
    "digitalocean_record": RecordDataSource(),
    "digitalocean_spaces_bucket": SpacesBucketDataSource(),
    "digitalocean_spaces_bucket_object": SpacesBucketObjectDataSource(),
    "digitalocean_spaces_bucket_objects": SpacesBucketObjectsDataSource(),
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def configure(**settings: Any) -> CombinedClient:
    """
    Builds the CombinedClient from provider settings.

    Args:
        **settings: ProviderConfig fields; unset fields fall back to the
            environment and then to defaults.

    Raises:
        ConfigError: If the settings are invalid.
    """
    config = ProviderConfig.from_env(**settings)
    logger.info("Provider configured for %s", config.api_endpoint)
    return config.client()


def resource(kind: str) -> Resource:
    try:
        return RESOURCES[kind]
    except KeyError:
        raise ProviderError(f"unknown resource type {kind!r}") from None


def data_source(kind: str) -> DataSourceLike:
    try:
        return DATA_SOURCES[kind]
    except KeyError:
        raise ProviderError(f"unknown data source {kind!r}") from None


async def read_data_source(kind: str, query: Mapping[str, Any], meta: CombinedClient) -> dict[str, Any]:
    """Runs a data source and returns its state mapping."""
    return await data_source(kind).read(query, meta)
