"""
services/tags.py

Responsibility: Tag attribute declaration and tag reconciliation for taggable
resources (create missing tags, tag and untag resources by URN-style
resource descriptors).
Does NOT: manage the digitalocean_tag resource itself.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from doapi.api_client import DigitalOceanClient
from schema.attributes import Attribute, AttrType
from schema.normalizers import hash_string_ignore_case
from services.error_classifier import is_api_error

logger = logging.getLogger(__name__)

TAG_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9:\-_]{1,255}$")


def validate_tag(value: str, key: str) -> list[str]:
    if TAG_NAME_PATTERN.match(value):
        return []
    return [
        f"{key}: tags may contain lowercase letters, numbers, colons, dashes, and underscores; "
        f"there is a limit of 255 characters per tag, got {value!r}"
    ]


def tags_attribute() -> Attribute:
    return Attribute(
        AttrType.SET,
        optional=True,
        elem=AttrType.STRING,
        validate=validate_tag,
        set_hash=hash_string_ignore_case,
    )


async def set_tags(
    api: DigitalOceanClient,
    resource_id: str,
    resource_type: str,
    old: Iterable[str],
    new: Iterable[str],
) -> None:
    """
    Moves a resource from the ``old`` tag set to the ``new`` one.

    Removed tags are detached first; added tags are created if missing and
    then attached.

    Args:
        api: REST client.
        resource_id: Upstream ID of the tagged resource.
        resource_type: Resource type as the tags API spells it ("droplet",
            "volume", "database", ...).
        old: Tags currently on the resource.
        new: Tags the resource must carry.
    """
    old_by_key = {t.lower(): t for t in old}
    new_by_key = {t.lower(): t for t in new}
    resources = [{"resource_id": str(resource_id), "resource_type": resource_type}]

    for key in sorted(old_by_key.keys() - new_by_key.keys()):
        name = old_by_key[key]
        logger.debug("Untagging %s %s from %s", resource_type, resource_id, name)
        await api.delete(f"/v2/tags/{name}/resources", {"resources": resources})

    for key in sorted(new_by_key.keys() - old_by_key.keys()):
        name = new_by_key[key]
        await ensure_tag(api, name)
        logger.debug("Tagging %s %s with %s", resource_type, resource_id, name)
        await api.post(f"/v2/tags/{name}/resources", {"resources": resources})


async def ensure_tag(api: DigitalOceanClient, name: str) -> None:
    try:
        await api.post("/v2/tags", {"name": name})
    except Exception as exc:
        if is_api_error(exc, 422, "already exists"):
            return
        raise
