"""
schema/normalizers.py

Responsibility: Pure value canonicalisation shared by resource schemas:
region slugs, DNS trailing-dot semantics, JSON policy equivalence, URN
spellings, forwarding-rule hashing, and the comparator objects built on them.
Does NOT: perform I/O or know about specific API endpoints.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Mapping
from typing import Any

from schema.attributes import HashedSet, hash_string

# Record types whose data names a host and is stored fully qualified
HOST_DATA_TYPES = frozenset({"CNAME", "MX", "NS", "SRV", "CAA"})

_URN_LEGACY_KINDS = {"reservedip": "floatingip"}
_URN_CURRENT_KINDS = {v: k for k, v in _URN_LEGACY_KINDS.items()}


# ---------------------------------------------------------------------------
# Regions
# ---------------------------------------------------------------------------


def normalize_region(value: str) -> str:
    return value.lower()


# ---------------------------------------------------------------------------
# DNS
# ---------------------------------------------------------------------------


def normalize_dns_data(record_type: str, data: str, tag: str = "") -> str:
    """
    Returns record data as stored in state after a read.

    Host-valued types (CNAME, MX, NS, SRV, CAA) get exactly one trailing dot,
    except for "@" and for CAA iodef records whose data is a URL.

    Args:
        record_type: DNS record type, e.g. "CNAME".
        data: Record data as returned by the API.
        tag: CAA tag, if any.
    """
    if record_type.upper() not in HOST_DATA_TYPES or data == "@" or tag == "iodef":
        return data
    return data.rstrip(".") + "."


def shorten_dns_name(value: str, domain: str) -> str:
    """
    Strips the zone suffix from a fully-qualified name.

    "www.example.com." against "example.com" becomes "www"; the zone apex
    becomes "@". Names outside the zone are returned unchanged.
    """
    bare = value.rstrip(".").lower()
    zone = domain.rstrip(".").lower()
    if not zone:
        return value
    if bare == zone:
        return "@"
    if bare.endswith("." + zone):
        return value.rstrip(".")[: -(len(zone) + 1)]
    return value


def dns_value_equal(old: str, new: str, domain: str) -> bool:
    """
    True if two record values name the same host within ``domain``.

    "x.example.com", "x.example.com." and the relative "x" are all equal for
    domain "example.com"; "@" equals the zone apex.
    """
    if old == new:
        return True
    zone = domain.rstrip(".").lower()

    def expand(value: str) -> str:
        if value == "@":
            return zone + "."
        if value.endswith("."):
            return value.lower()
        lowered = value.lower()
        if zone and (lowered == zone or lowered.endswith("." + zone)):
            return lowered + "."
        if zone:
            return f"{lowered}.{zone}."
        return lowered + "."

    return expand(old) == expand(new)


def dns_name_equal(old: str, new: str, domain: str) -> bool:
    """True if two record names address the same owner name within ``domain``."""
    if old == new:
        return True
    return construct_fqdn(old, domain).lower() == construct_fqdn(new, domain).lower()


def construct_fqdn(name: str, domain: str) -> str:
    """
    Builds a record's fully-qualified name without a trailing dot.

    "@" maps to the domain itself; a name already ending in "<domain>." is
    trimmed of the dot; anything else is joined to the domain.
    """
    if name == "@":
        return domain
    lowered = name.lower()
    if lowered.endswith(domain + "."):
        return lowered.rstrip(".")
    return f"{name}.{domain}"


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------


def normalize_json(value: str) -> str:
    """
    Canonical JSON text: sorted keys, no insignificant whitespace.

    Raises:
        ValueError: If value is not valid JSON.
    """
    if not value:
        return ""
    return json.dumps(json.loads(value), sort_keys=True, separators=(",", ":"))


def json_policy_equivalent(a: str, b: str) -> bool:
    """
    Semantic JSON equality, insensitive to key order and whitespace.
    Unparseable input is only equal to an identical string.
    """
    if a == b:
        return True
    try:
        return json.loads(a or "null") == json.loads(b or "null")
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# URNs
# ---------------------------------------------------------------------------


def build_urn(kind: str, identifier: Any) -> str:
    return f"do:{kind}:{identifier}"


def urn_remap(urn: str, *, legacy: bool) -> str:
    """
    Translates between the current and legacy spelling of a renamed kind.

    Args:
        urn: e.g. "do:reservedip:1.2.3.4".
        legacy: True to produce the legacy form ("do:floatingip:1.2.3.4"),
            False to produce the current one.
    """
    parts = urn.split(":", 2)
    if len(parts) != 3 or parts[0] != "do":
        return urn
    table = _URN_LEGACY_KINDS if legacy else _URN_CURRENT_KINDS
    kind = table.get(parts[1], parts[1])
    return f"do:{kind}:{parts[2]}"


def urns_equal(a: str, b: str) -> bool:
    return urn_remap(a, legacy=False) == urn_remap(b, legacy=False)


# ---------------------------------------------------------------------------
# Sets and hashes
# ---------------------------------------------------------------------------


def hash_string_ignore_case(value: str) -> int:
    return hash_string(value.lower())


def hash_forwarding_rule(rule: Mapping[str, Any]) -> int:
    """
    Stable hash of a load-balancer forwarding rule.

    The certificate reference hashes by name when one is present, so that a
    Let's Encrypt renewal (new ID, same name) leaves the hash unchanged.
    """
    cert_ref = rule.get("certificate_name") or rule.get("certificate_id") or ""
    key = "{}-{}-{}-{}-{}-{}-".format(
        rule.get("entry_port", 0),
        str(rule.get("entry_protocol", "")).lower(),
        rule.get("target_port", 0),
        str(rule.get("target_protocol", "")).lower(),
        cert_ref,
        str(bool(rule.get("tls_passthrough", False))).lower(),
    )
    return hash_string(key)


def flatten_droplet_ids(ids: Iterable[int] | None) -> HashedSet:
    return HashedSet(ids or ())


def flatten_tags(tags: Iterable[str] | None) -> HashedSet:
    return HashedSet(tags or (), hash_string_ignore_case)


def sha1_hex(value: str) -> str:
    """Hashes sensitive material (private keys, certificates) before it reaches state."""
    if not value:
        return ""
    return hashlib.sha1(value.strip().encode("utf-8")).hexdigest()


def trim_time_seconds(value: str) -> str:
    """"13:00:00" -> "13:00"; values without seconds are returned unchanged."""
    parts = value.split(":")
    if len(parts) == 3:
        return ":".join(parts[:2])
    return value


# ---------------------------------------------------------------------------
# Comparators
# ---------------------------------------------------------------------------


class CaseInsensitive:
    def equal(self, old: Any, new: Any, ctx: Any) -> bool:
        return str(old or "").lower() == str(new or "").lower()


class JsonEquivalent:
    def equal(self, old: Any, new: Any, ctx: Any) -> bool:
        return json_policy_equivalent(old or "", new or "")


class DnsValueComparator:
    """Compares record values relative to the record's ``domain`` attribute."""

    def equal(self, old: Any, new: Any, ctx: Any) -> bool:
        domain = ctx.get("domain") if ctx is not None else ""
        return dns_value_equal(old or "", new or "", domain or "")


class DnsNameComparator:
    """Compares record names relative to the record's ``domain`` attribute."""

    def equal(self, old: Any, new: Any, ctx: Any) -> bool:
        domain = ctx.get("domain") if ctx is not None else ""
        return dns_name_equal(old or "", new or "", domain or "")


class UrnSetComparator:
    """Sets of URNs compare equal across legacy and current kind spellings."""

    def equal(self, old: Any, new: Any, ctx: Any) -> bool:
        def canon(values: Any) -> set[str]:
            return {urn_remap(v, legacy=False) for v in (values or ())}

        return canon(old) == canon(new)
