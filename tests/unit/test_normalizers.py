"""
tests/unit/test_normalizers.py

Unit tests for schema/normalizers.py. These are pure functions; no I/O.
"""

from __future__ import annotations

import pytest

from schema.normalizers import (
    CaseInsensitive,
    DnsValueComparator,
    JsonEquivalent,
    UrnSetComparator,
    build_urn,
    construct_fqdn,
    dns_name_equal,
    dns_value_equal,
    flatten_tags,
    hash_forwarding_rule,
    json_policy_equivalent,
    normalize_dns_data,
    normalize_json,
    normalize_region,
    sha1_hex,
    shorten_dns_name,
    trim_time_seconds,
    urn_remap,
    urns_equal,
)


class _Ctx:
    def __init__(self, **values):
        self._values = values

    def get(self, name):
        return self._values.get(name)


# ---------------------------------------------------------------------------
# DNS
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "record_type, data, tag, expected",
    [
        ("CNAME", "www.example.com", "", "www.example.com."),
        ("cname", "www.example.com.", "", "www.example.com."),
        ("MX", "mail.example.com..", "", "mail.example.com."),
        ("CNAME", "@", "", "@"),
        ("CAA", "letsencrypt.org", "issue", "letsencrypt.org."),
        ("CAA", "mailto:ops@example.com", "iodef", "mailto:ops@example.com"),
        ("A", "192.0.2.1", "", "192.0.2.1"),
        ("TXT", "v=spf1 -all", "", "v=spf1 -all"),
    ],
)
def test_normalize_dns_data(record_type, data, tag, expected):
    assert normalize_dns_data(record_type, data, tag) == expected


def test_shorten_dns_name():
    assert shorten_dns_name("www.example.com.", "example.com") == "www"
    assert shorten_dns_name("EXAMPLE.com", "example.com") == "@"
    assert shorten_dns_name("other.org", "example.com") == "other.org"


def test_dns_value_equal_across_spellings():
    assert dns_value_equal("x.example.com", "x.example.com.", "example.com")
    assert dns_value_equal("x", "x.example.com.", "example.com")
    assert dns_value_equal("@", "example.com.", "example.com")
    assert not dns_value_equal("x", "y.example.com.", "example.com")


def test_construct_fqdn():
    assert construct_fqdn("@", "example.com") == "example.com"
    assert construct_fqdn("www", "example.com") == "www.example.com"
    assert construct_fqdn("www.example.com.", "example.com") == "www.example.com"


def test_dns_name_equal():
    assert dns_name_equal("www", "www.example.com.", "example.com")
    assert not dns_name_equal("www", "api", "example.com")


def test_dns_value_comparator_reads_domain_from_context():
    cmp = DnsValueComparator()
    assert cmp.equal("target.example.com.", "target", _Ctx(domain="example.com"))
    assert not cmp.equal("target.example.com.", "target", _Ctx(domain="example.org"))


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------


def test_normalize_json_sorts_keys_and_strips_whitespace():
    assert normalize_json('{ "b": 1,\n "a": [1, 2] }') == '{"a":[1,2],"b":1}'
    assert normalize_json("") == ""


def test_normalize_json_rejects_invalid_input():
    with pytest.raises(ValueError):
        normalize_json("{not json")


def test_json_policy_equivalence():
    assert json_policy_equivalent('{"a": 1, "b": 2}', '{"b":2,"a":1}')
    assert not json_policy_equivalent('{"a": 1}', '{"a": 2}')
    assert not json_policy_equivalent("{broken", '{"a": 1}')
    assert JsonEquivalent().equal('{"x": [1]}', '{"x":[1]}', None)


# ---------------------------------------------------------------------------
# URNs
# ---------------------------------------------------------------------------


def test_urn_remap_between_legacy_and_current_kinds():
    assert urn_remap("do:reservedip:1.2.3.4", legacy=True) == "do:floatingip:1.2.3.4"
    assert urn_remap("do:floatingip:1.2.3.4", legacy=False) == "do:reservedip:1.2.3.4"
    assert urn_remap("do:droplet:1", legacy=True) == "do:droplet:1"
    assert urn_remap("not-a-urn", legacy=False) == "not-a-urn"


def test_urns_equal_and_set_comparator():
    assert build_urn("droplet", 7) == "do:droplet:7"
    assert urns_equal("do:floatingip:1.2.3.4", "do:reservedip:1.2.3.4")
    assert UrnSetComparator().equal(
        ["do:floatingip:1.2.3.4", "do:droplet:1"],
        ["do:droplet:1", "do:reservedip:1.2.3.4"],
        None,
    )
    assert not UrnSetComparator().equal(["do:droplet:1"], ["do:droplet:2"], None)


# ---------------------------------------------------------------------------
# Hashing and misc
# ---------------------------------------------------------------------------


def _rule(**overrides):
    rule = {
        "entry_port": 443,
        "entry_protocol": "https",
        "target_port": 80,
        "target_protocol": "http",
        "certificate_name": "le-cert",
        "certificate_id": "id-1",
        "tls_passthrough": False,
    }
    rule.update(overrides)
    return rule


def test_forwarding_rule_hash_is_stable_across_certificate_renewal():
    assert hash_forwarding_rule(_rule()) == hash_forwarding_rule(_rule(certificate_id="id-2"))


def test_forwarding_rule_hash_falls_back_to_certificate_id():
    without_name = _rule(certificate_name="")
    assert hash_forwarding_rule(without_name) != hash_forwarding_rule(_rule(certificate_name="", certificate_id="id-2"))


def test_forwarding_rule_hash_ignores_protocol_case():
    assert hash_forwarding_rule(_rule(entry_protocol="HTTPS")) == hash_forwarding_rule(_rule())


def test_flatten_tags_is_case_insensitive():
    assert flatten_tags(["Web"]) == flatten_tags(["web"])
    assert len(flatten_tags(None)) == 0


def test_sha1_hex():
    assert sha1_hex("") == ""
    assert sha1_hex(" key ") == sha1_hex("key")
    assert len(sha1_hex("key")) == 40


def test_small_helpers():
    assert normalize_region("NYC3") == "nyc3"
    assert trim_time_seconds("13:00:00") == "13:00"
    assert trim_time_seconds("13:00") == "13:00"
    assert CaseInsensitive().equal("Production", "production", None)
