"""
Event Enrichment Tests (Unit)
=============================

WHAT: Unit tests for IP anonymization and derived event properties.
WHY: The raw client IP must never reach storage; URL components are read by
reporting without re-parsing.

REFERENCES:
- touchline/services/event_enrichment.py
"""

import pytest

from touchline.services.event_enrichment import (
    anonymize_ip,
    build_request_metadata,
    enrich_properties,
    referrer_components,
    url_components,
)


class TestAnonymizeIp:
    def test_ipv4_truncated_to_24(self):
        assert anonymize_ip("203.0.113.77") == "203.0.113.0"

    def test_ipv6_truncated_to_64(self):
        assert anonymize_ip("2001:db8:abcd:12:3456:789a:bcde:f012") == "2001:db8:abcd:12::"

    @pytest.mark.parametrize("value", [None, "", "localhost", "999.1.1.1"])
    def test_invalid_input_yields_none(self, value):
        assert anonymize_ip(value) is None


def test_request_metadata_never_contains_raw_ip():
    metadata = build_request_metadata("198.51.100.23", "Mozilla/5.0", "en-US", "1")
    assert metadata == {
        "ip_address": "198.51.100.0",
        "user_agent": "Mozilla/5.0",
        "language": "en-US",
        "dnt": "1",
    }


def test_url_components():
    assert url_components("https://shop.example.com/pricing?plan=pro") == {
        "host": "shop.example.com",
        "path": "/pricing",
        "query_params": {"plan": "pro"},
    }


def test_url_components_root_path_and_missing_url():
    assert url_components("https://shop.example.com")["path"] == "/"
    assert url_components(None) == {}
    assert url_components("/relative/only") == {"query_params": {}}


def test_referrer_components():
    assert referrer_components("https://www.google.com/search?q=x") == {
        "referrer_host": "www.google.com",
        "referrer_path": "/search",
    }
    assert referrer_components(None) == {}


def test_enrich_properties_merges_derived_fields():
    properties = {"url": "https://x.com/p?utm_source=google&utm_medium=cpc", "plan": "pro"}
    enriched = enrich_properties(
        properties,
        referrer="https://www.google.com/",
        request_metadata={"ip_address": "203.0.113.0"},
    )

    assert enriched["plan"] == "pro"
    assert enriched["host"] == "x.com"
    assert enriched["path"] == "/p"
    assert enriched["referrer_host"] == "www.google.com"
    assert enriched["utm_source"] == "google"
    assert enriched["utm_medium"] == "cpc"
    assert enriched["request_metadata"] == {"ip_address": "203.0.113.0"}


def test_enrich_properties_does_not_mutate_input():
    properties = {"url": "https://x.com/?utm_source=a"}
    enrich_properties(properties)
    assert properties == {"url": "https://x.com/?utm_source=a"}
