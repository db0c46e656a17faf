"""Event property enrichment.

WHAT:
    Merges the caller's properties with derived fields:
    - request_metadata: anonymized IP, user agent, language, DNT
    - host / path / query_params from the page URL
    - referrer_host / referrer_path from the referrer URL
    - canonical utm_* keys

WHY:
    Downstream reporting reads these fields without re-parsing URLs, and the
    raw client IP is never persisted (IPv4 truncated to /24, IPv6 to /64).

REFERENCES:
    - touchline/services/event_processing.py (consumer)
    - touchline/routers/events.py (builds the request metadata)
"""

import ipaddress
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlsplit

from touchline.services.utm_capture import extract_utm, parse_query_params

PROPERTY_URL = "url"
PROPERTY_REFERRER = "referrer"
PROPERTY_HOST = "host"
PROPERTY_PATH = "path"
PROPERTY_QUERY_PARAMS = "query_params"
PROPERTY_REFERRER_HOST = "referrer_host"
PROPERTY_REFERRER_PATH = "referrer_path"
PROPERTY_REQUEST_METADATA = "request_metadata"

IPV4_PREFIX = 24
IPV6_PREFIX = 64


def anonymize_ip(ip: Optional[str]) -> Optional[str]:
    """Network address of the /24 (IPv4) or /64 (IPv6) containing `ip`.

    >>> anonymize_ip("203.0.113.77")
    '203.0.113.0'
    """
    if not ip:
        return None
    try:
        address = ipaddress.ip_address(ip.strip())
    except ValueError:
        return None
    prefix = IPV4_PREFIX if address.version == 4 else IPV6_PREFIX
    return str(ipaddress.ip_network(f"{address}/{prefix}", strict=False).network_address)


def build_request_metadata(
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
    language: Optional[str] = None,
    dnt: Optional[str] = None,
) -> Dict[str, Optional[str]]:
    return {
        "ip_address": anonymize_ip(ip),
        "user_agent": user_agent,
        "language": language,
        "dnt": dnt,
    }


def _split(url: Optional[str]):
    if not url or not isinstance(url, str):
        return None
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return None
    return parts if parts.hostname else None


def url_components(url: Optional[str]) -> Dict[str, Any]:
    if not url:
        return {}
    parts = _split(url)
    if parts is None:
        return {PROPERTY_QUERY_PARAMS: {}}
    return {
        PROPERTY_HOST: parts.hostname,
        PROPERTY_PATH: parts.path or "/",
        PROPERTY_QUERY_PARAMS: parse_query_params(url),
    }


def referrer_components(referrer: Optional[str]) -> Dict[str, Any]:
    parts = _split(referrer)
    if parts is None:
        return {}
    components = {PROPERTY_REFERRER_HOST: parts.hostname}
    if parts.path:
        components[PROPERTY_REFERRER_PATH] = parts.path
    return components


def enrich_properties(
    properties: Optional[Mapping[str, Any]],
    url: Optional[str] = None,
    referrer: Optional[str] = None,
    request_metadata: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Return a new property dict with derived fields merged in.

    `url`/`referrer` default to the same-named keys of `properties`.
    """
    enriched: Dict[str, Any] = dict(properties or {})
    url = url or enriched.get(PROPERTY_URL)
    referrer = referrer or enriched.get(PROPERTY_REFERRER)

    if request_metadata is not None:
        enriched[PROPERTY_REQUEST_METADATA] = dict(request_metadata)
    enriched.update(url_components(url))
    enriched.update(referrer_components(referrer))
    enriched.update(extract_utm(url=url, properties=properties))

    return enriched
