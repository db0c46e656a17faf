"""UTM parameter extraction.

WHAT:
    Pulls the five canonical campaign parameters (utm_source, utm_medium,
    utm_campaign, utm_content, utm_term) out of a landing URL and/or an
    already-parsed property map.

WHY:
    A session's initial UTM set drives its channel classification and is
    copied onto every attribution credit for campaign drill-down.

REFERENCES:
    - touchline/services/channel_attribution.py (consumer)
    - touchline/services/event_processing.py (write-once capture on the session)
"""

from typing import Any, Dict, Mapping, Optional
from urllib.parse import parse_qsl, urlsplit

UTM_SOURCE = "utm_source"
UTM_MEDIUM = "utm_medium"
UTM_CAMPAIGN = "utm_campaign"
UTM_CONTENT = "utm_content"
UTM_TERM = "utm_term"

UTM_PARAMS = (UTM_SOURCE, UTM_MEDIUM, UTM_CAMPAIGN, UTM_CONTENT, UTM_TERM)


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def parse_query_params(url: Optional[str]) -> Dict[str, str]:
    """Parse a URL's query string into a flat dict (last value wins).

    Malformed URLs yield an empty dict.
    """
    if not url or not isinstance(url, str):
        return {}
    try:
        query = urlsplit(url).query
        return dict(parse_qsl(query, keep_blank_values=True))
    except ValueError:
        return {}


def _from_mapping(values: Mapping[Any, Any]) -> Dict[str, str]:
    utm: Dict[str, str] = {}
    for param in UTM_PARAMS:
        value = values.get(param)
        if _present(value):
            utm[param] = value
    return utm


def extract_utm(
    url: Optional[str] = None,
    properties: Optional[Mapping[Any, Any]] = None,
) -> Dict[str, str]:
    """Extract UTM parameters from a URL and/or a property map.

    Absent parameters are omitted, never null-filled. When both sources carry
    the same parameter, the URL value wins.

    Args:
        url: Landing page URL (optional)
        properties: Event properties (optional)

    Returns:
        Dict keyed by canonical utm_* names

    Example:
        >>> extract_utm("https://x.com/p?utm_source=google&utm_medium=cpc")
        {'utm_source': 'google', 'utm_medium': 'cpc'}
    """
    utm: Dict[str, str] = {}

    if properties and isinstance(properties, Mapping):
        utm.update(_from_mapping(properties))

    if url:
        utm.update(_from_mapping(parse_query_params(url)))

    return utm
