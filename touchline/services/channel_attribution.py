"""Channel classification for sessions.

WHAT:
    Maps a session's initial UTM parameters and referrer to one tag from the
    fixed channel taxonomy (ChannelEnum).

WHY:
    The channel is the attribution dimension: touchpoints are sessions with a
    channel, and credits are reported per channel.

DECISION ORDER (first match wins):
    1. Any UTM parameter present -> classify by utm_medium
       (no medium match -> "other")
    2. Referrer host present -> search engine / social network / video
       platform / anything else is "referral"
    3. Otherwise -> "direct"

REFERENCES:
    - touchline/models.py: ChannelEnum
    - touchline/services/utm_capture.py
"""

import re
from typing import Callable, List, Mapping, Optional, Tuple, Union
from urllib.parse import urlsplit

from touchline.models import ChannelEnum
from touchline.services.utm_capture import UTM_MEDIUM, UTM_SOURCE


SEARCH_ENGINES = re.compile(r"google|bing|yahoo|duckduckgo|baidu", re.IGNORECASE)
SOCIAL_NETWORKS = re.compile(r"facebook|instagram|linkedin|twitter|tiktok|pinterest", re.IGNORECASE)
VIDEO_PLATFORMS = re.compile(r"youtube|vimeo", re.IGNORECASE)


def _social_channel(utm: Mapping[str, str]) -> ChannelEnum:
    source = utm.get(UTM_SOURCE) or ""
    if SOCIAL_NETWORKS.search(source):
        return ChannelEnum.paid_social
    return ChannelEnum.organic_social


ChannelRule = Union[ChannelEnum, Callable[[Mapping[str, str]], ChannelEnum]]

# utm_medium patterns, matched against the whole value
UTM_MEDIUM_PATTERNS: List[Tuple[re.Pattern, ChannelRule]] = [
    (re.compile(r"cpc|ppc|paid", re.IGNORECASE), ChannelEnum.paid_search),
    (re.compile(r"social", re.IGNORECASE), _social_channel),
    (re.compile(r"email|e-mail", re.IGNORECASE), ChannelEnum.email),
    (re.compile(r"display|banner", re.IGNORECASE), ChannelEnum.display),
    (re.compile(r"affiliates?", re.IGNORECASE), ChannelEnum.affiliate),
    (re.compile(r"referral|partner", re.IGNORECASE), ChannelEnum.referral),
    (re.compile(r"organic", re.IGNORECASE), ChannelEnum.organic_search),
    (re.compile(r"video", re.IGNORECASE), ChannelEnum.video),
]

REFERRER_HOST_PATTERNS: List[Tuple[re.Pattern, ChannelEnum]] = [
    (SEARCH_ENGINES, ChannelEnum.organic_search),
    (SOCIAL_NETWORKS, ChannelEnum.organic_social),
    (VIDEO_PLATFORMS, ChannelEnum.video),
]


def referrer_host(referrer: Optional[str]) -> Optional[str]:
    """Host part of a referrer URL, or None when absent/malformed."""
    if not referrer or not isinstance(referrer, str):
        return None
    try:
        return urlsplit(referrer.strip()).hostname
    except ValueError:
        return None


def _channel_from_utm(utm: Mapping[str, str]) -> ChannelEnum:
    medium = (utm.get(UTM_MEDIUM) or "").strip()
    for pattern, rule in UTM_MEDIUM_PATTERNS:
        if pattern.fullmatch(medium):
            return rule(utm) if callable(rule) else rule
    return ChannelEnum.other


def _channel_from_referrer(host: str) -> ChannelEnum:
    for pattern, channel in REFERRER_HOST_PATTERNS:
        if pattern.search(host):
            return channel
    return ChannelEnum.referral


def classify_channel(utm: Optional[Mapping[str, str]], referrer: Optional[str] = None) -> str:
    """Classify a session into a channel.

    Pure and deterministic: identical inputs always give the same channel.

    Args:
        utm: Extracted UTM map (see utm_capture.extract_utm)
        referrer: Referrer URL (optional)

    Returns:
        Channel value string, e.g. "paid_search"
    """
    if utm and any(utm.values()):
        return _channel_from_utm(utm).value

    host = referrer_host(referrer)
    if host:
        return _channel_from_referrer(host).value

    return ChannelEnum.direct.value
