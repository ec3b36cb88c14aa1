"""
Traffic source attribution from the Referer header and UTM query parameters.

Used only when the caller did not supply a traffic source and derivation is
enabled in the rules.

Priority:
1. utm_medium mapping
2. utm_source matching a known search engine / social network / email
3. Referer classification (search engine, social network, other domain)
4. direct
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import parse_qs, urlparse


class TrafficSource(str, Enum):
    """Traffic source classification."""

    DIRECT = "direct"
    ORGANIC_SEARCH = "organic_search"
    PAID_SEARCH = "paid_search"
    SOCIAL = "social"
    EMAIL = "email"
    REFERRAL = "referral"
    AFFILIATE = "affiliate"
    DISPLAY = "display"


@dataclass(frozen=True)
class AttributionConfig:
    """Attribution configuration."""

    search_engine_patterns: tuple[str, ...] = (
        "google.",
        "bing.",
        "yahoo.",
        "duckduckgo.",
        "baidu.",
        "yandex.",
        "sogou.",
        "so.com",
    )
    social_network_patterns: tuple[str, ...] = (
        "facebook.",
        "fb.",
        "twitter.",
        "x.com",
        "t.co",
        "linkedin.",
        "instagram.",
        "reddit.",
        "youtube.",
        "weibo.",
        "zhihu.",
        "tiktok.",
    )
    medium_to_source: dict[str, TrafficSource] = field(
        default_factory=lambda: {
            "cpc": TrafficSource.PAID_SEARCH,
            "ppc": TrafficSource.PAID_SEARCH,
            "paid": TrafficSource.PAID_SEARCH,
            "email": TrafficSource.EMAIL,
            "newsletter": TrafficSource.EMAIL,
            "social": TrafficSource.SOCIAL,
            "affiliate": TrafficSource.AFFILIATE,
            "display": TrafficSource.DISPLAY,
            "banner": TrafficSource.DISPLAY,
            "organic": TrafficSource.ORGANIC_SEARCH,
            "referral": TrafficSource.REFERRAL,
        }
    )


DEFAULT_CONFIG = AttributionConfig()


@dataclass(frozen=True)
class UTMParams:
    """UTM parameters found in a request URL."""

    source: str | None = None
    medium: str | None = None


def parse_utm_params(url: str | None) -> UTMParams:
    """Extract utm_source/utm_medium from a URL query string, lowercased."""
    if not url:
        return UTMParams()

    query = parse_qs(urlparse(url).query)

    def get_param(key: str) -> str | None:
        values = query.get(f"utm_{key}")
        if not values:
            return None
        return values[0].strip().lower() or None

    return UTMParams(source=get_param("source"), medium=get_param("medium"))


def parse_referer_host(referer: str | None) -> str | None:
    """Lowercased host of a referer URL without port, None if unparseable."""
    if not referer:
        return None

    try:
        host = urlparse(referer).netloc.lower()
    except ValueError:
        return None

    if ":" in host:
        host = host.split(":")[0]
    return host or None


def _source_matches(source: str, patterns: tuple[str, ...]) -> bool:
    """
    Match a utm_source value as a whole name or a host.

    "google" and "google.com" match "google."; "box.com" does not match "x.com".
    """
    if any(source == pattern.rstrip(".") for pattern in patterns):
        return True
    return _host_matches(source, patterns)


def _host_matches(host: str, patterns: tuple[str, ...]) -> bool:
    """
    Match on label boundaries.

    "google." matches google.com and www.google.co.uk; "t.co" matches t.co
    and sub.t.co but not chat.com.
    """
    for pattern in patterns:
        if pattern.endswith("."):
            if host.startswith(pattern) or f".{pattern}" in host:
                return True
        elif host == pattern or host.endswith(f".{pattern}"):
            return True
    return False


def classify_traffic_source(
    referer: str | None,
    url: str | None = None,
    site_host: str | None = None,
    config: AttributionConfig = DEFAULT_CONFIG,
) -> TrafficSource:
    """
    Classify where a visit came from.

    A referer pointing at site_host itself is internal navigation and counts
    as direct.
    """
    utm = parse_utm_params(url)

    if utm.medium and utm.medium in config.medium_to_source:
        return config.medium_to_source[utm.medium]

    if utm.source:
        if _source_matches(utm.source, config.search_engine_patterns):
            return TrafficSource.ORGANIC_SEARCH
        if _source_matches(utm.source, config.social_network_patterns):
            return TrafficSource.SOCIAL
        if "email" in utm.source or "newsletter" in utm.source:
            return TrafficSource.EMAIL

    host = parse_referer_host(referer)
    if host is None or (site_host and host == site_host.lower().split(":")[0]):
        return TrafficSource.DIRECT

    if _host_matches(host, config.search_engine_patterns):
        return TrafficSource.ORGANIC_SEARCH

    if _host_matches(host, config.social_network_patterns):
        return TrafficSource.SOCIAL

    return TrafficSource.REFERRAL
