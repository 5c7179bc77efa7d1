"""Traffic channel classification from UTM parameters and referrer."""

from __future__ import annotations

from urllib.parse import urlparse

PAID_SEARCH = "Paid Search"
DISPLAY = "Display"
SOCIAL = "Social"
PAID_SOCIAL = "Paid Social"
EMAIL = "Email"
AFFILIATE = "Affiliate"
ORGANIC_SEARCH = "Organic Search"
REFERRAL = "Referral"
DIRECT = "Direct"

_MEDIUM_GROUPS = {
    PAID_SEARCH: {"cpc", "ppc", "paid", "paidsearch"},
    DISPLAY: {"display", "banner", "cpm"},
    SOCIAL: {"social", "social-media", "social-paid"},
    EMAIL: {"email", "e-mail", "newsletter"},
    AFFILIATE: {"affiliate", "partner", "referral"},
    ORGANIC_SEARCH: {"organic"},
}

_SEARCH_SOURCES = {"google", "bing", "yahoo", "duckduckgo"}
_SOCIAL_SOURCES = {"facebook", "twitter", "linkedin", "instagram", "tiktok"}

_SEARCH_ENGINES = ("google", "bing", "yahoo", "duckduckgo", "baidu", "yandex")
_SOCIAL_HOSTS = (
    "facebook", "fb", "twitter", "x", "t.co",
    "linkedin", "instagram", "pinterest",
    "youtube", "tiktok", "reddit",
)


def _is_social_host(host: str) -> bool:
    labels = host.split(".")
    for name in _SOCIAL_HOSTS:
        if "." in name:
            if host == name or host.endswith("." + name):
                return True
        elif name in labels:
            return True
    return False


def determine_channel(
    referrer: str | None = None,
    utm_source: str | None = None,
    utm_medium: str | None = None,
) -> str:
    """
    Classify a visit into a channel group.

    UTM medium wins over UTM source, which wins over the referrer host.
    Without any of them the visit is Direct.

    Example:
        >>> determine_channel(utm_medium="cpc")
        'Paid Search'
        >>> determine_channel(referrer="https://www.reddit.com/r/x")
        'Social'
    """
    if utm_medium:
        medium = utm_medium.lower()
        for group, mediums in _MEDIUM_GROUPS.items():
            if medium in mediums:
                if group == SOCIAL and utm_source and "paid" in utm_source.lower():
                    return PAID_SOCIAL
                return group

    if utm_source:
        source = utm_source.lower()
        if source in _SEARCH_SOURCES:
            return ORGANIC_SEARCH
        if source in _SOCIAL_SOURCES:
            return SOCIAL

    if not referrer:
        return DIRECT

    host = (urlparse(referrer).hostname or "").lower()
    if not host:
        return DIRECT

    if any(engine in host for engine in _SEARCH_ENGINES):
        return ORGANIC_SEARCH
    if _is_social_host(host):
        return SOCIAL

    return REFERRAL
