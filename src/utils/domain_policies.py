"""Domain and content heuristics used when classifying link checks.

Servers do not always tell the truth about whether a human can read a page:
academic publishers answer 200 to a login wall, and some large sites answer
403 to anything that is not a real browser. The lists below correct for that
asymmetry.
"""

from __future__ import annotations

import re
from urllib.parse import urlparse

# Hosts that serve content behind institutional or subscription access.
RESTRICTED_DOMAINS = frozenset(
    {
        "jstor.org",
        "ebscohost.com",
        "sciencedirect.com",
        "springerlink.com",
        "ieee.org",
        "acm.org",
        "tandfonline.com",
        "wiley.com",
        "nature.com",
        "proquest.com",
    }
)

# Hosts known to return 401/403 to automated clients while working normally
# in a real browser.
BOT_BLOCKING_DOMAINS = frozenset(
    {
        "linkedin.com",
        "instagram.com",
        "facebook.com",
        "twitter.com",
        "x.com",
        "medium.com",
        "quora.com",
        "researchgate.net",
        "academia.edu",
        "glassdoor.com",
        "indeed.com",
        "zillow.com",
        "wsj.com",
        "bloomberg.com",
    }
)

PAYWALL_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"paywall",
        r"subscription required",
        r"subscribe (?:now )?to (?:continue|keep) reading",
        r"subscribers only",
        r"sign[- ]?in to continue",
        r"log[- ]?in required",
        r"login[- ]?required",
        r"access denied",
        r"institutional access",
        r"purchase (?:this )?article",
        r"buy this article",
    )
]

# Only unambiguous phrasing; "does not exist" or a bare "404" show up on
# plenty of healthy pages.
SOFT_404_PHRASES = (
    "page not found",
    "404 not found",
    "page cannot be found",
    "page could not be found",
    "the requested url was not found",
    "this page doesn't exist",
    "this page does not exist",
)

SOFT_404_MAX_BODY_CHARS = 5000

IMAGE_EXTENSIONS = frozenset(
    {".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".bmp", ".ico", ".tif", ".tiff", ".avif"}
)


def _host_matches(host: str | None, domains: frozenset[str]) -> bool:
    if not host:
        return False
    host = host.lower().rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    return any(host == domain or host.endswith("." + domain) for domain in domains)


def hostname_of(url: str) -> str | None:
    try:
        return urlparse(url).hostname
    except ValueError:
        return None


def is_restricted_domain(url: str) -> bool:
    return _host_matches(hostname_of(url), RESTRICTED_DOMAINS)


def is_bot_blocking_domain(url: str) -> bool:
    return _host_matches(hostname_of(url), BOT_BLOCKING_DOMAINS)


def looks_like_soft_404(body: str) -> bool:
    """Short page whose text says the resource does not exist."""
    if len(body) >= SOFT_404_MAX_BODY_CHARS:
        return False
    lowered = body.lower()
    return any(phrase in lowered for phrase in SOFT_404_PHRASES)


def looks_like_paywall(body: str) -> bool:
    return any(pattern.search(body) for pattern in PAYWALL_PATTERNS)


def is_image_link(url: str, content_type: str | None) -> bool:
    if content_type and content_type.lower().startswith("image/"):
        return True
    try:
        path = urlparse(url).path.lower()
    except ValueError:
        return False
    dot = path.rfind(".")
    return dot != -1 and path[dot:] in IMAGE_EXTENSIONS
