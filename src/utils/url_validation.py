"""Input validation for URLs submitted for verification."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

from src import config

MAX_URL_LENGTH = 2048

_BLOCKED_SCHEMES = ("javascript:", "data:", "vbscript:")
_PRIVATE_HOST_PREFIXES = ("192.168.", "10.", "172.16.")
_PRIVATE_HOSTS = {"localhost", "127.0.0.1"}


@dataclass(frozen=True)
class UrlValidation:
    is_valid: bool
    sanitized: str = ""
    error: str | None = None


def validate_url(url: object, *, block_private_hosts: bool | None = None) -> UrlValidation:
    """Validate and normalize a URL.

    Args:
        url: Candidate URL (anything; non-strings are rejected)
        block_private_hosts: Reject loopback/private hosts. Defaults to
            ``config.BLOCK_PRIVATE_URLS`` (on in production).

    Examples:
        >>> validate_url(" https://Example.com/a ").sanitized
        'https://example.com/a'
        >>> validate_url("javascript:alert(1)").error
        'Invalid URL protocol'
    """
    if not url or not isinstance(url, str):
        return UrlValidation(False, error="URL is required")

    trimmed = url.strip()
    if len(trimmed) > MAX_URL_LENGTH:
        return UrlValidation(False, error=f"URL too long (max {MAX_URL_LENGTH} chars)")

    if trimmed.lower().startswith(_BLOCKED_SCHEMES):
        return UrlValidation(False, error="Invalid URL protocol")

    try:
        parsed = urlsplit(trimmed)
        hostname = parsed.hostname
        # Accessing .port validates it.
        parsed.port
    except ValueError:
        return UrlValidation(False, error="Invalid URL format")

    if parsed.scheme.lower() not in ("http", "https"):
        return UrlValidation(False, error="Only HTTP/HTTPS URLs allowed")
    if not hostname:
        return UrlValidation(False, error="Invalid URL format")

    if block_private_hosts is None:
        block_private_hosts = config.BLOCK_PRIVATE_URLS
    if block_private_hosts and (
        hostname in _PRIVATE_HOSTS or hostname.startswith(_PRIVATE_HOST_PREFIXES)
    ):
        return UrlValidation(False, error="Private URLs not allowed")

    netloc = parsed.netloc
    host_start = netloc.rfind("@") + 1
    netloc = netloc[:host_start] + netloc[host_start:].lower()
    sanitized = urlunsplit(
        (parsed.scheme.lower(), netloc, parsed.path or "/", parsed.query, parsed.fragment)
    )
    return UrlValidation(True, sanitized=sanitized)
