"""Single-attempt HTTP probes for link verification.

A probe sends exactly one HEAD or GET request and reports what happened as a
``ProbeOutcome``. Probes never raise: every requests/urllib3 failure is mapped
to an ``error_kind`` so the retry policy can decide what to do next.
"""

from __future__ import annotations

import logging
import re
import socket
import ssl
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import requests
from requests import Session
from requests.exceptions import (
    ChunkedEncodingError,
    ConnectTimeout,
    InvalidSchema,
    InvalidURL,
    MissingSchema,
    ReadTimeout,
    RequestException,
    SSLError,
    Timeout,
    TooManyRedirects,
)
from urllib3 import exceptions as urllib3_exceptions

logger = logging.getLogger(__name__)

_DEFAULT_HTTP_HEADERS: dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/128.0.0.0 Safari/537.36"
    ),
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/avif,image/webp,image/apng,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
}

# Upper bound on how much of a body is ever read for inspection.
MAX_BODY_BYTES = 512 * 1024

ERROR_TIMEOUT = "timeout"
ERROR_CONNECTION_RESET = "connection_reset"
ERROR_DNS_TRANSIENT = "dns_transient"
ERROR_DNS_NOT_FOUND = "dns_not_found"
ERROR_CONNECTION_REFUSED = "connection_refused"
ERROR_TLS = "tls"
ERROR_TOO_MANY_REDIRECTS = "too_many_redirects"
ERROR_INVALID_URL = "invalid_url"
ERROR_CONNECTION = "connection_error"

TRANSIENT_ERRORS = frozenset(
    {ERROR_TIMEOUT, ERROR_CONNECTION_RESET, ERROR_DNS_TRANSIENT, ERROR_CONNECTION}
)
DURABLE_ERRORS = frozenset(
    {
        ERROR_DNS_NOT_FOUND,
        ERROR_CONNECTION_REFUSED,
        ERROR_TLS,
        ERROR_TOO_MANY_REDIRECTS,
        ERROR_INVALID_URL,
    }
)

# getaddrinfo errnos. EAI_AGAIN means the resolver itself failed, so the name
# may well exist; everything else is treated as "no such host".
_DNS_TRANSIENT_ERRNOS = frozenset(
    {getattr(socket, "EAI_AGAIN", -3), 11002}  # 11002: WSATRY_AGAIN
)

# Text fallback, applied only after URLs, hosts and ports are scrubbed out.
_DNS_NOT_FOUND_MARKERS = (
    "name or service not known",
    "nodename nor servname provided",
    "no address associated with hostname",
    "getaddrinfo failed",
    "[errno -2]",
    "[errno 11001]",
)
_DNS_TRANSIENT_MARKERS = (
    "temporary failure in name resolution",
    "[errno -3]",
    "[errno 11002]",
)
_REFUSED_MARKERS = ("connection refused", "[errno 111]", "[errno 61]", "[winerror 10061]")
_RESET_MARKERS = (
    "connection reset",
    "connection aborted",
    "remote end closed connection",
    "[errno 104]",
    "[errno 54]",
    "broken pipe",
)
_TLS_MARKERS = ("certificate", "sslerror", "ssl:", "tlsv1", "wrong version number")
_TIMEOUT_MARKERS = ("timed out",)

# requests/urllib3 messages embed the target; none of it may reach the markers.
_LOCATION_PATTERNS = (
    re.compile(r"[a-z][a-z0-9+.-]*://\S+"),
    re.compile(r"host='[^']*'"),
    re.compile(r"port=\d+"),
    re.compile(r"url: \S+"),
    re.compile(r"resolve '[^']*'"),
)


@dataclass
class ProbeOutcome:
    """Tagged result of one HTTP attempt."""

    method: str
    success: bool
    status_code: int | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    error_kind: str | None = None
    error_message: str | None = None
    elapsed_ms: int = 0
    _response: Any = field(default=None, repr=False)
    _deadline: float | None = field(default=None, repr=False)

    @property
    def content_type(self) -> str | None:
        raw = self.headers.get("Content-Type") or self.headers.get("content-type")
        if not raw:
            return None
        return raw.split(";", 1)[0].strip().lower() or None

    @property
    def location(self) -> str | None:
        return self.headers.get("Location") or self.headers.get("location")

    @property
    def is_transient_failure(self) -> bool:
        return not self.success and self.error_kind in TRANSIENT_ERRORS

    def read_body(self, max_bytes: int = MAX_BODY_BYTES) -> str:
        """Read up to ``max_bytes`` of the body, stopping at the deadline.

        Returns an empty string for HEAD probes, failures, or when the body
        cannot be read. The underlying response is closed afterwards.
        """
        response = self._response
        if response is None:
            return ""

        chunks: list[bytes] = []
        size = 0
        try:
            for chunk in response.iter_content(chunk_size=16 * 1024):
                if not chunk:
                    continue
                chunks.append(chunk)
                size += len(chunk)
                if size >= max_bytes:
                    break
                if self._deadline is not None and time.monotonic() > self._deadline:
                    logger.debug("Body read for %s stopped at deadline", response.url)
                    break
        except RequestException as exc:
            logger.debug("Body read failed: %s", exc)
        finally:
            self.close()

        encoding = getattr(response, "encoding", None) or "utf-8"
        try:
            return b"".join(chunks).decode(encoding, errors="replace")
        except LookupError:
            return b"".join(chunks).decode("utf-8", errors="replace")

    def close(self) -> None:
        response = self._response
        self._response = None
        if response is not None:
            close_fn = getattr(response, "close", None)
            if callable(close_fn):
                close_fn()


def _exception_chain(exc: BaseException) -> list[BaseException]:
    """Breadth-first walk over causes, contexts, wrapped args and ``reason``.

    requests wraps urllib3's ``MaxRetryError`` in ``args[0]``; the pool error
    sits in its ``reason``, and the socket error in that one's cause/context.
    """
    chain: list[BaseException] = []
    pending: list[BaseException | None] = [exc]
    seen: set[int] = set()
    while pending:
        current = pending.pop(0)
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        chain.append(current)
        pending.extend(arg for arg in getattr(current, "args", ()) if isinstance(arg, BaseException))
        reason = getattr(current, "reason", None)
        if isinstance(reason, BaseException):
            pending.append(reason)
        pending.append(current.__cause__)
        pending.append(current.__context__)
    return chain


def _os_error_kind(exc: BaseException) -> str | None:
    """Kind for socket-level exceptions; None for anything else."""
    if isinstance(exc, socket.gaierror):
        if exc.errno in _DNS_TRANSIENT_ERRNOS:
            return ERROR_DNS_TRANSIENT
        return ERROR_DNS_NOT_FOUND
    if isinstance(exc, (ssl.SSLError, ssl.CertificateError)):
        return ERROR_TLS
    if isinstance(exc, ConnectionRefusedError):
        return ERROR_CONNECTION_REFUSED
    if isinstance(exc, (ConnectionResetError, ConnectionAbortedError, BrokenPipeError)):
        return ERROR_CONNECTION_RESET
    if isinstance(exc, TimeoutError):
        return ERROR_TIMEOUT
    return None


def _pool_error_kind(exc: BaseException) -> str | None:
    """Kind for urllib3 exceptions that carry no usable socket error."""
    if isinstance(exc, urllib3_exceptions.NameResolutionError):
        return ERROR_DNS_NOT_FOUND
    if isinstance(exc, urllib3_exceptions.NewConnectionError):
        # Subclasses ConnectTimeoutError but is not a timeout.
        return None
    if isinstance(
        exc, (urllib3_exceptions.ConnectTimeoutError, urllib3_exceptions.ReadTimeoutError)
    ):
        return ERROR_TIMEOUT
    if isinstance(exc, urllib3_exceptions.SSLError):
        return ERROR_TLS
    return None


def _scrubbed_text(chain: list[BaseException]) -> str:
    """Lowercased messages of the chain with URLs, hosts and ports removed."""
    text = " | ".join(f"{type(item).__name__}: {item}" for item in chain).lower()
    for pattern in _LOCATION_PATTERNS:
        text = pattern.sub(" ", text)
    return text


def classify_request_error(exc: BaseException) -> str:
    """Map a requests/urllib3 exception to an ``error_kind``.

    Exception types decide first; message markers are consulted only when
    no typed cause is present, and never see the requested URL.
    """
    if isinstance(exc, (ConnectTimeout, ReadTimeout, Timeout)):
        return ERROR_TIMEOUT
    if isinstance(exc, TooManyRedirects):
        return ERROR_TOO_MANY_REDIRECTS
    if isinstance(exc, (MissingSchema, InvalidSchema, InvalidURL)):
        return ERROR_INVALID_URL
    if isinstance(exc, SSLError):
        return ERROR_TLS
    if isinstance(exc, ChunkedEncodingError):
        return ERROR_CONNECTION_RESET

    chain = _exception_chain(exc)
    for item in chain:
        kind = _os_error_kind(item)
        if kind is not None:
            return kind
    for item in chain:
        kind = _pool_error_kind(item)
        if kind is not None:
            return kind

    text = _scrubbed_text(chain)
    if any(marker in text for marker in _DNS_TRANSIENT_MARKERS):
        return ERROR_DNS_TRANSIENT
    if any(marker in text for marker in _DNS_NOT_FOUND_MARKERS):
        return ERROR_DNS_NOT_FOUND
    if any(marker in text for marker in _REFUSED_MARKERS):
        return ERROR_CONNECTION_REFUSED
    if any(marker in text for marker in _RESET_MARKERS):
        return ERROR_CONNECTION_RESET
    if any(marker in text for marker in _TLS_MARKERS):
        return ERROR_TLS
    if any(marker in text for marker in _TIMEOUT_MARKERS):
        return ERROR_TIMEOUT
    return ERROR_CONNECTION


class LinkProber:
    """Send one HEAD or GET request per call using a shared session."""

    def __init__(
        self,
        http_session: Session | None = None,
        *,
        http_headers: Mapping[str, str] | None = None,
        max_body_bytes: int = MAX_BODY_BYTES,
    ):
        self.http_session = http_session or requests.Session()
        self.http_headers = dict(_DEFAULT_HTTP_HEADERS)
        if http_headers:
            self.http_headers.update(http_headers)
        self.max_body_bytes = max_body_bytes
        self._prepare_http_session()

    def _prepare_http_session(self) -> None:
        """Ensure the HTTP session advertises browser-like headers."""

        session_headers = getattr(self.http_session, "headers", None)
        if session_headers is None or not hasattr(session_headers, "setdefault"):
            self.http_session.headers = dict(self.http_headers)
            return

        for key, value in self.http_headers.items():
            if key not in session_headers:
                session_headers[key] = value

    def probe(self, url: str, method: str, timeout: float) -> ProbeOutcome:
        """Perform one request and return a tagged outcome.

        Args:
            url: Absolute http(s) URL.
            method: ``"HEAD"`` or ``"GET"``.
            timeout: Seconds allowed for connect and for each read.
        """
        method = method.upper()
        started = time.monotonic()
        deadline = started + timeout

        try:
            response = self.http_session.request(
                method,
                url,
                allow_redirects=True,
                timeout=timeout,
                stream=(method == "GET"),
            )
        except RequestException as exc:
            error_kind = classify_request_error(exc)
            logger.debug("%s %s failed (%s): %s", method, url, error_kind, exc)
            return ProbeOutcome(
                method=method,
                success=False,
                error_kind=error_kind,
                error_message=str(exc),
                elapsed_ms=int((time.monotonic() - started) * 1000),
            )
        except (ValueError, UnicodeError) as exc:
            # Raised by urllib3 for URLs requests did not reject up front.
            logger.debug("%s %s rejected as invalid URL: %s", method, url, exc)
            return ProbeOutcome(
                method=method,
                success=False,
                error_kind=ERROR_INVALID_URL,
                error_message=str(exc),
                elapsed_ms=int((time.monotonic() - started) * 1000),
            )

        status_code = getattr(response, "status_code", None)
        headers = getattr(response, "headers", None) or {}
        outcome = ProbeOutcome(
            method=method,
            success=status_code is not None,
            status_code=status_code,
            headers=headers,
            error_kind=None if status_code is not None else ERROR_CONNECTION,
            error_message=None if status_code is not None else "missing status code",
            elapsed_ms=int((time.monotonic() - started) * 1000),
            _response=response,
            _deadline=deadline,
        )
        if method != "GET":
            outcome.close()
        return outcome
