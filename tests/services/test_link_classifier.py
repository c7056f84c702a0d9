from __future__ import annotations

import pytest

from src.models.verification import LinkStatus
from src.services import link_prober
from src.services.link_classifier import (
    Classification,
    classify_failure,
    classify_status_code,
    inspect_body,
)
from src.services.link_prober import LinkProber, ProbeOutcome

URL = "https://example.com/article"


@pytest.mark.parametrize(
    "status_code, expected_status",
    [
        (200, LinkStatus.WORKING),
        (204, LinkStatus.WORKING),
        (101, LinkStatus.WORKING),
        (301, LinkStatus.REDIRECT),
        (401, LinkStatus.RESTRICTED),
        (403, LinkStatus.RESTRICTED),
        (404, LinkStatus.BROKEN),
        (410, LinkStatus.BROKEN),
        (418, LinkStatus.BROKEN),
        (408, LinkStatus.TIMEOUT),
        (429, LinkStatus.TIMEOUT),
        (500, LinkStatus.BROKEN),
        (503, LinkStatus.BROKEN),
    ],
)
def test_status_code_table(status_code, expected_status):
    assert classify_status_code(URL, status_code).status is expected_status


def test_404_is_broken_even_on_restricted_domain():
    result = classify_status_code("https://www.jstor.org/stable/123", 404)

    assert result.status is LinkStatus.BROKEN
    assert result.reason == "Page not found (404)"


def test_success_on_restricted_domain_is_restricted():
    result = classify_status_code("https://onlinelibrary.wiley.com/doi/10.1/x", 200)

    assert result.status is LinkStatus.RESTRICTED
    assert result.is_restricted is True
    assert "institutional" in result.reason


def test_forbidden_on_bot_blocking_domain_explains_itself():
    result = classify_status_code("https://www.linkedin.com/in/someone", 403)

    assert result.status is LinkStatus.RESTRICTED
    assert "block bots" in result.reason


def test_redirect_reason_names_target():
    result = classify_status_code(URL, 302, "https://example.com/login")

    assert result.reason == "Redirects to https://example.com/login"
    assert classify_status_code(URL, 302).reason == "Redirects to unknown"


def test_server_error_reason_includes_code():
    assert classify_status_code(URL, 502).reason == "Server error (502)"


@pytest.mark.parametrize(
    "error_kind, expected_status",
    [
        (link_prober.ERROR_DNS_NOT_FOUND, LinkStatus.BROKEN),
        (link_prober.ERROR_CONNECTION_REFUSED, LinkStatus.BROKEN),
        (link_prober.ERROR_TLS, LinkStatus.BROKEN),
        (link_prober.ERROR_INVALID_URL, LinkStatus.BROKEN),
        (link_prober.ERROR_TOO_MANY_REDIRECTS, LinkStatus.REDIRECT),
        (link_prober.ERROR_TIMEOUT, LinkStatus.TIMEOUT),
        (link_prober.ERROR_CONNECTION_RESET, LinkStatus.TIMEOUT),
        (link_prober.ERROR_DNS_TRANSIENT, LinkStatus.TIMEOUT),
        (link_prober.ERROR_CONNECTION, LinkStatus.TIMEOUT),
        (None, LinkStatus.TIMEOUT),
    ],
)
def test_failure_table(error_kind, expected_status):
    assert classify_failure(error_kind).status is expected_status


def test_timeout_reason_mentions_limit():
    assert classify_failure(link_prober.ERROR_TIMEOUT, 8).reason == "Request timeout (>8s)"
    assert classify_failure(link_prober.ERROR_DNS_NOT_FOUND).reason == "Domain not found"


def _get_outcome(fake_session, fake_response, body, content_type="text/html"):
    fake_session.add(URL, fake_response(200, {"Content-Type": content_type}, body=body))
    return LinkProber(fake_session).probe(URL, "GET", 8)


def test_short_not_found_page_is_soft_404(fake_session, fake_response):
    body = "<html><title>Page Not Found</title>".ljust(4999)
    outcome = _get_outcome(fake_session, fake_response, body)

    result = inspect_body(Classification(LinkStatus.WORKING), outcome)

    assert result.status is LinkStatus.BROKEN
    assert result.reason.startswith("Soft 404")


def test_long_page_mentioning_not_found_stays_working(fake_session, fake_response):
    body = "<html><p>page not found</p>" + "a" * 6000 + "</html>"
    outcome = _get_outcome(fake_session, fake_response, body)

    result = inspect_body(Classification(LinkStatus.WORKING), outcome)

    assert result.status is LinkStatus.WORKING


def test_paywall_page_is_restricted(fake_session, fake_response):
    body = "<html>" + "x" * 6000 + "<div>Subscription required to read</div></html>"
    outcome = _get_outcome(fake_session, fake_response, body)

    result = inspect_body(Classification(LinkStatus.WORKING), outcome)

    assert result.status is LinkStatus.RESTRICTED
    assert result.is_restricted is True


def test_non_html_body_is_not_inspected(fake_session, fake_response):
    outcome = _get_outcome(fake_session, fake_response, "page not found", "application/pdf")

    result = inspect_body(Classification(LinkStatus.WORKING), outcome)

    assert result.status is LinkStatus.WORKING


def test_head_outcome_is_not_inspected():
    outcome = ProbeOutcome(
        method="HEAD", success=True, status_code=200, headers={"Content-Type": "text/html"}
    )
    classification = Classification(LinkStatus.WORKING)

    assert inspect_body(classification, outcome) is classification


def test_non_working_classification_is_left_alone(fake_session, fake_response):
    outcome = _get_outcome(fake_session, fake_response, "page not found")
    classification = Classification(LinkStatus.RESTRICTED, "x", is_restricted=True)

    assert inspect_body(classification, outcome) is classification
