from __future__ import annotations

from src.services import link_prober
from src.services.link_prober import ProbeOutcome
from src.services.probe_policy import ProbePolicy

URL = "https://example.com/article"


class ScriptedProber:
    """Returns queued outcomes and records (method, timeout) per call."""

    def __init__(self, *outcomes: ProbeOutcome) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple[str, float]] = []

    def probe(self, url: str, method: str, timeout: float) -> ProbeOutcome:
        self.calls.append((method, timeout))
        return self.outcomes.pop(0)


def ok(status_code: int, method: str = "HEAD") -> ProbeOutcome:
    return ProbeOutcome(method=method, success=True, status_code=status_code)


def failed(error_kind: str, method: str = "HEAD") -> ProbeOutcome:
    return ProbeOutcome(method=method, success=False, error_kind=error_kind)


def _policy(prober, no_sleep) -> ProbePolicy:
    return ProbePolicy(
        prober, head_timeout=3, get_timeout=8, retry_backoff_seconds=1, sleep=no_sleep
    )


def test_head_success_is_final(no_sleep):
    prober = ScriptedProber(ok(200))

    resolution = _policy(prober, no_sleep).run(URL)

    assert resolution.attempts == 1
    assert resolution.strategy.name == "head"
    assert prober.calls == [("HEAD", 3)]
    assert no_sleep.delays == []


def test_head_404_is_final(no_sleep):
    prober = ScriptedProber(ok(404))

    resolution = _policy(prober, no_sleep).run(URL)

    assert resolution.outcome.status_code == 404
    assert resolution.attempts == 1


def test_head_not_allowed_falls_back_to_get(no_sleep):
    prober = ScriptedProber(ok(405), ok(200, "GET"))

    resolution = _policy(prober, no_sleep).run(URL)

    assert prober.calls == [("HEAD", 3), ("GET", 8)]
    assert resolution.outcome.status_code == 200
    assert resolution.history == ["head:405", "get:200"]


def test_head_forbidden_then_get_forbidden_stops(no_sleep):
    prober = ScriptedProber(ok(403), ok(403, "GET"))

    resolution = _policy(prober, no_sleep).run(URL)

    assert resolution.attempts == 2
    assert resolution.outcome.status_code == 403


def test_transient_failures_retry_once_after_backoff(no_sleep):
    prober = ScriptedProber(
        failed(link_prober.ERROR_TIMEOUT),
        failed(link_prober.ERROR_TIMEOUT, "GET"),
        failed(link_prober.ERROR_TIMEOUT, "GET"),
    )

    resolution = _policy(prober, no_sleep).run(URL)

    assert prober.calls == [("HEAD", 3), ("GET", 8), ("GET", 8)]
    assert resolution.attempts == 3
    assert resolution.strategy.name == "retry"
    assert no_sleep.delays == [1]


def test_rate_limited_get_is_retried_once(no_sleep):
    prober = ScriptedProber(ok(405), ok(429, "GET"), ok(200, "GET"))

    resolution = _policy(prober, no_sleep).run(URL)

    assert resolution.outcome.status_code == 200
    assert resolution.attempts == 3
    assert no_sleep.delays == [1]


def test_head_503_goes_straight_to_retry(no_sleep):
    prober = ScriptedProber(ok(503), ok(503, "GET"))

    resolution = _policy(prober, no_sleep).run(URL)

    assert prober.calls == [("HEAD", 3), ("GET", 8)]
    assert resolution.strategy.name == "retry"
    assert resolution.outcome.status_code == 503


def test_durable_errors_are_never_retried(no_sleep):
    for error_kind in link_prober.DURABLE_ERRORS:
        prober = ScriptedProber(failed(error_kind))

        resolution = _policy(prober, no_sleep).run(URL)

        assert resolution.attempts == 1, error_kind
        assert resolution.outcome.error_kind == error_kind
    assert no_sleep.delays == []


def test_retry_happens_at_most_once(no_sleep):
    prober = ScriptedProber(ok(429), ok(429, "GET"))

    resolution = _policy(prober, no_sleep).run(URL)

    assert resolution.attempts == 2
    assert resolution.outcome.status_code == 429
