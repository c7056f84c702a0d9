"""HEAD-first / GET-fallback / single-retry probing policy.

The policy is an ordered set of attempt strategies plus a transition function
deciding, from the latest outcome, which strategy (if any) runs next:

    head ──2xx / other status / durable error──────────────▶ done
      │ 400, 403, 405 or transient error        │ 429, 503
      ▼                                         ▼
    get ──429, 503 or transient error──▶ retry (GET after backoff) ──▶ done
      └──anything else──▶ done

At most one retry happens per URL, and durable network errors are never
retried.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from src import config
from src.services.link_prober import LinkProber, ProbeOutcome

logger = logging.getLogger(__name__)

HEAD_FALLBACK_STATUSES = frozenset({400, 403, 405})
RETRYABLE_STATUSES = frozenset({429, 503})


@dataclass(frozen=True)
class AttemptStrategy:
    name: str
    method: str
    timeout: float
    backoff_seconds: float = 0.0


@dataclass
class ProbeResolution:
    """Final outcome of the policy for one URL."""

    outcome: ProbeOutcome
    strategy: AttemptStrategy
    attempts: int
    history: list[str] = field(default_factory=list)


class ProbePolicy:
    """Run the attempt strategies for a URL against a ``LinkProber``."""

    def __init__(
        self,
        prober: LinkProber,
        *,
        head_timeout: float | None = None,
        get_timeout: float | None = None,
        retry_backoff_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.prober = prober
        get_timeout = config.GET_TIMEOUT_SECONDS if get_timeout is None else get_timeout
        backoff = (
            config.RETRY_BACKOFF_SECONDS
            if retry_backoff_seconds is None
            else max(0.0, retry_backoff_seconds)
        )
        self.head = AttemptStrategy(
            "head",
            "HEAD",
            config.HEAD_TIMEOUT_SECONDS if head_timeout is None else head_timeout,
        )
        self.get = AttemptStrategy("get", "GET", get_timeout)
        self.retry = AttemptStrategy("retry", "GET", get_timeout, backoff)
        self._sleep = sleep

    @property
    def strategies(self) -> list[AttemptStrategy]:
        return [self.head, self.get, self.retry]

    def next_strategy(
        self, current: AttemptStrategy, outcome: ProbeOutcome
    ) -> AttemptStrategy | None:
        """Return the strategy to run after ``outcome``, or None when done."""
        if current is self.retry:
            return None

        if outcome.success:
            status_code = outcome.status_code or 0
            if status_code in RETRYABLE_STATUSES:
                return self.retry
            if current is self.head and status_code in HEAD_FALLBACK_STATUSES:
                return self.get
            return None

        if not outcome.is_transient_failure:
            return None
        return self.get if current is self.head else self.retry

    def run(self, url: str) -> ProbeResolution:
        strategy = self.head
        attempts = 0
        history: list[str] = []

        while True:
            if strategy.backoff_seconds:
                self._sleep(strategy.backoff_seconds)

            outcome = self.prober.probe(url, strategy.method, strategy.timeout)
            attempts += 1
            history.append(
                f"{strategy.name}:{outcome.status_code if outcome.success else outcome.error_kind}"
            )

            following = self.next_strategy(strategy, outcome)
            if following is None:
                return ProbeResolution(
                    outcome=outcome, strategy=strategy, attempts=attempts, history=history
                )

            logger.debug(
                "%s for %s gave %s; moving to %s",
                strategy.name,
                url,
                history[-1],
                following.name,
            )
            outcome.close()
            strategy = following
