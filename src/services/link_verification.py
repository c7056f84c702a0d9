"""
Link verification service.

Checks whether hyperlinks pulled from a document still resolve: each URL goes
through the HEAD-first probing policy, is classified as working, broken,
redirect, restricted or timeout, and is cached for the cache TTL so repeat
checks skip the network. Batches fan out over a fixed pool of worker threads.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Iterable
from dataclasses import replace
from typing import Any

import requests
from requests import Session

from src import config
from src.models.verification import (
    REVIEW_STATUSES,
    LinkItem,
    LinkStatus,
    VerificationResult,
    utc_now_iso,
)
from src.services.link_classifier import (
    classify_failure,
    classify_status_code,
    inspect_body,
)
from src.services.link_prober import LinkProber
from src.services.probe_policy import ProbePolicy
from src.services.result_cache import ResultCache
from src.utils.domain_policies import is_image_link


class LinkVerificationService:
    """Verify links one at a time or in bounded-concurrency batches."""

    def __init__(
        self,
        *,
        http_session: Session | None = None,
        prober: LinkProber | None = None,
        policy: ProbePolicy | None = None,
        cache: ResultCache | None = None,
        concurrency: int | None = None,
    ):
        """Initialize the verification service.

        Args:
            http_session: Shared requests session (ignored when ``prober`` is given)
            prober: Single-attempt HTTP prober
            policy: Attempt policy; built around ``prober`` when omitted
            cache: Result cache; a fresh in-memory cache when omitted
            concurrency: Default worker count for batches
        """
        self.logger = logging.getLogger(__name__)
        if prober is None:
            prober = LinkProber(http_session or requests.Session())
        self.prober = prober
        self.policy = policy or ProbePolicy(prober)
        self.cache = cache if cache is not None else ResultCache()
        self.concurrency = max(1, concurrency or config.VERIFY_CONCURRENCY)

    def verify_link(self, url: str, context: str = "") -> VerificationResult:
        """Verify one URL, consulting the cache first.

        Returns:
            The cached result (with its original ``checked_at``) or a fresh one
        """
        cached = self.cache.get(url)
        if cached is not None:
            self.logger.debug("Cache hit for %s (%s)", url, cached.status.value)
            return replace(cached, context=context)

        result = self._check(url)
        self.cache.put(url, result)
        return replace(result, context=context)

    def _check(self, url: str) -> VerificationResult:
        start_time = time.monotonic()
        resolution = self.policy.run(url)
        outcome = resolution.outcome

        try:
            if outcome.success and outcome.status_code is not None:
                classification = classify_status_code(url, outcome.status_code, outcome.location)
                classification = inspect_body(classification, outcome)
            else:
                classification = classify_failure(
                    outcome.error_kind, resolution.strategy.timeout
                )
        finally:
            outcome.close()

        content_type = outcome.content_type if outcome.success else None
        result = VerificationResult(
            url=url,
            status=classification.status,
            status_code=outcome.status_code if outcome.success else None,
            reason=classification.reason,
            content_type=content_type,
            is_image=is_image_link(url, content_type),
            response_time_ms=int((time.monotonic() - start_time) * 1000),
            is_restricted=classification.is_restricted,
            checked_at=utc_now_iso(),
            attempts=resolution.attempts,
        )

        self.logger.debug(
            "Verified %s: %s (%s, %sms, path=%s)",
            url,
            result.status.value,
            result.reason or result.status_code,
            result.response_time_ms,
            " -> ".join(resolution.history),
        )
        return result

    def verify_links(
        self,
        links: Iterable[LinkItem | dict[str, Any] | str],
        concurrency: int | None = None,
    ) -> list[VerificationResult]:
        """Verify a batch of links with a fixed pool of worker threads.

        Results are returned in completion order, which is generally NOT the
        input order; match results to inputs by ``url``. One link failing
        unexpectedly yields a ``timeout`` result for that link and never
        aborts the batch.
        """
        items = [LinkItem.coerce(link) for link in links]
        if not items:
            return []

        width = min(max(1, concurrency or self.concurrency), len(items))
        work: queue.Queue[LinkItem] = queue.Queue()
        for item in items:
            work.put(item)

        results: list[VerificationResult] = []
        results_lock = threading.Lock()
        batch_start_time = time.time()

        def worker() -> None:
            while True:
                try:
                    item = work.get_nowait()
                except queue.Empty:
                    return
                try:
                    result = self.verify_link(item.url, item.context)
                except Exception as exc:
                    self.logger.warning("Verification failed for %s: %s", item.url, exc)
                    result = VerificationResult(
                        url=item.url,
                        status=LinkStatus.TIMEOUT,
                        reason=f"Verification failed: {exc}",
                        context=item.context,
                    )
                with results_lock:
                    results.append(result)

        workers = [
            threading.Thread(target=worker, name=f"link-verifier-{index}", daemon=True)
            for index in range(width)
        ]
        for thread in workers:
            thread.start()
        for thread in workers:
            thread.join()

        summary = summarize(results)
        self.logger.info(
            "Batch complete: %s links, %s working, %s broken, %s review, %s timeout "
            "(%.1fs, %s workers)",
            summary["total"],
            summary["working"],
            summary["broken"],
            summary["review"],
            summary["timeout"],
            time.time() - batch_start_time,
            width,
        )
        return results

    def clear_cache(self) -> None:
        self.cache.clear()
        self.logger.info("Link verification cache cleared")

    def cache_stats(self) -> dict[str, float | int]:
        return self.cache.stats()


def summarize(results: Iterable[VerificationResult]) -> dict[str, int]:
    """Aggregate counts for presentation and export."""
    summary = {
        "total": 0,
        "working": 0,
        "broken": 0,
        "redirect": 0,
        "restricted": 0,
        "timeout": 0,
        "review": 0,
        "images": 0,
    }
    for result in results:
        summary["total"] += 1
        summary[result.status.value] += 1
        if result.status in REVIEW_STATUSES:
            summary["review"] += 1
        if result.is_image:
            summary["images"] += 1
    return summary
