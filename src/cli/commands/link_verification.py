"""Link verification command."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from src.models.verification import LinkItem, LinkStatus, VerificationResult
from src.services.admission_queue import AdmissionQueue, admitted
from src.services.errors import AdmissionTimeoutError, AdmissionUnavailableError
from src.services.link_verification import LinkVerificationService, summarize
from src.utils.url_validation import validate_url

logger = logging.getLogger(__name__)

EXIT_ADMISSION_UNAVAILABLE = 2
EXIT_ADMISSION_TIMEOUT = 3

_STATUS_ICONS = {
    LinkStatus.WORKING: "✅",
    LinkStatus.BROKEN: "❌",
    LinkStatus.REDIRECT: "↪️",
    LinkStatus.RESTRICTED: "🔒",
    LinkStatus.TIMEOUT: "⏱️",
}


def add_verify_links_parser(subparsers):
    """Add verify-links command parser."""
    parser = subparsers.add_parser(
        "verify-links",
        help="Check whether URLs still resolve",
    )
    parser.add_argument("urls", nargs="*", help="URLs to verify")
    parser.add_argument(
        "--file",
        type=Path,
        help="Read URLs from a file, one per line (optional tab-separated context)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Number of worker threads (default: VERIFY_CONCURRENCY)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print results and summary as JSON",
    )
    parser.add_argument(
        "--use-queue",
        action="store_true",
        help="Wait for the shared admission queue before verifying",
    )
    parser.add_argument(
        "--wait-timeout",
        type=float,
        default=None,
        help="Give up waiting in the queue after this many seconds",
    )
    parser.add_argument(
        "--clear-cache",
        action="store_true",
        help="Drop cached results before verifying",
    )
    return parser


def read_link_file(path: Path) -> list[LinkItem]:
    """Parse ``url[<TAB>context]`` lines; blank lines and ``#`` comments are skipped."""
    items = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        url, _, context = line.partition("\t")
        items.append(LinkItem(url.strip(), context.strip()))
    return items


def collect_links(urls: list[str], file_path: Path | None = None) -> list[LinkItem]:
    """Gather, validate and de-duplicate CLI inputs, preserving order."""
    candidates = [LinkItem(url) for url in urls]
    if file_path is not None:
        candidates.extend(read_link_file(file_path))

    links: list[LinkItem] = []
    seen: set[str] = set()
    for item in candidates:
        validation = validate_url(item.url, block_private_hosts=False)
        if not validation.is_valid:
            logger.warning("Skipping %s: %s", item.url, validation.error)
            continue
        if validation.sanitized in seen:
            continue
        seen.add(validation.sanitized)
        links.append(LinkItem(validation.sanitized, item.context))
    return links


def handle_verify_links_command(args) -> int:
    """Execute verify-links command logic."""
    try:
        links = collect_links(args.urls or [], getattr(args, "file", None))
    except OSError as e:
        logger.error(f"Could not read {args.file}: {e}")
        return 1

    if not links:
        print("No valid URLs to verify.")
        return 1

    service = LinkVerificationService(concurrency=args.concurrency)
    if args.clear_cache:
        service.clear_cache()

    try:
        if args.use_queue:
            queue = AdmissionQueue.from_url()
            with admitted(queue, wait_timeout=args.wait_timeout) as ticket_id:
                logger.info("Admitted as %s; verifying %s links", ticket_id, len(links))
                results = service.verify_links(links)
        else:
            results = service.verify_links(links)
    except AdmissionUnavailableError as e:
        logger.error(f"Admission queue unavailable: {e}")
        return EXIT_ADMISSION_UNAVAILABLE
    except AdmissionTimeoutError as e:
        logger.error(str(e))
        return EXIT_ADMISSION_TIMEOUT

    summary = summarize(results)
    if args.json:
        payload = {
            "results": [result.to_dict() for result in results],
            "summary": summary,
        }
        print(json.dumps(payload, indent=2))
    else:
        _print_results(results, summary)
    return 0


def _print_results(results: list[VerificationResult], summary: dict[str, int]) -> None:
    print("\n🔗 Link Verification Results")
    print("=" * 80)
    for result in results:
        icon = _STATUS_ICONS.get(result.status, "?")
        detail = result.reason or (str(result.status_code) if result.status_code else "")
        print(f"{icon} {result.status.value:<10} {result.url[:55]:55} {detail}")
        if result.context:
            print(f"   └─ {result.context[:72]}")

    print("-" * 80)
    print(
        f"📊 {summary['total']} links: {summary['working']} working, "
        f"{summary['broken']} broken, {summary['review']} need review, "
        f"{summary['timeout']} timed out, {summary['images']} images"
    )
