"""Manual admission queue operations."""

from __future__ import annotations

import json
import logging

from src.services.admission_queue import AdmissionQueue
from src.services.errors import AdmissionUnavailableError

logger = logging.getLogger(__name__)

EXIT_ADMISSION_UNAVAILABLE = 2


def add_queue_parser(subparsers):
    """Add queue command parser."""
    parser = subparsers.add_parser(
        "queue",
        help="Join, poll, heartbeat or complete an admission ticket",
    )
    parser.add_argument(
        "queue_command",
        choices=["join", "status", "heartbeat", "complete"],
        help="Queue operation",
    )
    parser.add_argument(
        "ticket",
        nargs="?",
        help="Ticket id (required for status, heartbeat and complete)",
    )
    return parser


def handle_queue_command(args, queue: AdmissionQueue | None = None) -> int:
    """Execute queue command logic. Prints one JSON object per call."""
    if args.queue_command != "join" and not args.ticket:
        print(f"queue {args.queue_command} requires a TICKET")
        return 1

    if queue is None:
        queue = AdmissionQueue.from_url()

    try:
        if args.queue_command == "join":
            ticket_id, position = queue.join()
            payload = {"jobId": ticket_id, "position": position}
        elif args.queue_command == "status":
            payload = queue.status(args.ticket).to_dict()
        elif args.queue_command == "heartbeat":
            queue.heartbeat(args.ticket)
            payload = {"jobId": args.ticket, "success": True}
        else:
            queue.complete(args.ticket)
            payload = {"jobId": args.ticket, "success": True}
    except AdmissionUnavailableError as e:
        logger.error(f"Admission queue unavailable: {e}")
        return EXIT_ADMISSION_UNAVAILABLE

    print(json.dumps(payload))
    return 0
