"""Shared CLI runtime setup."""

import logging
import sys

from src import config


def setup_logging(level: str | None = None) -> None:
    """Configure root logging for CLI commands.

    Logs go to stderr so ``--json`` output on stdout stays machine-readable.
    """
    level_name = (level or config.LOG_LEVEL or "INFO").upper()
    log_level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )
    # urllib3 retries and connection pool chatter drown out probe logs.
    logging.getLogger("urllib3").setLevel(max(log_level, logging.WARNING))
