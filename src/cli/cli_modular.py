"""Streamlined CLI interface with modular command structure."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable

# Command modules are lazy-loaded in _load_command_parser() so that
# ``queue status`` does not pay for importing the verification stack.

logger = logging.getLogger(__name__)


CommandHandler = Callable[[argparse.Namespace], int]

COMMAND_HANDLER_ATTRS: dict[str, str] = {
    "verify-links": "handle_verify_links_command",
    "queue": "handle_queue_command",
}

COMMAND_MODULES: dict[str, str] = {
    "verify-links": "link_verification",
    "queue": "queue",
}


def create_parser() -> argparse.ArgumentParser:
    """Create minimal parser - commands loaded on-demand in main()."""
    parser = argparse.ArgumentParser(
        prog="hyperlink-horizon",
        description="Hyperlink Horizon - link verification engine",
        add_help=False,  # We'll handle help per-command
    )

    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g. INFO, DEBUG); defaults to LOG_LEVEL",
    )

    # Just capture the command name, don't load subparsers yet
    parser.add_argument(
        "command",
        nargs="?",
        help="Command to run (use 'COMMAND --help' for command-specific help)",
    )

    return parser


def _load_command_parser(command: str) -> tuple[Callable, Callable] | None:
    """Load parser and handler for a specific command on-demand.

    Returns: (add_parser_func, handle_command_func) or None if not found
    """
    module_name = COMMAND_MODULES.get(command)
    if not module_name:
        return None

    try:
        module = __import__(
            f"src.cli.commands.{module_name}",
            fromlist=["*"],
        )
    except (ImportError, ModuleNotFoundError) as e:
        logger.warning(f"Failed to load command '{command}': {e}")
        return None

    preferred_add = f"add_{command.replace('-', '_')}_parser"
    preferred_handle = COMMAND_HANDLER_ATTRS.get(command) or (
        f"handle_{command.replace('-', '_')}_command"
    )

    parser_func = getattr(module, preferred_add, None)
    handler_func = getattr(module, preferred_handle, None)
    if parser_func and handler_func:
        return (parser_func, handler_func)

    return None


def _print_available_commands() -> None:
    print("Available commands:", file=sys.stderr)
    print("  verify-links     - Verify one or more URLs", file=sys.stderr)
    print("  queue            - Join, poll or release an admission ticket", file=sys.stderr)
    print("Use: hyperlink-horizon COMMAND --help for more info", file=sys.stderr)


def main(
    argv: list[str] | None = None,
    *,
    setup_logging_func: Callable[[str | None], None] | None = None,
    handler_overrides: dict[str, CommandHandler] | None = None,
) -> int:
    """Main CLI entry point with on-demand command loading."""

    # Parse just enough to get command and log level
    parser = create_parser()
    args, remaining = parser.parse_known_args(argv)

    if setup_logging_func is None:
        from .context import setup_logging as default_setup_logging

        setup_logging_func = default_setup_logging

    setup_logging_func(args.log_level)

    command = args.command
    if not command:
        _print_available_commands()
        return 1

    if handler_overrides and command in handler_overrides:
        return handler_overrides[command](args)

    # Load the specific command module on-demand
    result = _load_command_parser(command)
    if result is None:
        print(f"Unknown command: {command}", file=sys.stderr)
        return 1

    add_parser_func, handle_func = result

    full_parser = argparse.ArgumentParser(
        prog="hyperlink-horizon",
        description=f"Run {command} command",
    )
    full_parser.add_argument("--log-level", default=None)

    # Let the command add its own arguments
    subparsers = full_parser.add_subparsers(dest="command")
    add_parser_func(subparsers)

    full_args = full_parser.parse_args([command] + remaining)

    func = getattr(full_args, "func", None)
    if callable(func):
        return func(full_args)
    return handle_func(full_args)


if __name__ == "__main__":
    sys.exit(main())
