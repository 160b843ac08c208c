"""Command-line interface for consulsync.

This module provides the main CLI entry point.

Commands:
- consulsync: Mirror a Consul KV prefix into a local directory

Exit codes:
- 0: OK
- 10: Generic error
- 11: Interrupted by a signal
- 12: Invalid flags
- 13: Runner error
- 14: Invalid configuration
"""

from __future__ import annotations

import sys
from collections.abc import Sequence

import click

from consulsync.client.cli.supervisor import Supervisor
from consulsync.client.cli.sync import sync
from consulsync.core.types import ExitCode

cli = sync


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command and return its exit code.

    Args:
        argv: Arguments without the program name, sys.argv[1:] if omitted.
    """
    args = list(argv) if argv is not None else sys.argv[1:]
    try:
        result = cli.main(args=args, prog_name="consulsync", standalone_mode=False)
    except click.ClickException as e:
        e.show()
        return int(ExitCode.PARSE_FLAGS_ERROR)
    except click.Abort:
        click.echo("Aborted!", err=True)
        return int(ExitCode.INTERRUPT)

    if result is None:
        return int(ExitCode.OK)
    return int(result)


def run() -> None:
    """Entry point for the CLI."""
    sys.exit(main())


__all__ = [
    # Main entry points
    "cli",
    "main",
    "run",
    # Supervisor
    "Supervisor",
]
