"""
Main entry point for the appsync application.
This module handles top-level setup, exception handling, and CLI invocation.
"""

import asyncio
import logging
import os
import sys

import typer
from rich.console import Console

from appsync.cli.app import app
from appsync.cli.formatters import format_error_with_suggestions
from appsync.exceptions import (
    AppSyncError,
    ArchiveError,
    ConfigurationError,
    DeleteError,
    FileIntegrityError,
    InstallationError,
    NotFoundError,
    TransferError,
    ValidationError,
)

EXIT_CANCELED = 130

EXIT_CODES: tuple[tuple[tuple[type[AppSyncError], ...], int], ...] = (
    ((ValidationError, ConfigurationError), 3),
    ((NotFoundError,), 4),
    ((TransferError, FileIntegrityError, ArchiveError, DeleteError), 5),
    ((InstallationError,), 6),
)


def exit_code_for(error: AppSyncError) -> int:
    """
    Maps a failure to the process exit status so wrapper scripts can tell a bad
    manifest (3) from a missing source (4), a failed transfer (5) or an unusable
    installation directory (6). Anything else exits with 1.
    """
    for types, code in EXIT_CODES:
        if isinstance(error, types):
            return code
    return 1


def main() -> None:
    """Main entry point function."""
    if os.name == "nt":
        try:
            sys.stdout.reconfigure(encoding="utf-8")
            sys.stderr.reconfigure(encoding="utf-8")
        except (TypeError, AttributeError):
            pass

    log = logging.getLogger("appsync")
    console = Console()

    try:
        app()
    except (typer.Exit, typer.Abort):
        pass
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\n[yellow]⚠️  Sync canceled by user.[/yellow]")
        sys.exit(EXIT_CANCELED)
    except AppSyncError as e:
        code = exit_code_for(e)
        log.debug(f"{type(e).__name__} exits with status {code}.", exc_info=True)
        console.print(f"\n{format_error_with_suggestions(e)}")
        sys.exit(code)
    except Exception as e:
        console.print(f"\n{format_error_with_suggestions(e, {'type': 'Unexpected'})}")
        log.debug("Full traceback:", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
