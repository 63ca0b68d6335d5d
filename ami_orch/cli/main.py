#!/usr/bin/env python3
"""
AMI Orchestration CLI - Main entry point.

Commands:
  ami-orch build     - Upload a disk image and turn it into AMI(s)
  ami-orch regions   - List the regions visible to an access key
"""

import logging
import os
import sys

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from ami_orch import __version__
from ami_orch.errors import BuildCancelledError
from ami_orch.logging_setup import quiet_signing_loggers, setup_logging

# stdout carries only result lines; everything else goes to stderr
console = Console(stderr=True)

# Load environment variables from .env file if present
load_dotenv()


def setup_console_logging(verbose: bool = False) -> None:
    """
    Configure logging with rich handler.

    Interactive runs already show the progress trail, so the ami namespace
    only reports warnings unless --verbose (or AMI_APP_LOG_LEVEL) asks for more.
    """
    if verbose:
        root_level = "INFO"
        app_level = "DEBUG"
    else:
        root_level = os.environ.get("AMI_ROOT_LOG_LEVEL", "WARNING").upper()
        app_level = os.environ.get("AMI_APP_LOG_LEVEL", "WARNING").upper()

    logging.basicConfig(
        level=root_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )
    logging.getLogger("ami").setLevel(app_level)
    quiet_signing_loggers()


@click.group()
@click.version_option(version=__version__)
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose logging')
@click.option('--json-logs', is_flag=True, help='One JSON log object per line on stderr; disables progress output')
@click.pass_context
def cli(ctx, verbose, json_logs):
    """AMI Orchestration - Build EC2 machine images from raw disk images."""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    ctx.obj['json_logs'] = json_logs
    if json_logs:
        setup_logging(verbose)
    else:
        setup_console_logging(verbose)


# Import subcommands
from ami_orch.cli.build import build, regions  # noqa: E402

cli.add_command(build)
cli.add_command(regions)


def main():
    """Main entry point."""
    try:
        cli(obj={})
    except BuildCancelledError as e:
        console.print(f"\n[yellow]{escape(str(e))}[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False)
        if '--verbose' in sys.argv or '-v' in sys.argv:
            raise
        sys.exit(1)


if __name__ == '__main__':
    main()
