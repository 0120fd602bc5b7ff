"""Main Typer application: imports and registers all CLI commands.

Entry point: ``tako`` (configured via pyproject.toml console_scripts).

Commands: fetch, store, gen-key, version.
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from tako import __version__
from tako.cli.commands.fetch import fetch_cmd
from tako.cli.commands.gen_key import gen_key_cmd
from tako.cli.commands.store import store_cmd
from tako.config import get_settings

app = typer.Typer(
    name="tako",
    help="Tako: take container image.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="fetch", help="Download or update an image.")(fetch_cmd)
app.command(name="store", help="Add a new image version to a server directory.")(store_cmd)
app.command(name="gen-key", help="Generate a key pair for signing manifests.")(gen_key_cmd)


def configure_logging(level: str) -> None:
    """Send log records to stderr through Rich."""
    handler = RichHandler(console=Console(stderr=True), show_path=False)
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None,
        "--log-level",
        help="Log level (default: TAKO_LOG_LEVEL or INFO).",
    ),
) -> None:
    """Tako: take container image."""
    configure_logging(log_level or get_settings().log_level)


@app.command(name="version", help="Show version.")
def version_cmd() -> None:
    """Print the Tako version."""
    typer.echo(__version__)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
