"""``tako fetch [--init] CONFIG...``: download or update images.

Each config file names one origin, pinned key and destination.  Configs are
processed in order; a failure in one does not stop the others, but makes the
command exit non-zero.  "No candidate to fetch." is a normal outcome.
"""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from tako.config import get_settings
from tako.core.config_loader import load_config
from tako.core.fetch import Fetcher
from tako.errors import TakoError
from tako.models.fetch import FetchOutcome, FetchResult

logger = logging.getLogger(__name__)

console = Console()


def _report(config_path: Path, result: FetchResult) -> None:
    if result.outcome == FetchOutcome.NO_CANDIDATE:
        console.print(f"{config_path}: No candidate to fetch.", markup=False, highlight=False, soft_wrap=True)
        return
    console.print(
        f"{config_path}: Installed version {result.version} ({result.digest}) "
        f"at {result.destination}.",
        markup=False,
        highlight=False,
        soft_wrap=True,
    )
    for failure in result.restart_failures:
        console.print(
            f"{config_path}: Failed to restart {failure.unit}: {failure.reason}",
            markup=False,
            highlight=False,
            soft_wrap=True,
        )


def fetch_cmd(
    configs: list[Path] = typer.Argument(
        ...,
        help="Config files that determine what to fetch.",
    ),
    init: bool = typer.Option(
        False,
        "--init",
        help="Download an image only if none exists already.",
    ),
) -> None:
    """Download or update the images described by CONFIG files."""
    settings = get_settings()
    failed = 0

    for config_path in configs:
        console.print(f"Run for {config_path}.", markup=False, highlight=False, soft_wrap=True)
        try:
            config = load_config(config_path)
            result = Fetcher(config, settings=settings, label=str(config_path)).fetch(init=init)
        except (TakoError, OSError) as exc:
            failed += 1
            logger.debug("Fetch for %s failed.", config_path, exc_info=True)
            console.print(
                f"[bold red]{escape(str(config_path))}: fetch failed:[/bold red] {escape(str(exc))}",
                highlight=False,
                soft_wrap=True,
            )
            continue
        _report(config_path, result)
        if result.restart_failures:
            failed += 1

    if failed:
        raise typer.Exit(code=1)
