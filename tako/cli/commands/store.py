"""``tako store``: add a new image version to a server directory.

The secret key comes from ``--key``, else ``--key-file``, else the
``TAKO_SECRET_KEY`` environment variable, and is resolved before anything
on disk is touched.
"""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from tako.config import get_settings
from tako.core.keys import SECRET_KEY_ENV, resolve_secret
from tako.core.store import store
from tako.errors import Duplicate, TakoError

logger = logging.getLogger(__name__)

console = Console()


def store_cmd(
    image: Path = typer.Argument(
        ...,
        help="Path to the image file to be stored.",
    ),
    version: str = typer.Argument(
        ...,
        help="Version to store the image under.",
    ),
    output: Path = typer.Option(
        ...,
        "--output",
        "-o",
        help="Server directory.",
    ),
    key: str = typer.Option(
        None,
        "--key",
        "-k",
        help=f"Secret key to sign the manifest with. Can alternatively be read from the {SECRET_KEY_ENV} environment variable.",
    ),
    key_file: Path = typer.Option(
        None,
        "--key-file",
        "-f",
        help="File to read the secret key from.",
    ),
) -> None:
    """Sign IMAGE as VERSION and publish it into the server directory."""
    settings = get_settings()
    env: dict[str, str] = {}
    if settings.secret_key is not None:
        env[SECRET_KEY_ENV] = settings.secret_key.get_secret_value()

    try:
        secret_key = resolve_secret(key=key, key_file=key_file, env=env)
        result = store(image, version, secret_key, output)
    except Duplicate as exc:
        console.print(f"[bold red]Duplicate version:[/bold red] {escape(str(exc))}", highlight=False, soft_wrap=True)
        raise typer.Exit(code=1)
    except (TakoError, OSError) as exc:
        logger.debug("Store failed.", exc_info=True)
        console.print(f"[bold red]Store failed:[/bold red] {escape(str(exc))}", highlight=False, soft_wrap=True)
        raise typer.Exit(code=1)

    if result.created:
        console.print(
            f"Stored version {version} ({result.manifest.content_address}) in {output}.",
            markup=False,
            highlight=False,
            soft_wrap=True,
        )
    else:
        console.print(
            f"Version {version} ({result.manifest.content_address}) was already stored.",
            markup=False,
            highlight=False,
            soft_wrap=True,
        )
