"""``tako gen-key``: generate a key pair for signing manifests.

The secret key is printed to stdout rather than written to a file: the
operator decides where it lives (an encrypted secret store, typically) and
it need never touch disk unencrypted.
"""

from __future__ import annotations

import typer
from rich.console import Console

from tako.core.keys import generate
from tako.errors import KeyGenerationFailed

console = Console(stderr=True)


def gen_key_cmd() -> None:
    """Generate an Ed25519 key pair and print both halves as base64."""
    try:
        secret_key, public_key = generate()
    except KeyGenerationFailed as exc:
        console.print(f"[bold red]Key generation failed:[/bold red] {exc}", highlight=False)
        raise typer.Exit(code=1)

    with secret_key:
        typer.echo("Secret key (save to an encrypted secret store):")
        typer.echo(secret_key.to_base64())
    typer.echo("")
    typer.echo("Public key:")
    typer.echo(public_key.to_base64())
