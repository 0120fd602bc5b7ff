"""Tako CLI: Typer-based command-line interface.

Provides the ``tako`` command with subcommands for fetching images,
publishing (storing) image versions, and generating signing keys.

Human-facing output uses Rich; log records go to stderr through a
``RichHandler``.
"""
