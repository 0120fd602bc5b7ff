"""Fetch configuration model: one per image a client keeps up to date."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from tako.core.keys import PublicKey


class FetchConfig(BaseModel):
    """Validated contents of a fetch config file.

    Loaded from ``Key=Value`` lines by ``tako.core.config_loader``.  Only
    fully valid configs are ever constructed.
    """

    model_config = ConfigDict(frozen=True)

    origin: str  # absolute URI of the server directory
    public_key: PublicKey
    destination: Path
    restart_units: tuple[str, ...] = Field(default_factory=tuple)  # restart order
