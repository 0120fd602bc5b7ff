"""Publish result model."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict

from tako.models.manifest import Manifest


class StoreResult(BaseModel):
    """What ``tako store`` did.

    ``created`` is False when the same version and digest were already
    published; nothing was rewritten in that case.
    """

    model_config = ConfigDict(frozen=True)

    manifest: Manifest
    manifest_path: Path
    blob_path: Path
    created: bool
    blob_created: bool
