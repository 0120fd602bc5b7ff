"""Tako data models: all Pydantic v2, all frozen (immutable)."""

from tako.models.config import FetchConfig
from tako.models.fetch import (
    TERMINAL_STATES,
    TRANSITIONS,
    FetchEvent,
    FetchOutcome,
    FetchResult,
    FetchState,
    FetchTransition,
    RestartFailure,
)
from tako.models.manifest import Manifest
from tako.models.store import StoreResult

__all__ = [
    # manifest
    "Manifest",
    # config
    "FetchConfig",
    # fetch
    "FetchState",
    "FetchEvent",
    "FetchTransition",
    "FetchOutcome",
    "FetchResult",
    "RestartFailure",
    "TRANSITIONS",
    "TERMINAL_STATES",
    # store
    "StoreResult",
]
