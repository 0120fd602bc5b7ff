"""Fetch state machine models: states, events, the transition table."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from tako.core.version import Version


class FetchState(str, Enum):
    """Where a single fetch attempt is."""

    IDLE = "idle"
    LISTING_CANDIDATES = "listing_candidates"
    SELECTING_VERSION = "selecting_version"
    NO_CANDIDATE = "no_candidate"
    DOWNLOADING_IMAGE = "downloading_image"
    VERIFYING_DIGEST = "verifying_digest"
    INSTALLING = "installing"
    RESTARTING_UNITS = "restarting_units"
    DONE = "done"
    FAILED = "failed"


class FetchEvent(str, Enum):
    """Inputs that drive the machine from one state to the next."""

    START = "start"
    ALREADY_INSTALLED = "already_installed"  # --init with existing content
    LISTED = "listed"
    NOTHING_NEWER = "nothing_newer"
    SELECTED = "selected"
    DOWNLOADED = "downloaded"
    DIGEST_OK = "digest_ok"
    INSTALLED = "installed"
    RESTARTS_FINISHED = "restarts_finished"
    ERROR = "error"


TERMINAL_STATES: frozenset[FetchState] = frozenset(
    {FetchState.DONE, FetchState.NO_CANDIDATE, FetchState.FAILED}
)

# (state, event) -> next state.  Anything absent is an invalid transition.
# ERROR is accepted from every non-terminal state and leads to FAILED.
TRANSITIONS: dict[tuple[FetchState, FetchEvent], FetchState] = {
    (FetchState.IDLE, FetchEvent.START): FetchState.LISTING_CANDIDATES,
    (FetchState.IDLE, FetchEvent.ALREADY_INSTALLED): FetchState.NO_CANDIDATE,
    (FetchState.LISTING_CANDIDATES, FetchEvent.LISTED): FetchState.SELECTING_VERSION,
    (FetchState.SELECTING_VERSION, FetchEvent.NOTHING_NEWER): FetchState.NO_CANDIDATE,
    (FetchState.SELECTING_VERSION, FetchEvent.SELECTED): FetchState.DOWNLOADING_IMAGE,
    (FetchState.DOWNLOADING_IMAGE, FetchEvent.DOWNLOADED): FetchState.VERIFYING_DIGEST,
    (FetchState.VERIFYING_DIGEST, FetchEvent.DIGEST_OK): FetchState.INSTALLING,
    (FetchState.INSTALLING, FetchEvent.INSTALLED): FetchState.RESTARTING_UNITS,
    (FetchState.RESTARTING_UNITS, FetchEvent.RESTARTS_FINISHED): FetchState.DONE,
}
for _state in FetchState:
    if _state not in TERMINAL_STATES:
        TRANSITIONS[(_state, FetchEvent.ERROR)] = FetchState.FAILED
del _state


class FetchTransition(BaseModel):
    """Records a single state transition for inspection and logging."""

    model_config = ConfigDict(frozen=True)

    from_state: FetchState
    event: FetchEvent
    to_state: FetchState
    detail: str = ""
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class FetchOutcome(str, Enum):
    """Non-error end states of a fetch."""

    DONE = "done"
    NO_CANDIDATE = "no_candidate"


class RestartFailure(BaseModel):
    """A restart unit that could not be restarted after install."""

    model_config = ConfigDict(frozen=True)

    unit: str
    reason: str


class FetchResult(BaseModel):
    """What a completed fetch did."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    outcome: FetchOutcome
    destination: Path
    installed_before: Version | None = None
    version: Version | None = None  # newly installed version, when DONE
    digest: str = ""  # "sha256:<hex>", when DONE
    candidates_seen: int = 0
    candidates_rejected: int = 0
    restart_failures: tuple[RestartFailure, ...] = ()
    transitions: tuple[FetchTransition, ...] = ()

    @property
    def is_done(self) -> bool:
        return self.outcome == FetchOutcome.DONE
