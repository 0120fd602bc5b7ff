"""Deterministic fetch state machine.

Enforces:
- Valid transitions only (``TRANSITIONS`` table)
- Terminal states (done, no_candidate, failed) have no outgoing edges
- Every transition is recorded and logged

``next_state`` is a pure function of (state, event); ``FetchMachine`` holds
the current state and the transition history for one fetch attempt.
"""

from __future__ import annotations

import logging

from tako.errors import InvalidTransitionError
from tako.models.fetch import (
    TERMINAL_STATES,
    TRANSITIONS,
    FetchEvent,
    FetchState,
    FetchTransition,
)

logger = logging.getLogger(__name__)


def next_state(state: FetchState, event: FetchEvent) -> FetchState:
    """Return the state reached from *state* on *event*.

    Raises InvalidTransitionError for pairs not in the table.
    """
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        allowed = sorted(e.value for (s, e) in TRANSITIONS if s == state)
        raise InvalidTransitionError(
            f"Cannot handle '{event.value}' in state '{state.value}'. "
            f"Allowed: {allowed}"
        ) from None


def available_events(state: FetchState) -> set[FetchEvent]:
    """Events that are valid in *state*."""
    return {e for (s, e) in TRANSITIONS if s == state}


class FetchMachine:
    """Tracks one fetch attempt through its states.

    Parameters
    ----------
    label:
        Identifies the attempt in log lines (usually the config path).
    """

    def __init__(self, label: str = "") -> None:
        self._label = label
        self._state = FetchState.IDLE
        self._history: list[FetchTransition] = []

    @property
    def state(self) -> FetchState:
        return self._state

    @property
    def history(self) -> tuple[FetchTransition, ...]:
        return tuple(self._history)

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def fire(self, event: FetchEvent, detail: str = "") -> FetchState:
        """Apply *event*, record the transition, return the new state."""
        target = next_state(self._state, event)
        record = FetchTransition(
            from_state=self._state, event=event, to_state=target, detail=detail
        )
        self._history.append(record)
        logger.debug(
            "fetch[%s]: %s --%s--> %s %s",
            self._label,
            self._state.value,
            event.value,
            target.value,
            detail,
        )
        self._state = target
        return target
