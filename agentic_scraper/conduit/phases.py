"""Conduit phase definitions — the finite state machine states and transitions."""

from __future__ import annotations

from enum import Enum


class Phase(str, Enum):
    """All valid Conduit phases. The Conduit is a finite state machine
    that transitions between these phases based on concrete conditions."""

    SETUP = "SETUP"
    GENERATING = "GENERATING"
    ATTEMPTING = "ATTEMPTING"
    REPAIRING = "REPAIRING"
    SUCCEEDED = "SUCCEEDED"
    EXHAUSTED = "EXHAUSTED"
    SETUP_FAILED = "SETUP_FAILED"
    CANCELLED = "CANCELLED"


# Valid phase transitions. Each key maps to a set of phases it can transition to.
VALID_TRANSITIONS: dict[Phase, set[Phase]] = {
    Phase.SETUP: {Phase.GENERATING, Phase.SETUP_FAILED, Phase.CANCELLED},
    Phase.GENERATING: {Phase.ATTEMPTING, Phase.SETUP_FAILED, Phase.CANCELLED},
    # ATTEMPTING -> ATTEMPTING re-runs the same artifact ("retry" policy)
    Phase.ATTEMPTING: {
        Phase.ATTEMPTING,
        Phase.REPAIRING,
        Phase.SUCCEEDED,
        Phase.EXHAUSTED,
        Phase.CANCELLED,
    },
    Phase.REPAIRING: {Phase.ATTEMPTING, Phase.EXHAUSTED, Phase.CANCELLED},
    Phase.SUCCEEDED: set(),  # terminal
    Phase.EXHAUSTED: set(),  # terminal
    Phase.SETUP_FAILED: set(),  # terminal
    Phase.CANCELLED: set(),  # terminal
}

TERMINAL_PHASES = {Phase.SUCCEEDED, Phase.EXHAUSTED, Phase.SETUP_FAILED, Phase.CANCELLED}
