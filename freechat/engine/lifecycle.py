"""Agent status state machine.

Defines valid transitions and enforces them. Invalid transitions
raise InvalidTransitionError rather than silently proceeding.

State Diagram:

    READY ──> PROCESSING ──> READY
      │
      └────> WARMING_UP ──> READY

Only READY may start work, so a second turn (or a warmup during a
turn) is rejected instead of opening a second stream.
"""
from __future__ import annotations

from .errors import InvalidTransitionError
from .models import AgentStatus

VALID_TRANSITIONS: dict[AgentStatus, set[AgentStatus]] = {
    AgentStatus.READY: {
        AgentStatus.PROCESSING,
        AgentStatus.WARMING_UP,
    },
    AgentStatus.PROCESSING: {
        AgentStatus.READY,
    },
    AgentStatus.WARMING_UP: {
        AgentStatus.READY,
    },
}

BUSY_STATES = frozenset({AgentStatus.PROCESSING, AgentStatus.WARMING_UP})


def validate_transition(current: AgentStatus, target: AgentStatus) -> None:
    """Validate a status transition. Raises InvalidTransitionError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        raise InvalidTransitionError(
            current.value,
            target.value,
            sorted(s.value for s in allowed),
        )


def is_busy(status: AgentStatus) -> bool:
    """True when the agent holds an outstanding channel stream."""
    return status in BUSY_STATES
