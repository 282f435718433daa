"""Execution record model and its state machine."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


# ---------------------------------------------------------------------------
# State constants
# ---------------------------------------------------------------------------

EXECUTION_STATUS_RUNNING = "running"
EXECUTION_STATUS_COMPLETED = "completed"
EXECUTION_STATUS_FAILED = "failed"

EXECUTION_STATUSES: FrozenSet[str] = frozenset(
    [
        EXECUTION_STATUS_RUNNING,
        EXECUTION_STATUS_COMPLETED,
        EXECUTION_STATUS_FAILED,
    ]
)

# Completed/failed are absorbing: nothing leaves them.
_ALLOWED_TRANSITIONS: FrozenSet[Tuple[str, str]] = frozenset(
    [
        (EXECUTION_STATUS_RUNNING, EXECUTION_STATUS_COMPLETED),
        (EXECUTION_STATUS_RUNNING, EXECUTION_STATUS_FAILED),
    ]
)

LOG_LEVEL_INFO = "info"
LOG_LEVEL_WARNING = "warning"
LOG_LEVEL_ERROR = "error"
LOG_LEVEL_SUCCESS = "success"

LOG_LEVELS: FrozenSet[str] = frozenset([LOG_LEVEL_INFO, LOG_LEVEL_WARNING, LOG_LEVEL_ERROR, LOG_LEVEL_SUCCESS])


# ---------------------------------------------------------------------------
# Domain records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    level: str
    message: str


@dataclass(frozen=True)
class ExecutionRecord:
    record_id: str
    execution_id: str
    owner_id: str
    agent_id: str
    agent_name: str
    status: str
    start_time: datetime
    end_time: Optional[datetime]
    duration_ms: int
    output: Optional[Dict[str, Any]]
    error: Optional[str]
    logs: List[LogEntry] = field(default_factory=list)


@dataclass(frozen=True)
class ExecutionOutcome:
    """Terminal result computed by the runner before it is persisted."""

    status: str
    end_time: datetime
    duration_ms: int
    output: Optional[Dict[str, Any]]
    error: Optional[str]


# ---------------------------------------------------------------------------
# Transition validator
# ---------------------------------------------------------------------------


class ExecutionTransitionError(ValueError):
    pass


def validate_transition(from_status: str, to_status: str) -> None:
    """Raise ExecutionTransitionError if the transition is not allowed."""
    if from_status not in EXECUTION_STATUSES:
        raise ExecutionTransitionError(f"Unknown source status: '{from_status}'")
    if to_status not in EXECUTION_STATUSES:
        raise ExecutionTransitionError(f"Unknown target status: '{to_status}'")
    if (from_status, to_status) not in _ALLOWED_TRANSITIONS:
        raise ExecutionTransitionError(
            f"Transition '{from_status}' -> '{to_status}' is not allowed."
        )


def validate_outcome(outcome: ExecutionOutcome) -> None:
    """A completed outcome carries output only, a failed one carries error only."""
    if outcome.status == EXECUTION_STATUS_COMPLETED:
        if outcome.output is None or outcome.error is not None:
            raise ExecutionTransitionError("Completed executions need an output and no error.")
    elif outcome.status == EXECUTION_STATUS_FAILED:
        if outcome.error is None or outcome.output is not None:
            raise ExecutionTransitionError("Failed executions need an error and no output.")
    else:
        raise ExecutionTransitionError(f"Outcome status must be terminal, got '{outcome.status}'")
