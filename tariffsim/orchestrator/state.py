"""
Run state machine.

Worker events and caller commands are typed messages. The next status of a
run is a pure function of its current status and one message, see
``next_status``. Terminal runs ignore late worker messages.
"""

from typing import Any, Dict, Union

from pydantic import BaseModel, ConfigDict, Field

from tariffsim.errors import InvalidTransitionError
from .models import SimulationStatus, TERMINAL_STATUSES


class _Message(BaseModel):
    model_config = ConfigDict(frozen=True)


# --- Worker -> orchestrator ---

class ProgressMessage(_Message):
    percentage: float


class CompletionMessage(_Message):
    results: Dict[str, Any] = Field(default_factory=dict)


class ErrorMessage(_Message):
    error: str


# --- Caller / orchestrator commands ---

class StartMessage(_Message):
    pass


class PauseMessage(_Message):
    pass


class ResumeMessage(_Message):
    pass


class StopMessage(_Message):
    reason: str = "stopped by user"


class TimeoutMessage(_Message):
    timeout_seconds: float


WorkerMessage = Union[ProgressMessage, CompletionMessage, ErrorMessage]
RunMessage = Union[
    ProgressMessage, CompletionMessage, ErrorMessage,
    StartMessage, PauseMessage, ResumeMessage, StopMessage, TimeoutMessage,
]

# Messages that are silently dropped once a run is terminal
_STALE_OK = (ProgressMessage, CompletionMessage, ErrorMessage, StopMessage, TimeoutMessage)

_S = SimulationStatus
_TRANSITIONS = {
    (_S.IDLE, StartMessage): _S.RUNNING,
    (_S.RUNNING, ProgressMessage): _S.RUNNING,
    (_S.RUNNING, CompletionMessage): _S.COMPLETED,
    (_S.RUNNING, ErrorMessage): _S.FAILED,
    (_S.RUNNING, PauseMessage): _S.PAUSED,
    (_S.RUNNING, ResumeMessage): _S.RUNNING,
    (_S.RUNNING, StopMessage): _S.FAILED,
    (_S.RUNNING, TimeoutMessage): _S.FAILED,
    (_S.PAUSED, ProgressMessage): _S.PAUSED,
    (_S.PAUSED, ErrorMessage): _S.FAILED,
    (_S.PAUSED, PauseMessage): _S.PAUSED,
    (_S.PAUSED, ResumeMessage): _S.RUNNING,
    (_S.PAUSED, StopMessage): _S.FAILED,
    (_S.PAUSED, TimeoutMessage): _S.FAILED,
}


def next_status(current: SimulationStatus, message: RunMessage) -> SimulationStatus:
    """
    Status after applying message to a run in status current.

    Raises:
        InvalidTransitionError: For transitions the lifecycle forbids, e.g.
            completing a paused run or resuming a finished one.
    """
    if current in TERMINAL_STATUSES and isinstance(message, _STALE_OK):
        return current
    try:
        return _TRANSITIONS[(current, type(message))]
    except KeyError:
        raise InvalidTransitionError(current.value, message) from None


def is_stale(current: SimulationStatus, message: RunMessage) -> bool:
    """True if message would be ignored because the run already finished."""
    return current in TERMINAL_STATUSES and isinstance(message, _STALE_OK)
