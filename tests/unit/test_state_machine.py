import pytest

from tariffsim.errors import InvalidTransitionError
from tariffsim.orchestrator.models import SimulationStatus as S
from tariffsim.orchestrator.state import (
    CompletionMessage,
    ErrorMessage,
    PauseMessage,
    ProgressMessage,
    ResumeMessage,
    StartMessage,
    StopMessage,
    TimeoutMessage,
    is_stale,
    next_status,
)


@pytest.mark.parametrize("current, message, expected", [
    (S.IDLE, StartMessage(), S.RUNNING),
    (S.RUNNING, ProgressMessage(percentage=10), S.RUNNING),
    (S.RUNNING, CompletionMessage(results={}), S.COMPLETED),
    (S.RUNNING, ErrorMessage(error="boom"), S.FAILED),
    (S.RUNNING, TimeoutMessage(timeout_seconds=300), S.FAILED),
    (S.RUNNING, StopMessage(), S.FAILED),
    (S.RUNNING, PauseMessage(), S.PAUSED),
    (S.PAUSED, ResumeMessage(), S.RUNNING),
    (S.PAUSED, ErrorMessage(error="boom"), S.FAILED),
    (S.PAUSED, ProgressMessage(percentage=40), S.PAUSED),
])
def test_allowed_transitions(current, message, expected):
    assert next_status(current, message) == expected


@pytest.mark.parametrize("current, message", [
    (S.IDLE, ProgressMessage(percentage=1)),
    (S.IDLE, CompletionMessage(results={})),
    (S.PAUSED, CompletionMessage(results={})),
    (S.RUNNING, StartMessage()),
    (S.COMPLETED, ResumeMessage()),
    (S.FAILED, StartMessage()),
    (S.COMPLETED, PauseMessage()),
])
def test_forbidden_transitions(current, message):
    with pytest.raises(InvalidTransitionError):
        next_status(current, message)


@pytest.mark.parametrize("terminal", [S.COMPLETED, S.FAILED])
@pytest.mark.parametrize("message", [
    ProgressMessage(percentage=50),
    CompletionMessage(results={}),
    ErrorMessage(error="late"),
    StopMessage(),
    TimeoutMessage(timeout_seconds=1),
])
def test_terminal_states_absorb_late_messages(terminal, message):
    assert is_stale(terminal, message)
    assert next_status(terminal, message) == terminal


def test_running_messages_are_not_stale():
    assert not is_stale(S.RUNNING, ProgressMessage(percentage=50))
