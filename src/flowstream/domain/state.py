from enum import Enum, auto


class SessionState(Enum):
    IDLE = auto()
    CONNECTING = auto()
    READY = auto()
    CLOSING = auto()
    CLOSED = auto()


VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.CONNECTING, SessionState.CLOSING, SessionState.CLOSED},
    SessionState.CONNECTING: {SessionState.READY, SessionState.CLOSING, SessionState.CLOSED},
    SessionState.READY: {SessionState.CLOSING, SessionState.CLOSED},
    SessionState.CLOSING: {SessionState.CLOSED},
    SessionState.CLOSED: set(),
}

# States in which a transport error is reported; from any other state an error is a no-op.
ERROR_REPORTING_STATES: frozenset[SessionState] = frozenset(
    {SessionState.CONNECTING, SessionState.READY}
)


class InvalidTransitionError(Exception):
    pass


def validate_transition(current: SessionState, target: SessionState) -> None:
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Cannot transition from {current.name} to {target.name}")


def reports_errors(state: SessionState) -> bool:
    return state in ERROR_REPORTING_STATES
