"""
Session States for the Relay Server
Lifecycle phases of one connection and the transitions allowed between them
"""

from enum import Enum


class SessionState(Enum):
    """Session state enumeration"""

    AWAITING_FRAME = "awaiting_frame"
    DECODING = "decoding"
    RESPONDING = "responding"
    TERMINATED = "terminated"

    def can_transition_to(self, target: "SessionState") -> bool:
        """Check whether moving from this state to target is allowed"""
        return target in _TRANSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return self is SessionState.TERMINATED

    def __str__(self) -> str:
        return self.value


_TRANSITIONS = {
    SessionState.AWAITING_FRAME: frozenset({SessionState.DECODING, SessionState.TERMINATED}),
    SessionState.DECODING: frozenset({SessionState.RESPONDING, SessionState.TERMINATED}),
    SessionState.RESPONDING: frozenset({SessionState.AWAITING_FRAME, SessionState.TERMINATED}),
    SessionState.TERMINATED: frozenset(),
}
