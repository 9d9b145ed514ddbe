"""
Error taxonomy for the relay server
Every failure a connection can hit maps onto one of these types
"""

from http import HTTPStatus
from typing import Optional


class RelayError(Exception):
    """Base class for all relay errors"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause

    def __str__(self) -> str:
        message = super().__str__()
        if self.cause is not None:
            return f"{message}: {self.cause!r}"
        return message


class UpgradeError(RelayError):
    """The HTTP upgrade request was rejected; no session is created"""

    def __init__(self, status: HTTPStatus, reason: str, cause: Optional[BaseException] = None):
        super().__init__(f"upgrade rejected ({status.value} {status.phrase}): {reason}", cause)
        self.status = status
        self.reason = reason


class SessionError(RelayError):
    """Base class for failures inside a live session. Always terminal."""


class FrameReadError(SessionError):
    """Transport failure while awaiting a frame, including a peer-initiated close"""

    def __init__(self, message: str, cause: Optional[BaseException] = None, clean: bool = False):
        super().__init__(message, cause)
        self.clean = clean


class DecodeError(SessionError):
    """A frame arrived but does not hold a valid message"""


class FrameWriteError(SessionError):
    """Sending the response frame failed"""


class InvalidTransition(RelayError):
    """Session state machine was asked for a transition it does not allow"""
