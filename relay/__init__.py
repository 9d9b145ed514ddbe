"""
Relay WebSocket server
Acknowledges every JSON message a client sends over a persistent connection
"""

from .config import RelayConfig, configure_logging
from .errors import (
    DecodeError,
    FrameReadError,
    FrameWriteError,
    InvalidTransition,
    RelayError,
    SessionError,
    UpgradeError,
)
from .message import Message, decode_message, encode_message, make_response
from .client import RelayClient
from .server import RelayServer
from .session import Session
from .session_states import SessionState
from .upgrader import ConnectionUpgrader, OriginPolicy

__version__ = "0.1.0"

__all__ = [
    'ConnectionUpgrader',
    'DecodeError',
    'FrameReadError',
    'FrameWriteError',
    'InvalidTransition',
    'Message',
    'OriginPolicy',
    'RelayClient',
    'RelayConfig',
    'RelayError',
    'RelayServer',
    'Session',
    'SessionError',
    'SessionState',
    'UpgradeError',
    'configure_logging',
    'decode_message',
    'encode_message',
    'make_response',
]
