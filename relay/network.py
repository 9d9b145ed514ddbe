# network.py (Relay)
import asyncio
import logging
from typing import Optional, Union

import websockets
from websockets.frames import CloseCode

from .errors import FrameReadError, FrameWriteError

logger = logging.getLogger(__name__)

# Close codes that mean the peer went away on purpose
CLEAN_CLOSE_CODES = frozenset({CloseCode.NORMAL_CLOSURE, CloseCode.GOING_AWAY})


def describe_close(exc: websockets.ConnectionClosed) -> str:
    """Human readable summary of a closed connection"""
    frame = exc.rcvd if exc.rcvd is not None else exc.sent
    if frame is None:
        return "connection lost without a close frame"
    reason = f" ({frame.reason})" if frame.reason else ""
    return f"closed with code {int(frame.code)}{reason}"


def is_clean_close(exc: websockets.ConnectionClosed) -> bool:
    """True when the peer closed the channel normally"""
    return exc.rcvd is not None and exc.rcvd.code in CLEAN_CLOSE_CODES


async def receive_frame(websocket, timeout: Optional[float] = None) -> Union[str, bytes]:
    """
    Wait for one complete frame.
    Every failure, including a peer close, an oversized frame or an idle
    timeout, is raised as FrameReadError.
    """
    try:
        if timeout is None:
            return await websocket.recv()
        return await asyncio.wait_for(websocket.recv(), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise FrameReadError(f"no frame received within {timeout}s", e)
    except websockets.ConnectionClosed as e:
        raise FrameReadError(describe_close(e), e, clean=is_clean_close(e))
    except OSError as e:
        raise FrameReadError("transport error while reading", e)


async def send_frame(websocket, payload: str) -> None:
    """Send one text frame, raising FrameWriteError if the channel is unusable"""
    try:
        await websocket.send(payload)
    except websockets.ConnectionClosed as e:
        raise FrameWriteError(f"channel {describe_close(e)} before the response was sent", e)
    except OSError as e:
        raise FrameWriteError("transport error while writing", e)


async def close_channel(websocket, code: int = CloseCode.NORMAL_CLOSURE, reason: str = "") -> None:
    """Close a channel; closing an already closed channel is a no-op"""
    try:
        await websocket.close(code, reason)
    except OSError as e:
        logger.debug(f"Ignoring transport error while closing channel: {e}")
