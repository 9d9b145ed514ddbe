"""
Connection Session Loop
Owns one upgraded channel: read a frame, decode, acknowledge, repeat
"""

import logging
from typing import Optional

from .config import RelayConfig
from .errors import FrameReadError, InvalidTransition, SessionError
from .message import decode_message, encode_message, make_response
from .network import close_channel, receive_frame, send_frame
from .session_states import SessionState

logger = logging.getLogger(__name__)


class Session:
    """
    One live connection.

    The session is the only reader and writer of its channel. Any read,
    decode or write failure ends it; the channel is closed exactly once, on
    the transition into TERMINATED, and nothing is re-raised to the caller.
    """

    def __init__(self, websocket, config: RelayConfig):
        self.websocket = websocket
        self.config = config
        self.state = SessionState.AWAITING_FRAME
        self.messages_handled = 0
        self.error: Optional[SessionError] = None
        self.failed_in: Optional[SessionState] = None

    @property
    def id(self) -> str:
        """The connection's UUID as text"""
        connection_id = getattr(self.websocket, 'id', None)
        return str(connection_id) if connection_id is not None else hex(id(self))

    @property
    def short_id(self) -> str:
        return self.id[:8]

    @property
    def remote_address(self):
        return getattr(self.websocket, 'remote_address', None)

    def _transition(self, target: SessionState) -> None:
        if not self.state.can_transition_to(target):
            raise InvalidTransition(f"cannot move session from {self.state} to {target}")
        logger.debug(f"[{self.short_id}] {self.state} -> {target}")
        self.state = target

    async def run(self) -> None:
        """Serve the channel until the first failure or peer close"""
        logger.info(f"[{self.short_id}] Session opened for {self.remote_address}")
        try:
            while True:
                frame = await receive_frame(self.websocket, self.config.idle_timeout)

                self._transition(SessionState.DECODING)
                message = decode_message(frame, self.config.kind_key)
                logger.debug(f"[{self.short_id}] Received message from client: {message.content!r}")

                self._transition(SessionState.RESPONDING)
                response = make_response(message)
                await send_frame(self.websocket, encode_message(response, self.config.kind_key))
                self.messages_handled += 1

                self._transition(SessionState.AWAITING_FRAME)
        except SessionError as e:
            self.error = e
            self.failed_in = self.state
            self._report(e)
        except Exception:
            self.failed_in = self.state
            logger.exception(f"[{self.short_id}] Unexpected error in session")
        finally:
            await self.terminate()

    def _report(self, error: SessionError) -> None:
        if isinstance(error, FrameReadError) and error.clean:
            logger.info(f"[{self.short_id}] Peer closed the session: {error}")
        else:
            logger.warning(f"[{self.short_id}] Session terminated in {self.state} state by "
                           f"{type(error).__name__}: {error}")

    async def terminate(self) -> None:
        """Enter TERMINATED and release the channel; later calls do nothing"""
        if self.state.is_terminal:
            return
        self._transition(SessionState.TERMINATED)
        await close_channel(self.websocket)
        logger.info(f"[{self.short_id}] Session closed after {self.messages_handled} message(s)")
