"""
Relay Client
Async client for the relay endpoint with send queueing, automatic
reconnection and filtered message subscriptions
"""

import asyncio
import inspect
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Iterable, List, Optional, Tuple

import websockets
from websockets.asyncio.client import ClientConnection, connect

from .errors import DecodeError
from .message import CLIENT_KIND, DEFAULT_KIND_KEY, Message, decode_message, encode_message

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Message], Any]


def now_ms() -> int:
    """Milliseconds since the epoch"""
    return int(time.time() * 1000)


class RelayClient:
    """
    Client side of the relay protocol.

    Messages sent while the connection is down are queued and flushed, in
    order, as soon as a connection opens. When the connection closes for any
    reason the client reconnects up to ``max_reconnect_attempts`` times,
    waiting ``reconnect_delay`` seconds before each attempt.
    """

    def __init__(
        self,
        url: str,
        origin: Optional[str] = None,
        kind_key: str = DEFAULT_KIND_KEY,
        auto_reconnect: bool = True,
        max_reconnect_attempts: int = 5,
        reconnect_delay: float = 5.0,
        open_timeout: float = 10.0,
    ):
        self.url = url
        self.origin = origin
        self.kind_key = kind_key
        self.auto_reconnect = auto_reconnect
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.open_timeout = open_timeout

        self.reconnect_attempts = 0
        self._websocket: Optional[ClientConnection] = None
        self._queue: Deque[Message] = deque()
        self._subscribers: List[Tuple[MessageCallback, Optional[frozenset]]] = []
        self._task: Optional[asyncio.Task] = None
        self._opened = asyncio.Event()
        self._finished = asyncio.Event()
        self._closing = False

    @property
    def connection_open(self) -> bool:
        return self._opened.is_set()

    @property
    def queued(self) -> int:
        """Number of messages waiting for a connection"""
        return len(self._queue)

    def start(self) -> "RelayClient":
        """Begin connecting in the background; also restarts a closed or finished client"""
        if self._task is None or self._task.done():
            self._closing = False
            self.reconnect_attempts = 0
            self._finished.clear()
            self._task = asyncio.create_task(self._run())
        return self

    async def wait_open(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self._opened.wait(), timeout)

    async def wait_finished(self, timeout: Optional[float] = None) -> None:
        """Wait until the client has given up reconnecting or was closed"""
        await asyncio.wait_for(self._finished.wait(), timeout)

    async def close(self) -> None:
        """Stop reconnecting and close the current connection"""
        self._closing = True
        if self._websocket is not None:
            await self._websocket.close()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def __aenter__(self) -> "RelayClient":
        self.start()
        await self.wait_open(self.open_timeout)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def send(self, content: str, kind: str = CLIENT_KIND, timestamp: Optional[int] = None) -> Message:
        """Send a message, stamping it with the current time if no timestamp is given"""
        message = Message(
            kind=kind,
            content=content,
            timestamp=now_ms() if timestamp is None else timestamp,
        )
        await self._send_or_queue(message)
        return message

    def subscribe(self, callback: MessageCallback, type_filters: Optional[Iterable[str]] = None) -> Callable[[], None]:
        """
        Register a callback for incoming messages, optionally only for the
        given kinds. Returns a function that removes the subscription.
        """
        entry = (callback, frozenset(type_filters) if type_filters is not None else None)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    async def _send_or_queue(self, message: Message, front: bool = False) -> bool:
        """Send now if possible, otherwise queue. Returns True if the message went out."""
        enqueue = self._queue.appendleft if front else self._queue.append
        websocket = self._websocket
        if websocket is None or not self.connection_open:
            logger.warning("Connection isn't open - message queued to send later")
            enqueue(message)
            return False
        try:
            await websocket.send(encode_message(message, self.kind_key))
        except websockets.ConnectionClosed:
            logger.warning("Connection closed while sending - message queued to send later")
            self._opened.clear()
            enqueue(message)
            return False
        logger.debug(f"Sent message {message}")
        return True

    async def _flush_queue(self) -> None:
        if self._queue:
            logger.debug(f"Dequeuing {len(self._queue)} message(s) to resend")
        while self._queue and self.connection_open:
            if not await self._send_or_queue(self._queue.popleft(), front=True):
                break

    async def _dispatch(self, raw) -> None:
        try:
            message = decode_message(raw, self.kind_key)
        except DecodeError as e:
            logger.warning(f"Ignoring undecodable message from server: {e}")
            return

        for callback, filters in list(self._subscribers):
            if filters is not None and message.kind not in filters:
                continue
            try:
                result = callback(message)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Message callback {callback!r} failed")

    async def _run(self) -> None:
        try:
            while not self._closing:
                try:
                    async with connect(self.url, origin=self.origin, open_timeout=self.open_timeout) as websocket:
                        self._websocket = websocket
                        self._opened.set()
                        self.reconnect_attempts = 0
                        logger.debug(f"Connection opened to {self.url}")
                        await self._flush_queue()
                        async for raw in websocket:
                            await self._dispatch(raw)
                    logger.debug("Connection closed")
                except websockets.ConnectionClosed as e:
                    logger.debug(f"Connection closed: {e}")
                except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
                    logger.debug(f"Connection error: {e}")
                finally:
                    self._opened.clear()
                    self._websocket = None

                if self._closing:
                    break
                if not self.auto_reconnect or self.reconnect_attempts >= self.max_reconnect_attempts:
                    logger.error("Failed to establish connection with server. Please check that the "
                                 "server is configured to receive websocket connections.")
                    break
                self.reconnect_attempts += 1
                logger.debug(f"Attempting to reconnect ({self.reconnect_attempts}/{self.max_reconnect_attempts})...")
                await asyncio.sleep(self.reconnect_delay)
        finally:
            self._finished.set()
