"""
Relay WebSocket Server
Accepts upgraded connections on a single endpoint and runs one session per connection
"""

import argparse
import asyncio
import logging
import signal
from typing import List, Optional, Set

from websockets.asyncio.server import Server, serve

from .config import RelayConfig, configure_logging
from .session import Session
from .upgrader import ConnectionUpgrader

logger = logging.getLogger(__name__)


class RelayServer:
    """Listener that hands every accepted connection to its own Session"""

    def __init__(self, config: Optional[RelayConfig] = None):
        self.config = config or RelayConfig()
        self.sessions: Set[Session] = set()
        self.upgrader = ConnectionUpgrader(self.config, live_count=lambda: len(self.sessions))
        self._server: Optional[Server] = None

    @property
    def port(self) -> int:
        """Bound port; differs from config.port when that is 0"""
        if self._server is None:
            raise RuntimeError("server is not running")
        return self._server.sockets[0].getsockname()[1]

    @property
    def url(self) -> str:
        return f"ws://{self.config.host}:{self.port}{self.config.path}"

    async def handle_connection(self, websocket):
        """Run a session for one upgraded connection"""
        session = Session(websocket, self.config)
        self.sessions.add(session)
        logger.debug(f"Active sessions: {len(self.sessions)}")
        try:
            await session.run()
        finally:
            self.sessions.discard(session)
            logger.debug(f"Remaining sessions: {len(self.sessions)}")

    async def start(self) -> "RelayServer":
        if self._server is not None:
            raise RuntimeError("server is already running")
        self._server = await serve(
            self.handle_connection,
            self.config.host,
            self.config.port,
            **self.upgrader.serve_options(),
        )
        logger.info(f"Relay server is now listening on {self.url}")
        return self

    async def stop(self) -> None:
        """Close the listener and every live channel"""
        if self._server is None:
            return
        server, self._server = self._server, None
        server.close()
        await server.wait_closed()
        logger.info("Relay server stopped")

    async def __aenter__(self) -> "RelayServer":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()


async def run_server(config: RelayConfig) -> None:
    """Serve until SIGINT or SIGTERM"""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # add_signal_handler is unavailable on Windows event loops
            pass

    async with RelayServer(config):
        await stop.wait()
        logger.info("Shutdown requested")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Relay WebSocket server')
    parser.add_argument('--host', help='Interface to bind')
    parser.add_argument('--port', type=int, help='Port to bind')
    parser.add_argument('--path', help='Upgrade endpoint path')
    parser.add_argument('--allowed-origin', help='Origin header value allowed to connect')
    parser.add_argument('--idle-timeout', type=float, help='Close sessions idle for this many seconds')
    parser.add_argument('--max-connections', type=int, help='Reject upgrades beyond this many live sessions')
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level'
    )
    return parser


def config_from_args(argv: Optional[List[str]] = None) -> RelayConfig:
    """Environment configuration with command line overrides applied"""
    args = build_parser().parse_args(argv)
    overrides = {
        key: value for key, value in vars(args).items()
        if value is not None
    }
    return RelayConfig.from_env().replace(**overrides)


def main(argv: Optional[List[str]] = None) -> None:
    config = config_from_args(argv)
    configure_logging(config)
    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
