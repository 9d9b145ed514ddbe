"""
Connection Upgrader
Checks path, origin and admission before a request becomes a WebSocket channel
"""

import logging
from http import HTTPStatus
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlsplit

from websockets.datastructures import Headers

from .config import RelayConfig
from .errors import UpgradeError

logger = logging.getLogger(__name__)


class OriginPolicy:
    """Exact, case-sensitive match against a single allowed origin"""

    def __init__(self, allowed_origin: str):
        self.allowed_origin = allowed_origin

    def allows(self, origin: Optional[str]) -> bool:
        return origin is not None and origin == self.allowed_origin

    def check(self, headers: Headers) -> str:
        """Return the request's origin, or raise UpgradeError if it is not allowed"""
        values = headers.get_all('Origin')
        if not values:
            raise UpgradeError(HTTPStatus.FORBIDDEN, "missing Origin header")
        if len(values) > 1:
            raise UpgradeError(HTTPStatus.FORBIDDEN, "multiple Origin headers")

        origin = values[0]
        if not self.allows(origin):
            raise UpgradeError(HTTPStatus.FORBIDDEN, f"origin {origin!r} is not allowed")
        return origin


class ConnectionUpgrader:
    """
    Gatekeeper for the upgrade endpoint.

    Plugs into websockets as the ``process_request`` hook: returning None lets
    the handshake proceed, returning a response rejects the request before any
    session exists. ``live_count`` reports how many sessions are currently
    open and is only consulted when ``max_connections`` is set.
    """

    def __init__(self, config: RelayConfig, live_count: Optional[Callable[[], int]] = None):
        self.config = config
        self.origin_policy = OriginPolicy(config.allowed_origin)
        self.live_count = live_count or (lambda: 0)

    def check(self, path: str, headers: Headers) -> None:
        """Raise UpgradeError if the request must not be upgraded"""
        request_path = urlsplit(path).path
        if request_path != self.config.path:
            raise UpgradeError(HTTPStatus.NOT_FOUND, f"no upgrade endpoint at {request_path!r}")

        self.origin_policy.check(headers)

        limit = self.config.max_connections
        if limit is not None and self.live_count() >= limit:
            raise UpgradeError(HTTPStatus.SERVICE_UNAVAILABLE, f"connection limit of {limit} reached")

    def process_request(self, connection, request):
        try:
            self.check(request.path, request.headers)
        except UpgradeError as e:
            logger.warning(f"[{connection.remote_address}] {e}")
            return connection.respond(e.status, f"{e.reason}\n")
        return None

    def serve_options(self) -> Dict[str, Any]:
        """Keyword arguments for websockets.asyncio.server.serve"""
        return {
            'process_request': self.process_request,
            'max_size': self.config.read_buffer_size,
            'write_limit': self.config.write_buffer_size,
            'ping_interval': self.config.ping_interval,
        }
