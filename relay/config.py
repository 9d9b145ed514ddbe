"""
Relay Server Configuration
Explicit configuration value passed into the upgrader, sessions and server
"""

import copy
import logging
import os
from dataclasses import dataclass, fields
from typing import Optional

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


@dataclass
class RelayConfig:
    """
    Relay listener configuration
    One instance per listener; nothing here is process-wide
    """
    # Listener settings
    host: str = "0.0.0.0"
    port: int = 8080
    path: str = "/ws"

    # Origin policy: exact, case-sensitive match
    allowed_origin: str = "http://localhost:3000"

    # Per-connection buffer caps (bytes)
    read_buffer_size: int = 1024  # Max inbound frame size
    write_buffer_size: int = 1024  # Write buffer high-water mark

    # Hardening, both off by default
    idle_timeout: Optional[float] = None  # Seconds a session may wait for a frame
    max_connections: Optional[int] = None  # Concurrent session limit

    # Keepalive pings; None disables them
    ping_interval: Optional[float] = 20.0

    # Wire key holding the message kind
    kind_key: str = "string"

    log_level: str = "INFO"

    def __post_init__(self):
        """Validate configuration after initialization"""
        if not 0 <= self.port <= 65535:
            raise ValueError("port must be between 0 and 65535")
        if not self.path.startswith("/"):
            raise ValueError("path must start with '/'")
        if self.read_buffer_size <= 0:
            raise ValueError("read_buffer_size must be positive")
        if self.write_buffer_size <= 0:
            raise ValueError("write_buffer_size must be positive")
        if self.idle_timeout is not None and self.idle_timeout <= 0:
            raise ValueError("idle_timeout must be positive")
        if self.max_connections is not None and self.max_connections <= 0:
            raise ValueError("max_connections must be positive")
        if self.ping_interval is not None and self.ping_interval <= 0:
            raise ValueError("ping_interval must be positive")
        if not self.kind_key:
            raise ValueError("kind_key cannot be empty")
        if self.kind_key in ("content", "timestamp"):
            raise ValueError(f"kind_key cannot reuse the '{self.kind_key}' field")

    @property
    def url(self) -> str:
        """WebSocket URL of this listener"""
        return f"ws://{self.host}:{self.port}{self.path}"

    @classmethod
    def from_env(cls, env_prefix: str = "RELAY_") -> "RelayConfig":
        """
        Create configuration from environment variables
        Unset variables keep their defaults
        """
        def get_env_int(key: str, default: Optional[int]) -> Optional[int]:
            """Convert environment variable to integer"""
            value = os.getenv(f"{env_prefix}{key}")
            if value is None or value == "":
                return default
            try:
                return int(value)
            except ValueError:
                logger.warning(f"Invalid integer value for {env_prefix}{key}: {value}, using default: {default}")
                return default

        def get_env_float(key: str, default: Optional[float]) -> Optional[float]:
            """Convert environment variable to float"""
            value = os.getenv(f"{env_prefix}{key}")
            if value is None or value == "":
                return default
            try:
                return float(value)
            except ValueError:
                logger.warning(f"Invalid float value for {env_prefix}{key}: {value}, using default: {default}")
                return default

        defaults = cls()
        return cls(
            host=os.getenv(f"{env_prefix}HOST", defaults.host),
            port=get_env_int("PORT", defaults.port),
            path=os.getenv(f"{env_prefix}PATH", defaults.path),
            allowed_origin=os.getenv(f"{env_prefix}ALLOWED_ORIGIN", defaults.allowed_origin),
            read_buffer_size=get_env_int("READ_BUFFER_SIZE", defaults.read_buffer_size),
            write_buffer_size=get_env_int("WRITE_BUFFER_SIZE", defaults.write_buffer_size),
            idle_timeout=get_env_float("IDLE_TIMEOUT", defaults.idle_timeout),
            max_connections=get_env_int("MAX_CONNECTIONS", defaults.max_connections),
            ping_interval=get_env_float("PING_INTERVAL", defaults.ping_interval),
            kind_key=os.getenv(f"{env_prefix}KIND_KEY", defaults.kind_key),
            log_level=os.getenv(f"{env_prefix}LOG_LEVEL", defaults.log_level),
        )

    @classmethod
    def for_testing(cls) -> "RelayConfig":
        """
        Create configuration for tests
        Binds an ephemeral port on loopback and disables keepalive pings
        """
        return cls(
            host="127.0.0.1",
            port=0,
            ping_interval=None,
            log_level="DEBUG",
        )

    def replace(self, **kwargs) -> "RelayConfig":
        """Create a new config with updated values"""
        known = {f.name for f in fields(self)}
        for key in kwargs:
            if key not in known:
                raise ValueError(f"Unknown configuration key: {key}")
        new_config = copy.deepcopy(self)
        for key, value in kwargs.items():
            setattr(new_config, key, value)
        new_config.__post_init__()
        return new_config


def configure_logging(config: RelayConfig) -> None:
    """
    Configure root logging from the relay configuration
    The websockets library stays at WARNING unless DEBUG is requested
    """
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)

    websockets_logger = logging.getLogger('websockets')
    if level <= logging.DEBUG:
        websockets_logger.setLevel(logging.DEBUG)
    else:
        websockets_logger.setLevel(logging.WARNING)

    logger.info(f"Relay configured: {config.url}, allowed origin {config.allowed_origin!r}")
    logger.info(f"Buffers: read {config.read_buffer_size}B, write {config.write_buffer_size}B")
    if config.idle_timeout is not None or config.max_connections is not None:
        logger.info(f"Idle timeout: {config.idle_timeout}, max connections: {config.max_connections}")
