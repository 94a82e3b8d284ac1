"""
=============================================================================
BENCHMARK CONFIGURATION
=============================================================================

Centralized configuration for both tools.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── echo-client -h localhost -p 7000 ...                       │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── ECHOBENCH_LOG_LEVEL=DEBUG echo-server -p 7000 -n 4         │
    │                                                                      │
    │   3. Default values (in these dataclasses)                          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Both configs are validated eagerly, before any socket is created or any
worker is forked. A bad value never costs a half-started benchmark.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional

from .errors import UsageError


SERVER_STRATEGIES = ("epoll", "poll", "thread")
CLIENT_STRATEGIES = ("epoll", "poll")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_FORMATS = ("text", "json")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise UsageError(f"{name} must be an integer, got {value!r}")


@dataclass
class ResponderConfig:
    """
    Configuration for the echo responder (server side).

    NETWORK SETTINGS
    - host, port, backlog, buffer_size

    CONCURRENCY SETTINGS
    - workers, strategy, max_threads

    LOGGING
    - log_level, log_format
    """

    port: int = 7000
    """Port the shared listening socket binds to."""

    workers: int = 1
    """Number of forked worker processes sharing the listening socket."""

    host: str = "0.0.0.0"

    backlog: int = 1024
    """
    Accept queue length. Benchmarks open connections in bursts, so this
    is larger than a typical web server would use.
    """

    buffer_size: int = 1024
    """Bytes requested per recv() call."""

    strategy: str = "epoll"
    """
    Connection handling strategy per worker:
    - "epoll"  edge-triggered reactor
    - "poll"   level-triggered readiness polling loop
    - "thread" one blocking thread per connection
    """

    max_threads: int = 64
    """Outstanding accepting threads per worker (thread strategy only)."""

    poll_timeout: Optional[float] = None
    """Reactor wait deadline in seconds. None = block until readiness."""

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> "ResponderConfig":
        """
        Create configuration from environment variables.

        ECHOBENCH_PORT        Listening port (default: 7000)
        ECHOBENCH_WORKERS     Worker processes (default: 1)
        ECHOBENCH_STRATEGY    epoll, poll or thread (default: epoll)
        ECHOBENCH_LOG_LEVEL   Logging level (default: INFO)
        ECHOBENCH_LOG_FORMAT  text or json (default: text)
        """
        return cls(
            port=_env_int("ECHOBENCH_PORT", 7000),
            workers=_env_int("ECHOBENCH_WORKERS", 1),
            strategy=os.getenv("ECHOBENCH_STRATEGY", "epoll"),
            log_level=os.getenv("ECHOBENCH_LOG_LEVEL", "INFO"),
            log_format=os.getenv("ECHOBENCH_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """Fail fast on values that would break the run later."""
        if not 0 <= self.port < 65536:
            raise UsageError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.workers < 1:
            raise UsageError("workers must be >= 1")

        if self.strategy not in SERVER_STRATEGIES:
            raise UsageError(f"strategy must be one of {', '.join(SERVER_STRATEGIES)}")

        if self.buffer_size < 1:
            raise UsageError("buffer_size must be >= 1")

        if self.backlog < 1:
            raise UsageError("backlog must be >= 1")

        if self.max_threads < 1:
            raise UsageError("max_threads must be >= 1")

        _validate_logging(self.log_level, self.log_format)


@dataclass
class ClientConfig:
    """
    Configuration for the load-generating echo client.

    Each of the `clients` connection slots sends `payload`, waits for the
    echo, and repeats `retransmits` more times before the connection is
    closed and replaced. Slots are split across `workers` processes.
    """

    host: str = "127.0.0.1"
    port: int = 7000
    workers: int = 1
    clients: int = 1
    payload: bytes = b"PING"
    retransmits: int = 0

    duration: Optional[float] = None
    """
    Run time in seconds. When set, the supervisor stops every worker after
    this long. None = run until externally terminated.
    """

    strategy: str = "epoll"
    buffer_size: int = 1024

    connect_attempts: int = 10
    """How many times a slot retries socket creation before giving up."""

    poll_timeout: Optional[float] = None

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """
        Create configuration from environment variables.

        ECHOBENCH_HOST, ECHOBENCH_PORT, ECHOBENCH_WORKERS, ECHOBENCH_CLIENTS,
        ECHOBENCH_DATA, ECHOBENCH_RETRANSMITS, ECHOBENCH_LOG_LEVEL,
        ECHOBENCH_LOG_FORMAT
        """
        return cls(
            host=os.getenv("ECHOBENCH_HOST", "127.0.0.1"),
            port=_env_int("ECHOBENCH_PORT", 7000),
            workers=_env_int("ECHOBENCH_WORKERS", 1),
            clients=_env_int("ECHOBENCH_CLIENTS", 1),
            payload=os.getenv("ECHOBENCH_DATA", "PING").encode(),
            retransmits=_env_int("ECHOBENCH_RETRANSMITS", 0),
            log_level=os.getenv("ECHOBENCH_LOG_LEVEL", "INFO"),
            log_format=os.getenv("ECHOBENCH_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        if not self.host:
            raise UsageError("host is required")

        if not 0 < self.port < 65536:
            raise UsageError(f"Invalid port: {self.port}. Must be 1-65535.")

        if self.workers < 1:
            raise UsageError("workers must be >= 1")

        if self.clients < self.workers:
            raise UsageError("clients must be >= workers (every worker needs a slot)")

        if not self.payload:
            raise UsageError("payload must not be empty")

        if self.retransmits < 0:
            raise UsageError("retransmits must be >= 0")

        if self.duration is not None and self.duration <= 0:
            raise UsageError("duration must be > 0")

        if self.strategy not in CLIENT_STRATEGIES:
            raise UsageError(f"strategy must be one of {', '.join(CLIENT_STRATEGIES)}")

        if self.buffer_size < 1:
            raise UsageError("buffer_size must be >= 1")

        if self.connect_attempts < 1:
            raise UsageError("connect_attempts must be >= 1")

        _validate_logging(self.log_level, self.log_format)


def _validate_logging(level: str, fmt: str) -> None:
    if level.upper() not in LOG_LEVELS:
        raise UsageError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
    if fmt not in LOG_FORMATS:
        raise UsageError(f"log_format must be one of {', '.join(LOG_FORMATS)}")
