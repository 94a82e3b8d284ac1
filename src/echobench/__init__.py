"""
=============================================================================
ECHOBENCH - TCP Echo Benchmarking Tools
=============================================================================

A TCP echo responder and a load-generating echo client, built to compare
connection-handling strategies under concurrent load.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   echo-client                              echo-server               │
    │   ───────────                              ───────────               │
    │   supervisor                               supervisor                │
    │     ├── worker 0: reactor, 34 slots ──┐      listen() before fork    │
    │     ├── worker 1: reactor, 33 slots ──┼──►   ├── worker 0: reactor   │
    │     └── worker 2: reactor, 33 slots ──┘      └── worker 1: reactor   │
    │                                                                      │
    │   every slot: connect, send payload, read echo, repeat,             │
    │               close, reconnect                                       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Strategies per worker:
    epoll   edge-triggered reactor (the default)
    poll    level-triggered readiness polling
    thread  one blocking thread per connection (responder only)

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    echobench/
    ├── __init__.py       # This file
    ├── __main__.py       # python -m echobench
    ├── cli.py            # echo-server / echo-client argument parsing
    ├── config.py         # ResponderConfig / ClientConfig dataclasses
    ├── errors.py         # FatalError, UsageError, exit codes
    ├── log.py            # Logging setup (text / JSON)
    ├── supervisor.py     # Worker fan-out and termination
    ├── worker.py         # Worker process entry points and stop handling
    └── core/
        ├── sockets.py    # Socket factory
        ├── reactor.py    # Edge- and level-triggered reactors
        ├── connection.py # Per-socket records
        ├── responder.py  # Server-role state machine
        ├── loadgen.py    # Client-role state machine
        ├── threaded.py   # Thread-per-connection responder
        └── stats.py      # Session statistics, worker allocation

=============================================================================
"""

__version__ = "1.0.0"

from .config import ClientConfig, ResponderConfig
from .errors import FatalError, UsageError

__all__ = ["ClientConfig", "ResponderConfig", "FatalError", "UsageError", "__version__"]
