"""
=============================================================================
CORE COMPONENTS
=============================================================================

    sockets.py     Socket factory (listening / connecting TCP sockets)
    reactor.py     Readiness reactors (edge-triggered epoll, level-triggered)
    connection.py  Per-socket connection records
    responder.py   Echo responder state machine (server role)
    loadgen.py     Load generator state machine (client role)
    threaded.py    Thread-per-connection responder
    stats.py       Client session statistics and worker allocation

=============================================================================
"""

from .connection import Connection, Role
from .loadgen import LoadGenerator
from .reactor import (
    EpollReactor,
    Interest,
    PollingReactor,
    Reactor,
    Readiness,
    Registration,
    make_reactor,
)
from .responder import EchoResponder, ResponderStats
from .sockets import make_connecting_socket, make_listening_socket
from .stats import AggregateStats, StatsAggregator, allocate
from .threaded import ThreadedResponder

__all__ = [
    "AggregateStats",
    "Connection",
    "EchoResponder",
    "EpollReactor",
    "Interest",
    "LoadGenerator",
    "PollingReactor",
    "Reactor",
    "Readiness",
    "Registration",
    "ResponderStats",
    "Role",
    "StatsAggregator",
    "ThreadedResponder",
    "allocate",
    "make_connecting_socket",
    "make_listening_socket",
    "make_reactor",
]
