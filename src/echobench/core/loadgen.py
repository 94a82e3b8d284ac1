"""
=============================================================================
LOAD GENERATOR (CLIENT ROLE)
=============================================================================

Drives a fixed array of connection SLOTS through the echo cycle, forever.

=============================================================================
SLOT STATE MACHINE
=============================================================================

    ┌──────────────────────────────────────────────────────────────────────┐
    │                                                                       │
    │   open socket ──► WRITE_WAIT ──(writable: send payload)──► READ_WAIT  │
    │        ▲              ▲                                        │      │
    │        │              │                                        │      │
    │        │              └─── round done, retransmits left ◄──────┤      │
    │        │                                                        │      │
    │        └──── close + replace ◄── round done, budget spent ◄────┘      │
    │                                                                       │
    │   hangup / error / peer close in any state:                           │
    │        abort the session, close + replace                             │
    │                                                                       │
    └──────────────────────────────────────────────────────────────────────┘

One session = 1 initial transmit + `retransmits` more. With payload "PING"
and retransmits=2 the responder echoes "PING" three times before the slot
closes and opens a fresh connection.

A round is complete when bytes_in_cycle >= len(payload). If more than one
payload's worth has arrived, the excess carries over into the next round
instead of being thrown away.

=============================================================================
WHAT GETS MEASURED
=============================================================================

    service time = completion of the last echo round - first transmit

    session_started()      first transmit on a slot
    session_completed(t)   last round done
    session_aborted()      started, then the connection died

=============================================================================
"""

import logging
import os
import socket
from typing import Callable, List, Optional

from ..config import ClientConfig
from ..errors import FatalError
from .connection import Connection, Role
from .reactor import FAILED, Interest, Reactor, Readiness, Registration
from .sockets import make_connecting_socket
from .stats import StatsAggregator, monotonic_ms


logger = logging.getLogger(__name__)


class LoadGenerator:
    """
    Client-role state machine over one reactor.

    Usage:
        stats = StatsAggregator(target_sessions=100)
        gen = LoadGenerator(config, 100, make_reactor("epoll"), stats)
        gen.open_all()
        gen.run()      # until the process is stopped
    """

    def __init__(
        self,
        config: ClientConfig,
        clients: int,
        reactor: Reactor,
        stats: StatsAggregator,
        connect: Callable[..., socket.socket] = make_connecting_socket,
        clock: Callable[[], float] = monotonic_ms,
    ):
        """
        Args:
            config: Host, port, payload, retransmit budget, buffer size.
            clients: Number of slots this worker runs.
            reactor: The worker's reactor. Owned by this generator.
            stats: Per-process statistics context.
            connect: Socket factory, called as connect(host, port, non_blocking).
            clock: Millisecond clock used for service times.
        """
        self.config = config
        self.reactor = reactor
        self.stats = stats
        self.payload = config.payload
        self.retransmits = config.retransmits
        self.buffer_size = config.buffer_size
        self.connect_attempts = config.connect_attempts
        self._connect = connect
        self._clock = clock

        self.slots: List[Connection] = [Connection(Role.CLIENT, slot=i) for i in range(clients)]

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def open_all(self) -> None:
        """Open every slot's first connection."""
        for conn in self.slots:
            self._open(conn)
        logger.info(f"Opened {len(self.slots)} connections to {self.config.host}:{self.config.port}")

    def run(self, until: Optional[Callable[[], bool]] = None) -> None:
        """Run the event loop. Without `until`, only a signal ends it."""
        self.reactor.run(self.handle_event, until)

    def close(self) -> None:
        for conn in self.slots:
            if conn.is_open:
                self.reactor.deregister(conn.sock)
                conn.close()
        self.reactor.close()

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def handle_event(self, reg: Registration, readiness: Readiness) -> None:
        """One state machine step for one slot."""
        conn: Connection = reg.data

        if readiness & FAILED:
            self._abort(conn, "hangup" if readiness & Readiness.HANGUP else "socket error")
            return

        if reg.interest is Interest.WRITE_WAIT:
            if readiness & Readiness.WRITABLE:
                self._on_writable(conn)
        elif readiness & Readiness.READABLE:
            self._on_readable(conn)

    def _on_writable(self, conn: Connection) -> None:
        if not conn.has_pending_output:
            if conn.transmit_count == 0:
                # First writability means the non-blocking connect finished,
                # successfully or not.
                error = conn.sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
                if error:
                    self._abort(conn, os.strerror(error), OSError(error, os.strerror(error)))
                    return
                conn.connect_failures = 0
                conn.cycle_start = self._clock()
                self.stats.session_started()

            conn.queue(self.payload)
            conn.transmit_count += 1

        try:
            sent_all = conn.flush()
        except OSError as e:
            self._abort(conn, str(e), e)
            return

        if sent_all:
            self._set_interest(conn, Interest.READ_WAIT)

    def _on_readable(self, conn: Connection) -> None:
        try:
            _, peer_closed = conn.drain(self.buffer_size)
        except OSError as e:
            self._abort(conn, str(e), e)
            return

        round_done = conn.bytes_in_cycle >= len(self.payload)
        budget_spent = conn.transmit_count - 1 >= self.retransmits

        if round_done and budget_spent:
            self._complete(conn)
        elif peer_closed:
            self._abort(conn, "closed by peer")
        elif round_done:
            conn.bytes_in_cycle -= len(self.payload)
            self._set_interest(conn, Interest.WRITE_WAIT)

    # =========================================================================
    # SLOT TRANSITIONS
    # =========================================================================

    def _set_interest(self, conn: Connection, interest: Interest) -> None:
        self.reactor.modify(conn.sock, interest)

    def _complete(self, conn: Connection) -> None:
        service_time = self._clock() - conn.cycle_start
        self.stats.session_completed(service_time)
        logger.debug(f"[slot {conn.slot}] session done in {service_time:.3f} ms "
                     f"after {conn.transmit_count} transmits")
        self._recycle(conn)

    def _abort(self, conn: Connection, reason: str, cause: Optional[BaseException] = None) -> None:
        """
        Drop a failed connection and replace it.

        A slot that keeps failing before it ever transmits means the server
        is unreachable; after connect_attempts such failures in a row the
        worker gives up.
        """
        logger.debug(f"[slot {conn.slot}] aborted: {reason}")
        if conn.transmit_count > 0:
            self.stats.session_aborted()
        else:
            conn.connect_failures += 1
            if conn.connect_failures >= self.connect_attempts:
                self._discard(conn)
                raise FatalError(
                    f"connect to {self.config.host}:{self.config.port} "
                    f"failed {conn.connect_failures} times in a row",
                    cause,
                )
        self._recycle(conn)

    def _recycle(self, conn: Connection) -> None:
        self._discard(conn)
        self._open(conn)

    def _discard(self, conn: Connection) -> None:
        if conn.sock is not None:
            self.reactor.deregister(conn.sock)
        conn.close()

    def _open(self, conn: Connection) -> None:
        """
        Attach a fresh socket to a slot and wait for it to become writable.

        Socket creation is retried up to connect_attempts times.
        """
        last_error = None
        for attempt in range(1, self.connect_attempts + 1):
            try:
                sock = self._connect(self.config.host, self.config.port, True)
                break
            except FatalError as e:
                last_error = e
                logger.warning(f"[slot {conn.slot}] socket creation failed "
                               f"(attempt {attempt}/{self.connect_attempts}): {e}")
        else:
            raise FatalError("connect", last_error.cause if last_error else None)

        conn.reset(sock)
        self.reactor.register(sock, Interest.WRITE_WAIT, conn)
